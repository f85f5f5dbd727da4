"""
Transcript lines the connection reports through ``Notifier.notify``.

Hosts can match on these to style or filter lines; tests use them to
assert on what a user would have seen.
"""

LISTENING = "LISTENING ON PORT {port}"
CONNECTING = "CONNECTING TO {host} ON PORT {port}"
ESTABLISHED = "CONNECTION ESTABLISHED"
SENT = "SEND:  {message}"
RECEIVED = "RECEIVE:  {message}"
CLOSED_BY_PEER = "CONNECTION CLOSED FROM OTHER SIDE"
ERROR = "ERROR:  {error}"
SEND_FAILED = "ERROR OCCURRED WHILE TRYING TO SEND DATA."
CLOSED = "*** CONNECTION CLOSED ***"


def listening(port: int) -> str:
    return LISTENING.format(port=port)


def connecting(host: str, port: int) -> str:
    return CONNECTING.format(host=host, port=port)


def sent(message: str) -> str:
    return SENT.format(message=message)


def received(message: str) -> str:
    return RECEIVED.format(message=message)


def error(exc: BaseException) -> str:
    # str() of a bare socket.timeout is empty
    detail = str(exc)
    name = type(exc).__name__
    return ERROR.format(error=f"{name}: {detail}" if detail else name)
