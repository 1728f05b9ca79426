"""WebSocket close codes used by roomwire."""

NORMAL_CLOSURE = 1000
GOING_AWAY = 1001
INTERNAL_ERROR = 1011

# Application-range code used when the keepalive declares the link dead
PONG_TIMEOUT = 4000

CLEAN_CLOSE_CODES = frozenset({NORMAL_CLOSURE, GOING_AWAY})


def is_clean_close(code: int | None) -> bool:
    """Return True when a close code means the peer hung up on purpose."""
    return code in CLEAN_CLOSE_CODES
