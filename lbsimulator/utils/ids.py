import threading

_ID_LENGTH = 8


class IdGenerator:
    """Produces monotonically increasing uppercase hex tokens.

    Each engine owns its own generator so ids are reproducible from a fresh
    engine and are never reused within it, even across a reset. Tokens are
    zero-padded to at least ``width`` hex digits but may grow as the counter
    increases.
    """

    def __init__(self, width: int = _ID_LENGTH):
        self._width = width
        self._counter = 0
        self._lock = threading.Lock()

    def next_id(self) -> str:
        with self._lock:
            value = self._counter
            self._counter += 1
        return format(value, f"0{self._width}X")
