import time
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 5 * 60


class ReadThroughCache(Generic[T]):
    """
    Single-value read-through cache with a fixed TTL.

    The cached value is swapped in one assignment, so concurrent readers see
    either the previous snapshot or the new one. Stale reads are acceptable.
    """

    def __init__(
        self,
        loader: Callable[[], T],
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._entry: Optional[tuple[T, float]] = None

    def get(self) -> T:
        entry = self._entry
        if entry is not None and self._clock() < entry[1]:
            return entry[0]

        value = self._loader()
        self._entry = (value, self._clock() + self._ttl)
        return value

    def invalidate(self) -> None:
        self._entry = None

    @property
    def is_warm(self) -> bool:
        entry = self._entry
        return entry is not None and self._clock() < entry[1]
