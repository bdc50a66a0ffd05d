import logging
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class FixedIntervalGate:
    """Blocks callers so that successive passes are at least ``min_interval`` seconds apart.

    The first pass is never delayed. Used between sequential upstream requests;
    it is not a limiter across concurrent callers.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if min_interval < 0:
            raise ValueError("min_interval must not be negative")
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_pass: Optional[float] = None

    def wait(self) -> float:
        """Wait until the gate opens; return the number of seconds slept."""
        waited = 0.0
        if self._last_pass is not None:
            remaining = self.min_interval - (self._clock() - self._last_pass)
            if remaining > 0:
                logger.debug(f"Rate limit: sleeping {remaining:.2f}s")
                self._sleep(remaining)
                waited = remaining
        self._last_pass = self._clock()
        return waited
