"""Wall clock in epoch milliseconds. Components accept any zero-argument callable with the same shape."""

import time
from typing import Callable

Clock = Callable[[], float]


def now_ms() -> float:
    return time.time() * 1000
