import time
from typing import Callable

# Milliseconds since the Unix epoch (UTC). Components accept any callable with
# this shape so tests can drive time explicitly.
Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)
