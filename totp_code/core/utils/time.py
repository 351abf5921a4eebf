from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], int]


def now_epoch() -> int:
    return int(time.time())
