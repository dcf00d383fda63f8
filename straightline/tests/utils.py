"Callback-style operations and a minimal event loop, for driving rewritten code without trio"
import collections
import typing as t

import logging
logger = logging.getLogger(__name__)

class Loop:
    "The simplest possible event loop: a queue of callbacks to run later"
    def __init__(self) -> None:
        self.pending: t.Deque[t.Callable[[], None]] = collections.deque()

    def call_soon(self, func: t.Callable, *args: t.Any) -> None:
        self.pending.append(lambda: func(*args))

    def run(self) -> int:
        "Run callbacks until there are none left; returns how many ran"
        count = 0
        while self.pending:
            self.pending.popleft()()
            count += 1
        logger.debug("Loop: ran %d callbacks", count)
        return count

    def later(self, value: t.Any, callback: t.Callable) -> None:
        "An operation which succeeds with `value` on a later turn of the loop"
        self.call_soon(callback, None, value)

    def fail_later(self, error: t.Any, callback: t.Callable) -> None:
        self.call_soon(callback, error, None)

def now(value: t.Any, callback: t.Callable) -> None:
    "An operation which succeeds with `value` before returning"
    callback(None, value)

def fail_now(error: t.Any, callback: t.Callable) -> None:
    callback(error, None)

class Results:
    def __init__(self) -> None:
        self.calls: t.List[t.Tuple[t.Any, t.Any]] = []

    def __call__(self, error: t.Any, value: t.Any) -> None:
        self.calls.append((error, value))
