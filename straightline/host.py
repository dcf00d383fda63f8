"""Run rewritten code on a trio event loop

Rewritten code waits on callback-style operations; trio code is written with
async functions. TrioHost goes between the two: it turns async functions into
callback-style operations, by running each call in a task in a nursery and
calling back with the outcome, and it lets trio code wait for the Future
returned by a spawned function.

Coroutines resumed by these callbacks run synchronously inside the trio task
that called back, until they next suspend; they must not block.

"""
from __future__ import annotations
from straightline.runtime import Callback, Future, as_outcome, deliver
import functools
import logging
import outcome
import trio
import typing as t

__all__ = [
    'TrioHost',
]

logger = logging.getLogger(__name__)

class TrioHost:
    def __init__(self, nursery: trio.Nursery) -> None:
        self.nursery = nursery

    async def _run(self, async_fn: t.Callable[..., t.Awaitable[t.Any]],
                   args: t.Sequence[t.Any], callback: Callback) -> None:
        result = await outcome.acapture(async_fn, *args)
        logger.debug("TrioHost: %s%s finished with %s", getattr(async_fn, '__name__', async_fn), tuple(args), result)
        deliver(callback, result)

    def start(self, async_fn: t.Callable[..., t.Awaitable[t.Any]], *args: t.Any) -> None:
        "Call async_fn(*args) in a new task; the last argument is the callback to deliver the result to"
        *call_args, callback = args
        self.nursery.start_soon(self._run, async_fn, call_args, callback)

    def callbackify(self, async_fn: t.Callable[..., t.Awaitable[t.Any]]) -> t.Callable[..., None]:
        """Make a callback-style operation out of an async function

        The operation takes the callback as its last positional argument, so
        rewritten code calls it as `op(arg1, arg2, _)`.

        """
        return functools.partial(self.start, async_fn)

    async def _call_back(self, callback: Callback, error: t.Any, value: t.Any) -> None:
        callback(error, value)

    def call_soon(self, callback: Callback, error: t.Any = None, value: t.Any = None) -> None:
        "Call back on a later pass through the event loop, rather than right now"
        self.nursery.start_soon(self._call_back, callback, error, value)

    async def wait(self, future: Future) -> t.Any:
        "Wait, from trio code, for the result of a spawned call"
        done = trio.Event()
        results: t.List[outcome.Outcome] = []
        def consumer(error: t.Any, value: t.Any) -> None:
            results.append(as_outcome(error, value))
            done.set()
        future(consumer)
        await done.wait()
        return results[0].unwrap()
