"""The coroutine runtime that rewritten code calls into

Rewritten code uses exactly two entry points: `spawn`, which wraps each
function taking a continuation slot, and `await_`, which replaces each call
filling a continuation slot.

A call to a spawned function starts a new stackful coroutine (a greenlet)
running the original function, and returns to its caller as soon as that
coroutine first suspends. The coroutine suspends only inside `await_`: we pass
the operation a callback of our own in the continuation slot, and if the
operation hasn't called it by the time it returns, we switch out of the
coroutine. Whoever later calls the callback switches back in, and `await_`
returns the value or raises the error, as though the operation had been an
ordinary blocking call.

The callback convention is the usual one for callback-based code:
`callback(error, value)`, with `error` None on success.

Calls from one spawned function to another don't start a second coroutine.
`await_` recognizes spawned functions and calls the function they wrap
directly; it's already running on a coroutine, so any `await_` inside suspends
the very same coroutine. A whole chain of continuation-aware calls runs on the
one coroutine started at its outermost entry.

"""
from __future__ import annotations
from dataclasses import dataclass
from straightline.exceptions import NoCoroutineError, CallbackReuseError, OperationError
import enum
import functools
import greenlet
import inspect
import logging
import outcome
import typing as t

__all__ = [
    'spawn',
    'await_',
    'Future',
    'Key',
    'Coroutine',
    'current_coroutine',
    'Completion',
    'unhandled',
    'Callback',
    'as_outcome',
    'deliver',
]

logger = logging.getLogger(__name__)

T = t.TypeVar('T')
Callback = t.Callable[..., None]
"Called as callback(error, value), with error None on success"

ORIGINAL_ATTRIBUTE = '_straightline_original'
"""Set on functions returned by spawn to (the function spawn returned, the function it wraps)

functools.wraps copies this onto any decorator wrapping a spawned function, so
it only counts on the very function it names.

"""

def as_outcome(error: t.Any, value: t.Any) -> outcome.Outcome:
    "Convert the arguments of a callback into an Outcome"
    if error is None:
        return outcome.Value(value)
    if not isinstance(error, BaseException):
        error = OperationError(error)
    return outcome.Error(error)

def deliver(callback: Callback, result: outcome.Outcome) -> None:
    # We read .error and .value directly rather than calling unwrap(), since a
    # Future may hand the same outcome to several consumers.
    if isinstance(result, outcome.Error):
        callback(result.error, None)
    else:
        callback(None, result.value)

#### coroutines
class Coroutine(greenlet.greenlet):
    """A stackful coroutine running a single call to a spawned function

    Suspending switches back to whichever greenlet most recently switched into
    us, whether that was `start` or some callback's `resume`; when the body
    finishes, control likewise returns there.

    """
    def __init__(self, body: t.Callable[[], None]) -> None:
        super().__init__()
        self.body = body
        self.suspended = False

    def __repr__(self) -> str:
        return f"<Coroutine {getattr(self.body, '__qualname__', self.body)} at {id(self):#x}>"

    def run(self) -> None:
        self.body()

    def start(self) -> None:
        "Run the body until it first suspends or finishes."
        self.parent = greenlet.getcurrent()
        self.switch()

    def suspend(self) -> t.Any:
        "Switch out of this coroutine, and return the value or raise the error we're resumed with"
        if greenlet.getcurrent() is not self:
            raise RuntimeError("a coroutine can only suspend itself", self)
        logger.debug("%s: suspending", self)
        self.suspended = True
        result: outcome.Outcome = self.parent.switch()
        return result.unwrap()

    def resume(self, result: outcome.Outcome) -> None:
        "Switch into this suspended coroutine, delivering this result to its suspend call"
        if not self.suspended:
            raise RuntimeError("resuming a coroutine which isn't suspended", self)
        logger.debug("%s: resuming with %s", self, result)
        self.suspended = False
        self.parent = greenlet.getcurrent()
        self.switch(result)

def current_coroutine() -> Coroutine:
    "Return the coroutine we're running on, or raise NoCoroutineError"
    current = greenlet.getcurrent()
    if not isinstance(current, Coroutine):
        raise NoCoroutineError(
            "continuation-slot calls must run inside a function wrapped by spawn; "
            "there's no coroutine to suspend")
    return current

#### spawn
class Future:
    """The eventual result of a spawned call made without a callback

    Call the future with a callback to receive the result: immediately, inside
    that call, if it's already available, otherwise once the coroutine
    finishes. This makes a Future itself a callback-style operation, so
    rewritten code can wait for one with `result = future(_)`.

    Only one callback is kept while waiting: registering another replaces it.

    """
    def __init__(self) -> None:
        self._result: t.Optional[outcome.Outcome] = None
        self._consumer: t.Optional[Callback] = None

    def __repr__(self) -> str:
        return f"<Future {'done' if self._result is not None else 'pending'} at {id(self):#x}>"

    def done(self) -> bool:
        return self._result is not None

    def resolve(self, result: outcome.Outcome) -> None:
        if self._result is not None:
            raise RuntimeError("future already resolved", self)
        self._result = result
        consumer, self._consumer = self._consumer, None
        if consumer is not None:
            deliver(consumer, result)

    def __call__(self, callback: Callback) -> None:
        if self._result is not None:
            deliver(callback, self._result)
        else:
            if self._consumer is not None:
                logger.debug("%s: replacing earlier consumer %s", self, self._consumer)
            self._consumer = callback

def _slot_parameter(fn: t.Callable, slot_index: int) -> t.Optional[str]:
    "Name of the parameter at slot_index, if it can be passed by keyword"
    try:
        params = list(inspect.signature(fn).parameters.values())
    except (TypeError, ValueError):
        return None
    if slot_index < len(params):
        param = params[slot_index]
        if param.kind == inspect.Parameter.POSITIONAL_OR_KEYWORD:
            return param.name
    return None

def spawn(fn: t.Callable[..., T], slot_index: int) -> t.Callable[..., t.Optional[Future]]:
    """Wrap a function taking a callback at slot_index so each call runs it on a new coroutine

    Calling the wrapper returns as soon as the coroutine first suspends (or
    finishes). The callback found at slot_index receives the function's return
    value, or the exception it raised; if there is no callback, the wrapper
    returns a Future instead.

    """
    slot_name = _slot_parameter(fn, slot_index)

    @functools.wraps(fn)
    def spawned(*args: t.Any, **kwargs: t.Any) -> t.Optional[Future]:
        call_args = list(args)
        callback: t.Optional[Callback]
        if len(call_args) > slot_index:
            callback = call_args[slot_index]
        elif slot_name is not None:
            callback = kwargs.setdefault(slot_name, None)
        else:
            callback = None
            if len(call_args) == slot_index:
                call_args.append(None)
        future = Future() if callback is None else None
        def body() -> None:
            # GreenletExit, raised into abandoned coroutines when they're
            # collected, must not reach the callback.
            result: outcome.Outcome
            try:
                result = outcome.Value(fn(*call_args, **kwargs))
            except Exception as exn:
                result = outcome.Error(exn)
            logger.debug("%s: finished with %s", greenlet.getcurrent(), result)
            if future is not None:
                future.resolve(result)
            else:
                deliver(callback, result)
        body.__qualname__ = getattr(fn, '__qualname__', repr(fn))
        coro = Coroutine(body)
        logger.debug("spawn: starting %s", coro)
        coro.start()
        return future

    setattr(spawned, ORIGINAL_ATTRIBUTE, (spawned, fn))
    return spawned

#### await
class _State(enum.Enum):
    PENDING = "pending"
    "The operation has been called and hasn't called back"
    SETTLED = "settled"
    "The operation called back before returning; we have the result"
    SUSPENDED = "suspended"
    "The operation returned without calling back, so the coroutine is suspended"
    DELIVERED = "delivered"
    "The result has been handed to the coroutine"

class Completion:
    """The result of one operation called by await_

    The callback may fire before the operation returns, or after the
    coroutine has suspended; this records which happened first, so that the
    result is delivered along exactly one of the two paths.

    """
    def __init__(self, coro: Coroutine) -> None:
        self.coro = coro
        self.state = _State.PENDING
        self.result: t.Optional[outcome.Outcome] = None

    def callback(self, error: t.Any = None, value: t.Any = None) -> None:
        result = as_outcome(error, value)
        if self.state == _State.PENDING:
            logger.debug("%s: operation completed synchronously with %s", self.coro, result)
            self.result = result
            self.state = _State.SETTLED
        elif self.state == _State.SUSPENDED:
            self.state = _State.DELIVERED
            self.coro.resume(result)
        else:
            raise CallbackReuseError("operation called its callback more than once", self.coro, result)

    def wait(self) -> t.Any:
        "Return the result, suspending the coroutine until there is one"
        if self.state == _State.SETTLED:
            self.state = _State.DELIVERED
            result = self.result
            self.result = None
            return result.unwrap() # type: ignore
        assert self.state == _State.PENDING
        self.state = _State.SUSPENDED
        return self.coro.suspend()

@dataclass(frozen=True)
class Key:
    "The subscript in a `receiver[key](...)` call, as opposed to the attribute name in `receiver.name(...)`"
    key: t.Any

def _resolve(receiver: t.Any, member: t.Any) -> t.Callable:
    if isinstance(member, str):
        return getattr(receiver, member)
    elif isinstance(member, Key):
        return receiver[member.key]
    else:
        return member

def _spawned_original(func: t.Any) -> t.Optional[t.Callable]:
    "The function wrapped by spawn, if func is exactly what spawn returned, or that bound as a method"
    marker = getattr(func, ORIGINAL_ATTRIBUTE, None)
    if not (isinstance(marker, tuple) and len(marker) == 2):
        return None
    spawned, original = marker
    if getattr(func, '__func__', func) is not spawned:
        # some decorator's wrapper, which must run
        return None
    return original

def await_(receiver: t.Any, member: t.Any, args: t.List[t.Any], slot_index: int,
           kwargs: t.Optional[t.Dict[str, t.Any]] = None) -> t.Any:
    """Call an operation with a callback at slot_index, and wait for it to call back

    - receiver.member(*args) when member is a string,
    - receiver[key](*args) when member is a Key,
    - member(*args) otherwise.

    Returns the value the operation delivered, or raises the error it delivered.

    """
    coro = current_coroutine()
    func = _resolve(receiver, member)
    call_args = list(args)
    call_kwargs = kwargs or {}
    original = _spawned_original(func)
    if original is not None:
        # We're already on a coroutine, so there's no need for spawn to start another.
        logger.debug("%s: calling spawned function %s directly", coro, original)
        call_args.insert(slot_index, None)
        if inspect.ismethod(func):
            return original(func.__self__, *call_args, **call_kwargs)
        return original(*call_args, **call_kwargs)
    completion = Completion(coro)
    call_args.insert(slot_index, completion.callback)
    func(*call_args, **call_kwargs)
    return completion.wait()

def unhandled(error: t.Any, value: t.Any = None) -> None:
    """The callback for a program's top-level coroutine: raise whatever error reached it

    The error propagates out of whatever resumed the coroutine last - typically
    some event loop callback - which is as close to the host's default error
    handling as we can get.

    """
    if error is None:
        return
    logger.error("unhandled error in spawned coroutine: %r", error)
    if isinstance(error, BaseException):
        raise error
    raise OperationError(error)
