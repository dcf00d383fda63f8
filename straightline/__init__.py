"""Straight-line code on top of callback-based concurrency

Callback-based code is written in continuation-passing style, with the rest of
each computation packed into a callback:

```
def load(path, callback):
    def got_data(err, data):
        if err:
            return callback(err, None)
        callback(None, parse(data))
    fs.read_file(path, got_data)
```

We instead let code mark one parameter of a function, and one argument of a
call, with a sentinel identifier (`_` by default), and rewrite the code so the
same thing reads as ordinary sequential statements:

```
def load(path, _):
    data = fs.read_file(path, _)
    return parse(data)
```

A function with the sentinel among its parameters is still a callback-style
function to its callers: `load(path, callback)` returns immediately, and the
callback receives the return value or the exception. A call with the sentinel
among its arguments waits for the callback it gets in that position to be
called, and then returns the value or raises the error. Errors propagate
through ordinary `try`/`except`.

This is done in two parts. straightline.rewrite rewrites the syntax tree,
turning the first kind of function into a call to `spawn`, and the second kind
of call into a call to `await_`; straightline.program does the same for whole
programs, as source text or code objects. straightline.runtime implements
`spawn` and `await_` with stackful coroutines (greenlets): each call to a
spawned function runs on its own coroutine, which suspends inside `await_` until
its operation calls back.

Nothing here depends on a particular event loop; any object calling callbacks
will do. straightline.host adapts trio async functions into such objects.

"""
from straightline.exceptions import (
    TransformError, SentinelMisuseError, DuplicateSlotError, MalformedTreeError,
    NoCoroutineError, CallbackReuseError, OperationError,
)
from straightline.walker import Walker
from straightline.rewrite import Options, RewriteResult, transform
from straightline.program import wrap_program, transform_source, compile_source, exec_source
from straightline.runtime import spawn, await_, Future, Key, unhandled
