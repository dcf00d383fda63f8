"Exceptions raised while rewriting source and while running rewritten code"
import typing as t

__all__ = [
    'TransformError', 'SentinelMisuseError', 'DuplicateSlotError',
    'MalformedTreeError',
    'NoCoroutineError', 'CallbackReuseError', 'OperationError',
]

class TransformError(Exception):
    """The source can't be rewritten.

    These abort the whole rewrite; nothing partially rewritten is ever returned.

    """
    def __init__(self, message: str, lineno: t.Optional[int] = None) -> None:
        super().__init__(message, lineno)
        self.message = message
        self.lineno = lineno

    def __str__(self) -> str:
        if self.lineno is None:
            return self.message
        return f"{self.message} on line {self.lineno}"

class SentinelMisuseError(TransformError):
    "The sentinel identifier was used somewhere other than a continuation slot."
    pass

class DuplicateSlotError(TransformError):
    "The sentinel appears more than once in one parameter or argument list."
    pass

class MalformedTreeError(Exception):
    """We were asked to walk something which isn't a syntax tree node.

    This is a bug in whoever built the tree, not a problem with the source.

    """
    pass

class NoCoroutineError(Exception):
    """await_ was called from outside any coroutine started by spawn.

    There's nothing we could suspend, so we fail immediately rather than block
    the caller or lose the result.

    """
    pass

class CallbackReuseError(Exception):
    "An operation invoked the callback we gave it more than once."
    pass

class OperationError(Exception):
    "An operation reported an error which wasn't an exception; the original value is in .error"
    def __init__(self, error: t.Any) -> None:
        super().__init__(error)
        self.error = error
