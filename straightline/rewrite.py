"""Rewrite continuation-slot functions and calls into calls into the runtime

A function declaring the sentinel as one of its positional parameters becomes a
spawning entry point:

```
def read_config(path, _):
    ...
```

becomes

```
def read_config(path, __straightline_slot__):
    ...
read_config = __straightline__.spawn(read_config, 1)
```

and a call passing the sentinel becomes a suspend point:

```
data = fs.read_file(path, _)
```

becomes

```
data = __straightline__.await_(fs, 'read_file', [path], 1)
```

The exact shape of those two calls is the contract with straightline.runtime.

"""
from __future__ import annotations
from dataclasses import dataclass
from straightline.exceptions import SentinelMisuseError, DuplicateSlotError
from straightline.walker import Walker
import ast
import logging
import typing as t

__all__ = [
    'Options',
    'RewriteResult',
    'transform',
    'SLOT_PARAMETER',
]

logger = logging.getLogger(__name__)

SLOT_PARAMETER = '__straightline_slot__'
"What the slot parameter is renamed to in rewritten functions, so no sentinel survives a rewrite"

@dataclass(frozen=True)
class Options:
    sentinel: str = '_'
    "The identifier marking a continuation slot"
    runtime: str = '__straightline__'
    "The name rewritten code uses to refer to the straightline.runtime module"

    def __post_init__(self) -> None:
        for field in ('sentinel', 'runtime'):
            value = getattr(self, field)
            if not (isinstance(value, str) and value.isidentifier()):
                raise ValueError(f"{field} must be an identifier", value)
        if self.sentinel == self.runtime:
            raise ValueError("sentinel and runtime names must differ", self.sentinel)

@dataclass
class RewriteResult:
    tree: ast.AST
    rewritten: bool
    "If false, nothing needed rewriting, and the original source is already final"

def _lineno(node: t.Any) -> t.Optional[int]:
    return getattr(node, 'lineno', None)

class _Rewriter:
    def __init__(self, options: Options) -> None:
        self.options = options
        self.rewritten = False
        self.walker = Walker({
            ast.FunctionDef: self.function,
            ast.AsyncFunctionDef: self.async_function,
            ast.Lambda: self.lambda_,
            ast.Call: self.call,
            ast.Name: self.identifier,
            ast.arg: self.parameter,
            ast.ClassDef: self.class_,
            ast.alias: self.import_name,
            ast.ExceptHandler: self.except_handler,
            ast.keyword: self.keyword,
            ast.Global: self.declaration,
            ast.Nonlocal: self.declaration,
        })
        self.walk = self.walker.walk

    def is_sentinel(self, node: t.Any) -> bool:
        if isinstance(node, ast.Name):
            return node.id == self.options.sentinel
        elif isinstance(node, ast.arg):
            return node.arg == self.options.sentinel
        return False

    def find_slot(self, nodes: t.List[t.Any], what: str, lineno: t.Optional[int]) -> t.Optional[int]:
        "Find the index of the sentinel in this parameter or argument list, or None."
        idx: t.Optional[int] = None
        for i, node in enumerate(nodes):
            if self.is_sentinel(node):
                if idx is not None:
                    raise DuplicateSlotError(
                        f"callback sentinel {self.options.sentinel!r} used more than once in {what}",
                        _lineno(node) or lineno)
                idx = i
        return idx

    def runtime_call(self, func: str, args: t.List[ast.expr]) -> ast.Call:
        return ast.Call(
            func=ast.Attribute(value=ast.Name(id=self.options.runtime, ctx=ast.Load()),
                               attr=func, ctx=ast.Load()),
            args=args, keywords=[])

    def spawn_call(self, func: ast.expr, idx: int) -> ast.Call:
        return self.runtime_call('spawn', [func, ast.Constant(value=idx)])

    #### functions
    def rewrite_arguments(self, arguments: ast.arguments, idx: t.Optional[int]) -> ast.arguments:
        positional = arguments.posonlyargs + arguments.args
        renamed: t.List[ast.arg] = []
        for i, param in enumerate(positional):
            if i == idx:
                renamed.append(ast.copy_location(ast.arg(arg=SLOT_PARAMETER, annotation=None), param))
            else:
                renamed.append(self.walk(param))
        split = len(arguments.posonlyargs)
        return ast.arguments(
            posonlyargs=renamed[:split],
            args=renamed[split:],
            vararg=self.walk(arguments.vararg),
            kwonlyargs=self.walk(arguments.kwonlyargs),
            kw_defaults=self.walk(arguments.kw_defaults),
            kwarg=self.walk(arguments.kwarg),
            defaults=self.walk(arguments.defaults),
        )

    def function_slot(self, node: t.Any, arguments: ast.arguments) -> t.Optional[int]:
        return self.find_slot(arguments.posonlyargs + arguments.args,
                              "parameter list", _lineno(node))

    def check_name(self, name: t.Optional[str], node: t.Any) -> None:
        "Outside continuation slots, the sentinel can't be used as any kind of name"
        if name == self.options.sentinel:
            raise SentinelMisuseError(
                f"invalid usage of callback sentinel {self.options.sentinel!r}", _lineno(node))

    def function(self, node: ast.FunctionDef, name: str,
                 arguments: ast.arguments, body: t.List[ast.stmt]) -> t.Any:
        self.check_name(name, node)
        idx = self.function_slot(node, arguments)
        if idx is None:
            return self.walker.recurse(node)
        logger.debug("rewriting function %s with slot %d on line %s", name, idx, _lineno(node))
        self.rewritten = True
        # The body is rewritten first; nested functions and calls are independent of us.
        new_body = self.walk(body)
        func = ast.FunctionDef(
            name=name,
            args=self.rewrite_arguments(arguments, idx),
            body=new_body,
            decorator_list=[],
            returns=self.walk(node.returns),
            type_comment=None,
            **({'type_params': self.walk(node.type_params)} if hasattr(node, 'type_params') else {}),
        )
        # Decorators apply to the spawned function, innermost first, as they would have.
        value: ast.expr = self.spawn_call(ast.Name(id=name, ctx=ast.Load()), idx)
        for decorator in reversed(self.walk(node.decorator_list)):
            value = ast.Call(func=decorator, args=[value], keywords=[])
        binding = ast.Assign(targets=[ast.Name(id=name, ctx=ast.Store())], value=value)
        return [ast.copy_location(func, node), ast.copy_location(binding, node)]

    def async_function(self, node: ast.AsyncFunctionDef, name: str,
                       arguments: ast.arguments, body: t.List[ast.stmt]) -> t.Any:
        self.check_name(name, node)
        if self.function_slot(node, arguments) is not None:
            raise SentinelMisuseError(
                f"async function {name} can't take callback sentinel {self.options.sentinel!r}",
                _lineno(node))
        return self.walker.recurse(node)

    def lambda_(self, node: ast.Lambda, arguments: ast.arguments, body: ast.expr) -> ast.expr:
        idx = self.function_slot(node, arguments)
        if idx is None:
            return self.walker.recurse(node)
        logger.debug("rewriting lambda with slot %d on line %s", idx, _lineno(node))
        self.rewritten = True
        new_body = self.walk(body)
        func = ast.Lambda(args=self.rewrite_arguments(arguments, idx), body=new_body)
        return ast.copy_location(self.spawn_call(func, idx), node)

    def parameter(self, node: ast.arg, name: str) -> ast.arg:
        # Positional parameters were handled by the function handlers; anything left is misuse.
        if name == self.options.sentinel:
            raise SentinelMisuseError(
                f"callback sentinel {self.options.sentinel!r} must be a positional parameter",
                _lineno(node))
        return self.walker.recurse(node)

    #### calls
    def call(self, node: ast.Call, func: ast.expr,
             args: t.List[ast.expr], keywords: t.List[ast.keyword]) -> ast.expr:
        idx = self.find_slot(args, "call", _lineno(node))
        if idx is None:
            return self.walker.recurse(node)
        for arg in args[:idx]:
            if isinstance(arg, ast.Starred):
                raise SentinelMisuseError(
                    f"callback sentinel {self.options.sentinel!r} can't follow a starred argument",
                    _lineno(node))
        logger.debug("rewriting call with slot %d on line %s", idx, _lineno(node))
        self.rewritten = True
        receiver: ast.expr
        member: ast.expr
        if isinstance(func, ast.Attribute):
            # method call: foo.bar(_)
            receiver = self.walk(func.value)
            member = ast.Constant(value=func.attr)
        elif isinstance(func, ast.Subscript):
            # dynamic method call: foo[bar](_)
            receiver = self.walk(func.value)
            member = self.runtime_call('Key', [self.walk(func.slice)])
        else:
            # plain function call: foo(_)
            receiver = ast.Constant(value=None)
            member = self.walk(func)
        rest = [self.walk(arg) for i, arg in enumerate(args) if i != idx]
        call_args: t.List[ast.expr] = [
            receiver, member, ast.List(elts=rest, ctx=ast.Load()), ast.Constant(value=idx)]
        if keywords:
            for kw in keywords:
                self.check_name(kw.arg, kw)
            # `**mapping` keywords have no name, which the dict display spells as a None key
            call_args.append(ast.Dict(
                keys=[None if kw.arg is None else ast.Constant(value=kw.arg) for kw in keywords],
                values=[self.walk(kw.value) for kw in keywords],
            ))
        return ast.copy_location(self.runtime_call('await_', call_args), node)

    def identifier(self, node: ast.Name, name: str) -> ast.Name:
        self.check_name(name, node)
        return self.walker.recurse(node)

    def class_(self, node: ast.ClassDef, name: str,
               bases: t.List[ast.expr], body: t.List[ast.stmt]) -> ast.AST:
        self.check_name(name, node)
        return self.walker.recurse(node)

    def import_name(self, node: ast.alias) -> ast.alias:
        self.check_name(node.asname or node.name.split('.')[0], node)
        return self.walker.recurse(node)

    def except_handler(self, node: ast.ExceptHandler) -> ast.AST:
        self.check_name(node.name, node)
        return self.walker.recurse(node)

    def keyword(self, node: ast.keyword) -> ast.keyword:
        self.check_name(node.arg, node)
        return self.walker.recurse(node)

    def declaration(self, node: t.Union[ast.Global, ast.Nonlocal]) -> ast.stmt:
        for name in node.names:
            self.check_name(name, node)
        return self.walker.recurse(node)

def transform(tree: ast.AST, options: Options = Options()) -> RewriteResult:
    """Rewrite every continuation slot in this tree.

    The tree passed in is left alone; the result holds a new tree. Raises
    SentinelMisuseError or DuplicateSlotError, in which case nothing is
    rewritten at all.

    """
    rewriter = _Rewriter(options)
    new_tree = rewriter.walk(tree)
    logger.debug("transform finished, rewritten=%s", rewriter.rewritten)
    return RewriteResult(new_tree, rewriter.rewritten)
