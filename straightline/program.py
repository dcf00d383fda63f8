"""Turn whole programs into rewritten programs, at the level of source text and code objects

A rewritten program has to run on a coroutine, like any other code that
suspends, so after rewriting we wrap the entire module body in a function
taking a continuation slot, and spawn it with a callback that re-raises
anything the program failed to handle.

```
x = fs.read_file(path, _)
```

becomes

```
import straightline.runtime as __straightline__

def __straightline_main__(__straightline_slot__):
    global x
    x = __straightline__.await_(fs, 'read_file', [path], 1)
__straightline__.spawn(__straightline_main__, 0)(__straightline__.unhandled)
```

Every name the program binds at module level is declared global in the
wrapper, so the program's namespace is the same as it would have been.

"""
from __future__ import annotations
from straightline.rewrite import Options, SLOT_PARAMETER, transform
from straightline.walker import Walker
import ast
import logging
import types
import typing as t

__all__ = [
    'wrap_program',
    'transform_source',
    'compile_source',
    'exec_source',
    'MAIN_FUNCTION',
]

logger = logging.getLogger(__name__)

MAIN_FUNCTION = '__straightline_main__'

class _ModuleScope:
    """Finds the names a module body binds, and fixes up statements which can't move into a function

    Scopes nested inside the module body (functions, classes, lambdas) are left
    alone, apart from recording the name a function or class statement binds.
    Comprehensions are scopes too, but an assignment expression inside one binds
    in the module (PEP 572), so we look inside them for those.

    """
    def __init__(self) -> None:
        self.names: t.List[str] = []
        handlers: t.Dict[t.Type[ast.AST], t.Callable] = {
            ast.FunctionDef: self.definition,
            ast.AsyncFunctionDef: self.definition,
            ast.ClassDef: self.definition,
            ast.Lambda: self.nested_scope,
            ast.ListComp: self.comprehension,
            ast.SetComp: self.comprehension,
            ast.DictComp: self.comprehension,
            ast.GeneratorExp: self.comprehension,
            ast.Name: self.name,
            ast.Import: self.import_,
            ast.ImportFrom: self.import_,
            ast.ExceptHandler: self.except_handler,
            ast.AnnAssign: self.annotated_assignment,
            ast.Global: self.global_,
        }
        for kind, field in (('MatchAs', 'name'), ('MatchStar', 'name'), ('MatchMapping', 'rest')):
            if hasattr(ast, kind):
                handlers[getattr(ast, kind)] = self.capture_pattern(field)
        self.walker = Walker(handlers)
        # Only assignment expressions bind anything from inside a comprehension;
        # the comprehension's own targets are local to it.
        self.comprehension_walker = Walker({
            ast.NamedExpr: self.assignment_expression,
            ast.Lambda: self.nested_scope,
        })

    def bind(self, name: t.Optional[str]) -> None:
        if name is not None and name not in self.names:
            self.names.append(name)

    def definition(self, node: t.Any, name: str, *_children: t.Any) -> ast.AST:
        self.bind(name)
        return node

    def nested_scope(self, node: ast.AST, *_children: t.Any) -> ast.AST:
        return node

    def comprehension(self, node: ast.AST) -> ast.AST:
        self.comprehension_walker.walk(node)
        return node

    def assignment_expression(self, node: ast.NamedExpr) -> ast.AST:
        self.bind(node.target.id)
        return self.comprehension_walker.recurse(node)

    def name(self, node: ast.Name, name: str) -> ast.Name:
        if isinstance(node.ctx, (ast.Store, ast.Del)):
            self.bind(name)
        return node

    def import_(self, node: t.Union[ast.Import, ast.ImportFrom]) -> ast.AST:
        for alias in node.names:
            if alias.name != '*':
                self.bind(alias.asname or alias.name.split('.')[0])
        return node

    def except_handler(self, node: ast.ExceptHandler) -> ast.AST:
        self.bind(node.name)
        return self.walker.recurse(node)

    def annotated_assignment(self, node: ast.AnnAssign) -> ast.stmt:
        # A global can't be annotated inside a function, so annotations on plain names are dropped.
        if not isinstance(node.target, ast.Name):
            return self.walker.recurse(node)
        self.bind(node.target.id)
        if node.value is None:
            return ast.copy_location(ast.Pass(), node)
        return ast.copy_location(
            ast.Assign(targets=[self.walker.walk(node.target)], value=self.walker.walk(node.value)),
            node)

    def global_(self, node: ast.Global) -> ast.stmt:
        for name in node.names:
            self.bind(name)
        return ast.copy_location(ast.Pass(), node)

    def capture_pattern(self, field: str) -> t.Callable[[ast.AST], ast.AST]:
        def handler(node: ast.AST) -> ast.AST:
            self.bind(getattr(node, field))
            return self.walker.recurse(node)
        return handler

def _is_docstring(stmt: ast.stmt) -> bool:
    return (isinstance(stmt, ast.Expr) and isinstance(stmt.value, ast.Constant)
            and isinstance(stmt.value.value, str))

def _must_stay_at_module_level(stmt: ast.stmt) -> bool:
    if isinstance(stmt, ast.ImportFrom):
        return stmt.module == '__future__' or any(alias.name == '*' for alias in stmt.names)
    return False

def wrap_program(tree: ast.Module, options: Options = Options()) -> ast.Module:
    """Wrap a rewritten module body to run on a top-level coroutine.

    Only needed, and only meaningful, when `transform` reported that it
    rewrote something.

    """
    hoisted: t.List[ast.stmt] = []
    body = list(tree.body)
    if body and _is_docstring(body[0]):
        hoisted.append(body.pop(0))
    hoisted.extend(stmt for stmt in body if _must_stay_at_module_level(stmt))
    body = [stmt for stmt in body if not _must_stay_at_module_level(stmt)]

    scope = _ModuleScope()
    main_body: t.List[ast.stmt] = scope.walker.walk_list(body)
    logger.debug("wrap_program: module-level names %s", scope.names)
    if scope.names:
        main_body.insert(0, ast.Global(names=list(scope.names)))
    if not main_body:
        main_body.append(ast.Pass())

    def runtime() -> ast.Name:
        return ast.Name(id=options.runtime, ctx=ast.Load())
    main = ast.FunctionDef(
        name=MAIN_FUNCTION,
        args=ast.arguments(
            posonlyargs=[], args=[ast.arg(arg=SLOT_PARAMETER, annotation=None)],
            vararg=None, kwonlyargs=[], kw_defaults=[], kwarg=None, defaults=[]),
        body=main_body,
        decorator_list=[],
        returns=None,
        type_comment=None,
        **({'type_params': []} if 'type_params' in ast.FunctionDef._fields else {}),
    )
    start = ast.Expr(value=ast.Call(
        func=ast.Call(
            func=ast.Attribute(value=runtime(), attr='spawn', ctx=ast.Load()),
            args=[ast.Name(id=MAIN_FUNCTION, ctx=ast.Load()), ast.Constant(value=0)],
            keywords=[]),
        args=[ast.Attribute(value=runtime(), attr='unhandled', ctx=ast.Load())],
        keywords=[]))
    import_runtime = ast.Import(names=[ast.alias(name='straightline.runtime', asname=options.runtime)])
    module = ast.Module(body=hoisted + [import_runtime, main, start], type_ignores=[])
    return ast.fix_missing_locations(module)

def _rewrite_module(source: str, filename: str, options: Options) -> t.Optional[ast.Module]:
    "Parse and rewrite; None if nothing needed rewriting"
    tree = ast.parse(source, filename)
    result = transform(tree, options)
    if not result.rewritten:
        logger.debug("%s: nothing to rewrite", filename)
        return None
    return wrap_program(t.cast(ast.Module, result.tree), options)

def transform_source(source: str, filename: str = "<unknown>", options: Options = Options()) -> str:
    """Rewrite this program's source text.

    If there's nothing to rewrite, the source is returned exactly as given.
    Raises SyntaxError if the source doesn't parse.

    """
    module = _rewrite_module(source, filename, options)
    if module is None:
        return source
    return ast.unparse(module) + "\n"

def compile_source(source: str, filename: str = "<unknown>",
                   options: Options = Options()) -> types.CodeType:
    "Rewrite this program's source text and compile it, ready to exec"
    module = _rewrite_module(source, filename, options)
    if module is None:
        return compile(source, filename, 'exec')
    return compile(module, filename, 'exec')

def exec_source(source: str, global_vars: t.Dict[str, t.Any], filename: str = "<unknown>",
                options: Options = Options()) -> None:
    """Rewrite and run this program in global_vars.

    This returns as soon as the program's top-level coroutine first suspends;
    the rest of the program runs as its operations call back. Errors the
    program doesn't handle are raised from whatever resumed it, which is this
    call if the program hadn't yet suspended.

    """
    code = compile_source(source, filename, options)
    exec(code, global_vars)
