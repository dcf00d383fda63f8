"""A walker over `ast` trees which lets callers subscribe to only the node kinds they care about

The stdlib has ast.NodeTransformer, but it dispatches on method names and
mutates the tree in place. We want something closer to a table of handlers: the
caller passes a mapping from node kinds to functions, and gets back a walker
that rebuilds the tree, calling a handler wherever one is registered and doing
plain structural recursion everywhere else.

A handler receives the node followed by the children that matter for that kind
of node; for example, a handler for ast.FunctionDef is called as
`handler(node, name, arguments, body)`. The handler is entirely responsible for
recursing into those children (through `Walker.walk`) if it wants to. Whatever
it returns replaces the node; statement handlers may return a list of
statements, which is spliced into the enclosing statement list.

"""
from __future__ import annotations
from straightline.exceptions import MalformedTreeError
import ast
import logging
import typing as t

__all__ = [
    'Walker',
    'Handler',
]

logger = logging.getLogger(__name__)

Kind = t.Type[ast.AST]
Handler = t.Callable[..., t.Any]

def _body(node: t.Any) -> t.Tuple:
    return (node.body,)

def _value(node: t.Any) -> t.Tuple:
    return (node.value,)

_CHILDREN: t.Dict[Kind, t.Callable[[t.Any], t.Tuple]] = {
    ast.FunctionDef: lambda node: (node.name, node.args, node.body),
    ast.AsyncFunctionDef: lambda node: (node.name, node.args, node.body),
    ast.Lambda: lambda node: (node.args, node.body),
    ast.ClassDef: lambda node: (node.name, node.bases, node.body),
    ast.Call: lambda node: (node.func, node.args, node.keywords),
    ast.Name: lambda node: (node.id,),
    ast.arg: lambda node: (node.arg,),
    ast.If: lambda node: (node.test, node.body, node.orelse),
    ast.While: lambda node: (node.test, node.body, node.orelse),
    ast.For: lambda node: (node.target, node.iter, node.body, node.orelse),
    ast.AsyncFor: lambda node: (node.target, node.iter, node.body, node.orelse),
    ast.Try: lambda node: (node.body, node.handlers, node.orelse, node.finalbody),
    ast.With: lambda node: (node.items, node.body),
    ast.Module: _body,
    ast.Return: _value,
    ast.Expr: _value,
    ast.Await: _value,
    ast.Yield: _value,
    ast.YieldFrom: _value,
}

# The abstract categories can be instantiated, but they aren't real nodes and
# have no kind we could dispatch on.
_ABSTRACT: t.FrozenSet[type] = frozenset(
    cls for cls in (
        ast.AST, ast.mod, ast.stmt, ast.expr, ast.expr_context, ast.boolop, ast.operator,
        ast.unaryop, ast.cmpop, ast.excepthandler,
        getattr(ast, 'pattern', None), getattr(ast, 'type_ignore', None),
        getattr(ast, 'type_param', None),
    ) if cls is not None
)

class Walker:
    "Rebuilds an ast tree, dispatching on node kind to the registered handlers"
    def __init__(self, handlers: t.Mapping[Kind, Handler]) -> None:
        self.handlers: t.Dict[Kind, Handler] = dict(handlers)

    def __call__(self, node: t.Any) -> t.Any:
        return self.walk(node)

    def walk(self, node: t.Any) -> t.Any:
        """Walk this node, returning its replacement.

        None walks to None, so optional children (a bare `return`, a missing
        `else`) can be passed in without checking. A list walks to a list, with
        any list returned by a handler spliced in.

        """
        if node is None:
            return None
        if isinstance(node, list):
            return self.walk_list(node)
        kind = type(node)
        if not isinstance(node, ast.AST) or kind in _ABSTRACT:
            raise MalformedTreeError("trying to walk something that isn't a syntax tree node", node)
        handler = self.handlers.get(kind)
        if handler is None:
            return self.recurse(node)
        children = _CHILDREN.get(kind)
        if children is None:
            return handler(node)
        return handler(node, *children(node))

    def walk_list(self, nodes: t.List[t.Any]) -> t.List[t.Any]:
        ret: t.List[t.Any] = []
        for node in nodes:
            if not isinstance(node, ast.AST):
                # e.g. the names in `global a, b`
                ret.append(node)
                continue
            new = self.walk(node)
            if isinstance(new, list):
                ret.extend(new)
            elif new is not None:
                ret.append(new)
        return ret

    def recurse(self, node: ast.AST) -> ast.AST:
        """Rebuild this node with every child walked; the default for kinds without a handler

        Handlers can call this to fall back to the default behavior after
        deciding they don't want to do anything special.

        """
        fields: t.Dict[str, t.Any] = {}
        for name, value in ast.iter_fields(node):
            if isinstance(value, list):
                fields[name] = self.walk_list(value)
            elif isinstance(value, ast.AST):
                fields[name] = self.walk(value)
            else:
                fields[name] = value
        return ast.copy_location(type(node)(**fields), node)
