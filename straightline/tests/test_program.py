import ast
import unittest
from straightline.program import transform_source, compile_source, exec_source, MAIN_FUNCTION
from straightline.rewrite import Options
from straightline.exceptions import SentinelMisuseError
from straightline.tests.utils import Loop, Results, now, fail_now

class TestTransformSource(unittest.TestCase):
    def test_nothing_to_rewrite(self) -> None:
        source = "x = 1   # comments and formatting survive\nprint( x )\n"
        self.assertEqual(transform_source(source), source)

    def test_wrapped(self) -> None:
        output = transform_source("x = fs.read_file(path, _)\n")
        self.assertEqual(output, ast.unparse(ast.parse("""
import straightline.runtime as __straightline__
def __straightline_main__(__straightline_slot__):
    global x
    x = __straightline__.await_(fs, 'read_file', [path], 1)
__straightline__.spawn(__straightline_main__, 0)(__straightline__.unhandled)
""")) + "\n")

    def test_output_compiles(self) -> None:
        output = transform_source("""
def f(x, _):
    return g(x, _)
class C:
    def m(self, _):
        return self.f(_)
y = f(1, _)
""")
        compile(output, "<output>", 'exec')

    def test_module_level_statements(self) -> None:
        output = transform_source('''"""docs"""
from __future__ import annotations
from os.path import *
x: int = f(_)
y: str
global z
''')
        tree = ast.parse(output)
        self.assertEqual(ast.get_docstring(tree), "docs")
        self.assertIsInstance(tree.body[1], ast.ImportFrom)
        self.assertEqual(tree.body[1].module, '__future__')
        self.assertIsInstance(tree.body[2], ast.ImportFrom)
        self.assertEqual(tree.body[2].module, 'os.path')
        [main] = [stmt for stmt in tree.body if isinstance(stmt, ast.FunctionDef)]
        self.assertEqual(main.name, MAIN_FUNCTION)
        self.assertEqual(main.body[0].names, ['x', 'y', 'z'])
        self.assertIsInstance(main.body[1], ast.Assign)
        self.assertIsInstance(main.body[2], ast.Pass)
        self.assertIsInstance(main.body[3], ast.Pass)

    def test_runtime_name(self) -> None:
        output = transform_source("f(cb)\n", options=Options(sentinel='cb', runtime='rt'))
        self.assertIn("import straightline.runtime as rt", output)
        self.assertIn("rt.await_(None, f, [], 0)", output)

    def test_errors(self) -> None:
        with self.assertRaises(SyntaxError):
            transform_source("def (")
        with self.assertRaises(SentinelMisuseError):
            transform_source("x = _\n")

class TestExecSource(unittest.TestCase):
    def test_not_rewritten(self) -> None:
        namespace: dict = {}
        exec_source("x = 1 + 1\n", namespace)
        self.assertEqual(namespace['x'], 2)

    def test_synchronous_program(self) -> None:
        def add(a, b, callback):
            callback(None, a + b)
        namespace = {'add': add}
        exec_source("""
import collections
def double(x, _):
    return add(x, x, _)
result = double(21, _)
squares = [n * n for n in range(3)]
""", namespace)
        self.assertEqual(namespace['result'], 42)
        self.assertEqual(namespace['squares'], [0, 1, 4])
        self.assertIn('collections', namespace)
        self.assertTrue(callable(namespace['double']))
        self.assertNotIn('n', namespace)

    def test_asynchronous_program(self) -> None:
        loop = Loop()
        namespace = {'loop': loop}
        exec_source("""
total = 0
for i in range(3):
    total += loop.later(i, _)
done = True
""", namespace)
        # the program is suspended in the first later() call
        self.assertEqual(namespace['total'], 0)
        self.assertNotIn('done', namespace)
        loop.run()
        self.assertEqual(namespace['total'], 3)
        self.assertTrue(namespace['done'])

    def test_continuation_aware_chain(self) -> None:
        loop = Loop()
        namespace = {'loop': loop}
        exec_source("""
def g(x, _):
    return loop.later(x + 40, _)
def f(x, _):
    return g(x, _) + 1
""", namespace)
        results = Results()
        namespace['f'](1, results)
        self.assertEqual(results.calls, [])
        loop.run()
        self.assertEqual(results.calls, [(None, 42)])

    def test_decorated_function(self) -> None:
        loop = Loop()
        namespace = {'loop': loop, 'calls': []}
        exec_source("""
import functools
def logged(fn):
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        calls.append(args[0])
        return fn(*args, **kwargs)
    return wrapper
@logged
def g(x, _):
    return loop.later(x + 40, _)
def f(x, _):
    return g(x, _) + 1
result = f(1, _)
""", namespace)
        loop.run()
        self.assertEqual(namespace['result'], 42)
        self.assertEqual(namespace['calls'], [1])

    def test_assignment_expression_in_comprehension(self) -> None:
        namespace = {'now': now}
        exec_source("""
v = now(1, _)
squares = [last := n * n for n in range(3)]
total = sum(running := v + n for n in range(2))
""", namespace)
        self.assertEqual(namespace['squares'], [0, 1, 4])
        self.assertEqual(namespace['last'], 4)
        self.assertEqual(namespace['running'], 2)
        self.assertEqual(namespace['total'], 3)
        self.assertNotIn('n', namespace)

    def test_error_handling(self) -> None:
        namespace = {'fail_now': fail_now, 'now': now}
        exec_source("""
try:
    x = fail_now(ValueError("bad"), _)
except ValueError as e:
    message = str(e)
else:
    message = None
value = now(5, _)
""", namespace)
        self.assertEqual(namespace['message'], "bad")
        self.assertEqual(namespace['value'], 5)
        self.assertNotIn('x', namespace)

    def test_unhandled_synchronous_error(self) -> None:
        with self.assertRaises(ValueError):
            exec_source("x = fail_now(ValueError('nobody caught me'), _)\n", {'fail_now': fail_now})

    def test_unhandled_asynchronous_error(self) -> None:
        loop = Loop()
        exec_source("loop.fail_later(KeyError('later'), _)\n", {'loop': loop})
        with self.assertRaises(KeyError):
            loop.run()

    def test_module_level_names(self) -> None:
        namespace = {'now': now}
        exec_source('''"""the docstring"""
from os.path import *
count: int = now(3, _)
label: str
class Thing:
    size = 10
if count:
    import json as serializer
''', namespace)
        self.assertEqual(namespace['__doc__'], "the docstring")
        self.assertEqual(namespace['count'], 3)
        self.assertNotIn('label', namespace)
        self.assertEqual(namespace['Thing'].size, 10)
        self.assertIn('join', namespace)
        self.assertEqual(namespace['serializer'].__name__, 'json')

    def test_compile_source(self) -> None:
        code = compile_source("y = now(1, _)\n", "<test>")
        self.assertEqual(code.co_filename, "<test>")
        namespace = {'now': now}
        exec(code, namespace)
        self.assertEqual(namespace['y'], 1)
