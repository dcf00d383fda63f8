from straightline.tests.trio_test_case import TrioTestCase
from straightline.runtime import spawn, await_
from straightline.program import exec_source
import trio

class MyException(Exception):
    pass

async def fail() -> None:
    await trio.sleep(0)
    raise MyException("ha ha")

class TestTrioHost(TrioTestCase):
    async def asyncSetUp(self) -> None:
        self.sleep = self.host.callbackify(trio.sleep)

    async def test_spawned_chain(self) -> None:
        def g(x, cb):
            await_(None, self.sleep, [0], 1)
            return x + 40
        g = spawn(g, 1)
        def f(x, cb):
            return await_(None, g, [x], 1) + 1
        f = spawn(f, 1)
        future = f(1)
        self.assertFalse(future.done())
        self.assertEqual(await self.host.wait(future), 42)

    async def test_already_done(self) -> None:
        self.assertEqual(await self.host.wait(spawn(lambda cb: "now", 0)()), "now")

    async def test_error(self) -> None:
        failing = self.host.callbackify(fail)
        def f(cb):
            await_(None, failing, [], 0)
        with self.assertRaises(MyException):
            await self.host.wait(spawn(f, 0)())

    async def test_error_caught(self) -> None:
        failing = self.host.callbackify(fail)
        def f(cb):
            try:
                await_(None, failing, [], 0)
            except MyException as e:
                return str(e)
        self.assertEqual(await self.host.wait(spawn(f, 0)()), "ha ha")

    async def test_call_soon(self) -> None:
        def f(cb):
            return await_(self.host, 'call_soon', [None, "later"], 0)
        future = spawn(f, 0)()
        self.assertFalse(future.done())
        self.assertEqual(await self.host.wait(future), "later")

    async def test_concurrent(self) -> None:
        "Two coroutines interleave on the one trio task that calls them back"
        log = []
        def worker(name, cb):
            for i in range(3):
                await_(None, self.sleep, [0], 1)
                log.append((name, i))
            return name
        worker = spawn(worker, 1)
        first, second = worker("a"), worker("b")
        self.assertEqual(await self.host.wait(first), "a")
        self.assertEqual(await self.host.wait(second), "b")
        self.assertEqual(sorted(log), [(name, i) for name in "ab" for i in range(3)])

    async def test_program(self) -> None:
        namespace = {'sleep': self.sleep, 'finished': trio.Event()}
        exec_source("""
total = 0
for i in range(3):
    sleep(0, _)
    total += i
finished.set()
""", namespace)
        self.assertEqual(namespace['total'], 0)
        await namespace['finished'].wait()
        self.assertEqual(namespace['total'], 3)
