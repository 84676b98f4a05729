import asyncio

from src.codeforge.services.streaming import iter_as_async


class _Source:
    def __init__(self, items):
        self._items = iter(items)
        self.closed = False

    def __iter__(self):
        return self

    def __next__(self):
        return next(self._items)

    def close(self):
        self.closed = True


def test_iter_as_async_yields_in_order_and_closes():
    src = _Source(["a", "b", "c"])

    async def collect():
        return [x async for x in iter_as_async(src)]

    assert asyncio.run(collect()) == ["a", "b", "c"]
    assert src.closed


def test_early_stop_closes_source():
    src = _Source(range(100))

    async def first_two():
        out = []
        agen = iter_as_async(src)
        async for x in agen:
            out.append(x)
            if len(out) == 2:
                break
        await agen.aclose()
        return out

    assert asyncio.run(first_two()) == [0, 1]
    assert src.closed
