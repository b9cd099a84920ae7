import pytest

from snapledger.shared.core.async_utils import iterate_items, maybe_await


@pytest.mark.asyncio
async def test_maybe_await_returns_value_for_non_awaitable():
    value = {"ok": True}
    result = await maybe_await(value)
    assert result is value


@pytest.mark.asyncio
async def test_maybe_await_awaits_coroutine():
    async def sample():
        return "done"

    result = await maybe_await(sample())
    assert result == "done"


@pytest.mark.asyncio
async def test_iterate_items_handles_sync_and_async_iterables():
    async def agen():
        yield 1
        yield 2

    assert [item async for item in iterate_items([1, 2])] == [1, 2]
    assert [item async for item in iterate_items(agen())] == [1, 2]
    assert [item async for item in iterate_items(iter(()))] == []
