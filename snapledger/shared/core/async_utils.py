import inspect
from collections.abc import AsyncIterable, AsyncIterator, Iterable
from typing import Any


async def maybe_await(value: Any) -> Any:
    """Await `value` if it's awaitable, otherwise return it directly.

    Lets converters and sources be plain functions in most resource types and
    coroutines where the provider SDK forces it.
    """
    if inspect.isawaitable(value):
        return await value
    return value


async def iterate_items(items: Iterable[Any] | AsyncIterable[Any]) -> AsyncIterator[Any]:
    """Yield from a sync or async iterable uniformly."""
    if isinstance(items, AsyncIterable):
        async for item in items:
            yield item
        return
    for item in items:
        yield item
