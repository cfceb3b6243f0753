"""Helpers shared by model registration, association wiring and deep save."""

import asyncio
import re
from collections.abc import Awaitable
from typing import Any, TypeVar

T = TypeVar("T")

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def to_list(item: Any) -> list[Any]:
    """Wrap a single value in a list, pass lists and tuples through as lists.

    Args:
        item: A single value, a list or a tuple.

    Returns:
        A list containing the item(s).
    """
    if isinstance(item, (list, tuple)):
        return list(item)
    return [item]


def snake_case(name: str) -> str:
    """Convert ``OrderItem`` or ``orderItem`` to ``order_item``."""
    return _CAMEL_BOUNDARY.sub("_", name).replace("-", "_").lower()


def camel_case(name: str) -> str:
    """Convert ``OrderItem`` or ``order_item`` to ``orderItem``."""
    head, *tail = snake_case(name).split("_")
    return head + "".join(part.capitalize() for part in tail)


def pluralize(word: str) -> str:
    """Naive english plural, good enough for accessor names."""
    if re.search(r"[^aeiou]y$", word):
        return word[:-1] + "ies"
    if re.search(r"(s|x|z|ch|sh)$", word):
        return word + "es"
    return word + "s"


def attribute_name(name: str, underscored: bool) -> str:
    """Apply the naming convention of a model to an attribute name."""
    return snake_case(name) if underscored else camel_case(name)


def foreign_key_name(model_name: str, key: str, underscored: bool) -> str:
    """Name of the column that references ``model_name.key``, e.g. ``user_id`` or ``userId``."""
    return attribute_name(f"{snake_case(model_name)}_{key}", underscored)


async def gather_or_cancel(*aws: Awaitable[T]) -> list[T]:
    """Run awaitables concurrently like ``asyncio.gather``.

    On the first failure the remaining tasks are cancelled and awaited before
    the error propagates, so none of them keeps running in the background.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
