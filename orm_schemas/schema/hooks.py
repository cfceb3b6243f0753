"""Lifecycle hooks, installed as SQLAlchemy mapper events.

Hook names are either mapper event names (``before_insert``, ``after_update``...)
or one of the aliases below. A hook receives ``(mapper, connection, target)``.
"""

import logging
from collections.abc import Callable
from typing import Any

from sqlalchemy import event

from orm_schemas.util import to_list

logger = logging.getLogger("orm-schemas")

MAPPER_EVENTS = (
    "before_insert",
    "after_insert",
    "before_update",
    "after_update",
    "before_delete",
    "after_delete",
)

HOOK_ALIASES: dict[str, tuple[str, ...]] = {
    "before_create": ("before_insert",),
    "after_create": ("after_insert",),
    "before_save": ("before_insert", "before_update"),
    "after_save": ("after_insert", "after_update"),
    "before_destroy": ("before_delete",),
    "after_destroy": ("after_delete",),
    "beforeCreate": ("before_insert",),
    "afterCreate": ("after_insert",),
    "beforeUpdate": ("before_update",),
    "afterUpdate": ("after_update",),
    "beforeSave": ("before_insert", "before_update"),
    "afterSave": ("after_insert", "after_update"),
    "beforeDestroy": ("before_delete",),
    "afterDestroy": ("after_delete",),
}


def resolve_hook_events(name: str) -> tuple[str, ...]:
    if name in MAPPER_EVENTS:
        return (name,)
    if name in HOOK_ALIASES:
        return HOOK_ALIASES[name]
    raise ValueError(f"Unknown hook '{name}', known hooks: {', '.join((*MAPPER_EVENTS, *HOOK_ALIASES))}")  # noqa: TRY003


def install_hooks(model_cls: type, hooks: dict[str, Callable | list[Callable] | Any]) -> None:
    """Register every declared hook on the model's mapper."""
    for name, callbacks in hooks.items():
        for event_name in resolve_hook_events(name):
            for callback in to_list(callbacks):
                event.listen(model_cls, event_name, callback)
                logger.debug(f"{model_cls.__name__} hook {name} -> {event_name}")
