"""Per-instance persistence primitives over an ``AsyncSession``.

``save``, ``create_related`` and ``set_association`` each run their ORM work
inside ``AsyncSession.run_sync`` so relationship collections can lazy-load,
then flush. An ``AsyncSession`` does not allow concurrent operations, so the
primitives of one session are serialised with a lock kept in ``session.info``;
the deep-save tasks that call them still run concurrently.

Any failure is wrapped in :class:`~orm_schemas.exceptions.PersistenceError`
carrying the deep-path of the instance being persisted.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from orm_schemas.associations import AssociationEdge, AssociationKind
from orm_schemas.exceptions import PersistenceError
from orm_schemas.util import to_list

logger = logging.getLogger("orm-schemas")

R = TypeVar("R")

_LOCK_KEY = "orm_schemas.lock"


def session_lock(session: AsyncSession) -> asyncio.Lock:
    """The lock serialising the primitives of ``session``."""
    lock = session.info.get(_LOCK_KEY)
    if lock is None:
        lock = session.info[_LOCK_KEY] = asyncio.Lock()
    return lock


async def _run(session: AsyncSession, operation: str, deep_path: str, fn: Callable[[Session], R]) -> R:
    async with session_lock(session):
        try:
            return await session.run_sync(fn)
        except Exception as e:
            raise PersistenceError(operation, deep_path) from e


def _primary_key_value(instance: Any) -> Any:
    mapper = inspect(instance).mapper
    return mapper.primary_key_from_instance(instance)[0]


async def save(session: AsyncSession, instance: Any) -> Any:
    """Insert or update ``instance`` and flush.

    A new record is added to the session. An existing record that the session
    does not track yet is merged, which returns the session's own copy.

    Returns:
        The persistent instance, ``instance`` itself unless it was merged.
    """

    def _save(sync_session: Session) -> Any:
        state = inspect(instance)
        if state.persistent:
            persisted = instance
        elif instance.is_new_record or state.pending:
            sync_session.add(instance)
            persisted = instance
        else:
            persisted = sync_session.merge(instance)
        sync_session.flush()
        return persisted

    persisted = await _run(session, "save", instance.deep_path, _save)
    logger.debug(f"Saved {instance.deep_path}")
    return persisted


async def create_related(
    session: AsyncSession,
    parent: Any,
    edge: AssociationEdge,
    values: dict[str, Any],
    through_values: dict[str, Any] | None = None,
    deep_path: str | None = None,
) -> Any:
    """Create a ``edge.target`` record already linked to ``parent``.

    Args:
        session: The session to persist with.
        parent: Persisted owner of ``edge``.
        edge: The association, ``edge.source`` is ``parent``'s model.
        values: Column values of the new record.
        through_values: Extra columns of the join row, for a belongs-to-many
            association whose through-table is a registered model.
        deep_path: Deep-path of the record being created, for error reporting.

    Returns:
        The new, flushed record. It carries no nested association data.
    """

    def _create(sync_session: Session) -> Any:
        child = edge.target(**values)
        sync_session.add(child)
        if edge.kind is AssociationKind.BELONGS_TO_MANY and edge.through_model is not None:
            sync_session.flush()
            link_values = dict(through_values or {})
            link_values[edge.foreign_key] = _primary_key_value(parent)
            link_values[edge.other_key] = _primary_key_value(child)
            sync_session.add(edge.through_model(**link_values))
            sync_session.flush()
            sync_session.expire(parent, [edge.accessor])
            return child

        if edge.kind.is_collection:
            getattr(parent, edge.accessor).append(child)
        else:
            setattr(parent, edge.accessor, child)
        sync_session.flush()
        return child

    path = deep_path or f"{parent.deep_path}.{edge.accessor}"
    child = await _run(session, f"create_related({edge.accessor})", path, _create)
    logger.debug(f"Created {path} through {edge!r}")
    return child


async def set_association(session: AsyncSession, instance: Any, edge: AssociationEdge, value: Any) -> None:
    """Replace the records linked to ``instance`` through ``edge`` and flush.

    ``None`` clears a collection edge and unlinks a single-valued one.
    """
    if edge.kind.is_collection:
        value = [] if value is None else to_list(value)

    def _set(sync_session: Session) -> None:
        setattr(instance, edge.accessor, value)
        sync_session.flush()

    await _run(session, f"set_association({edge.accessor})", instance.deep_path, _set)


async def get_association(session: AsyncSession, instance: Any, edge: AssociationEdge) -> Any:
    """Load the records linked to ``instance`` through ``edge``."""
    return await _run(session, f"get_association({edge.accessor})", instance.deep_path, lambda _: getattr(instance, edge.accessor))
