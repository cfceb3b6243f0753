"""Unit of Work around an ``AsyncSession``.

``deep_save`` never rolls back a half-saved graph by itself; running it inside
a unit of work gives the graph all-or-nothing semantics:

    async with registry.unit_of_work() as uow:
        order = await registry["Order"]().fill_and_save(uow.session, payload)
        await uow.commit()
"""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orm_schemas.exceptions import NoSessionError


class UnitOfWork:
    """Groups the operations of one session into a single transaction.

    Rolls back automatically when the block exits with an exception.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """Initialize the unit of work.

        Args:
            session_factory: ``async_sessionmaker`` producing the session.
        """
        self.session_factory = session_factory
        self._session: AsyncSession | None = None

    @property
    def session(self) -> AsyncSession:
        if self._session is None:
            raise NoSessionError
        return self._session

    async def __aenter__(self) -> "UnitOfWork":
        self._session = self.session_factory()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if exc_type is not None:
            await self.rollback()
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def commit(self) -> None:
        """Commit the current transaction."""
        await self.session.commit()

    async def rollback(self) -> None:
        """Rollback the current transaction."""
        if self._session is not None:
            await self._session.rollback()

    async def flush(self) -> None:
        """Flush pending changes without committing."""
        await self.session.flush()
