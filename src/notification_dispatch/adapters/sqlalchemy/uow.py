"""Transaction that spans aggregate saves and outbox appends."""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING

from ...ports.unit_of_work import UnitOfWork
from ...primitives.exceptions import SessionManagementError, UnitOfWorkError

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from sqlalchemy.ext.asyncio import AsyncSession

    AsyncSessionFactory = Callable[[], AsyncSession]


class SQLAlchemyUnitOfWork(UnitOfWork):
    """
    Opens one session per unit of work and closes it on exit.

    Repositories and the outbox storage write through :attr:`session`, so a
    request, its delivery logs and the outbox rows it emits commit together::

        factory = async_sessionmaker(engine, expire_on_commit=False)
        async with SQLAlchemyUnitOfWork(session_factory=factory) as uow:
            await requests.save(request, 0, uow=uow)
            await outbox.save_messages(messages, uow=uow)
    """

    def __init__(self, session_factory: AsyncSessionFactory) -> None:
        self._session_factory = session_factory
        self._session: AsyncSession | None = None
        super().__init__()

    @property
    def session(self) -> AsyncSession:
        if self._session is None:
            raise UnitOfWorkError("Unit of work is not active")
        return self._session

    async def __aenter__(self) -> SQLAlchemyUnitOfWork:
        if self._session is not None:
            raise UnitOfWorkError("Unit of work is already active")
        try:
            self._session = self._session_factory()
            await self._session.begin()
        except Exception as e:  # noqa: BLE001
            self._session = None
            raise SessionManagementError(f"Failed to open session: {e}") from e
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        session = self.session
        try:
            await super().__aexit__(exc_type, exc_val, exc_tb)
        finally:
            self._session = None
            try:
                await session.close()
            except Exception as e:  # noqa: BLE001
                raise SessionManagementError(f"Failed to close session: {e}") from e

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except Exception as e:  # noqa: BLE001
            with contextlib.suppress(Exception):
                await self.rollback()
            raise UnitOfWorkError(f"Failed to commit transaction: {e}") from e

    async def rollback(self) -> None:
        try:
            if self.session.in_transaction():
                await self.session.rollback()
        except Exception as e:  # noqa: BLE001
            raise UnitOfWorkError(f"Failed to rollback transaction: {e}") from e
