"""Transaction boundary for order submission."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import structlog
from sqlalchemy.orm import Session, sessionmaker

from dotmac.commerce.db import get_session_factory

logger = structlog.get_logger(__name__)


@runtime_checkable
class UnitOfWork(Protocol):
    """One atomic transaction around entity creation."""

    def begin(self) -> None:
        ...

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...

    def is_active(self) -> bool:
        ...


class SQLAlchemyUnitOfWork:
    """Unit of work backed by a single SQLAlchemy session transaction."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._session_factory = session_factory
        self.session: Session | None = None

    def begin(self) -> None:
        if self.session is not None:
            raise RuntimeError("Unit of work already started")

        factory = self._session_factory or get_session_factory()
        self.session = factory()
        self.session.begin()
        logger.debug("uow.begin")

    def commit(self) -> None:
        if self.session is None:
            raise RuntimeError("Unit of work not started")

        try:
            self.session.commit()
            logger.debug("uow.commit")
        finally:
            self._close()

    def rollback(self) -> None:
        if self.session is None:
            return

        try:
            self.session.rollback()
            logger.debug("uow.rollback")
        finally:
            self._close()

    def is_active(self) -> bool:
        return self.session is not None and self.session.in_transaction()

    def _close(self) -> None:
        if self.session is not None:
            self.session.close()
        self.session = None


__all__ = ["UnitOfWork", "SQLAlchemyUnitOfWork"]
