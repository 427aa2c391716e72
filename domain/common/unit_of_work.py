"""Unit of Work abstraction"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.ledger.repository import (
    CancellationRepository,
    OrderRepository,
    RefundRepository,
)


class AbstractUnitOfWork(ABC):
    """Transaction boundary used by application services"""

    order_repository: OrderRepository
    refund_repository: RefundRepository
    cancellation_repository: CancellationRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly
        self.order_repository = None  # type: ignore[assignment]
        self.refund_repository = None  # type: ignore[assignment]
        self.cancellation_repository = None  # type: ignore[assignment]

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # commit only for writable units that were not committed explicitly
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        """Commit the transaction"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """Roll back the transaction"""
        ...
