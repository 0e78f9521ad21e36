"""Order repository backed by SQLAlchemy."""
from typing import List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from storefront_checkout.database.connection import Database
from storefront_checkout.database.models import OrderRecord
from storefront_checkout.domain.exceptions import DuplicateOrderError
from storefront_checkout.domain.models import Order, OrderStatus

logger = structlog.get_logger(__name__)


def to_record(order: Order) -> OrderRecord:
    data = order.model_dump(mode="json")
    return OrderRecord(
        id=order.id,
        user_id=order.user_id,
        status=order.status.value,
        payment_method=order.payment_method.value,
        transaction_id=order.transaction_id,
        total=order.total,
        currency=order.currency,
        source=order.source.value,
        line_items=data["line_items"],
        shipping_info=data["shipping_info"],
        payment_result=data["payment_result"],
        created_at=order.created_at,
        estimated_delivery=order.estimated_delivery,
    )


def from_record(record: OrderRecord) -> Order:
    return Order.model_validate(
        {
            "id": record.id,
            "user_id": record.user_id,
            "line_items": record.line_items,
            "total": record.total,
            "currency": record.currency,
            "status": record.status,
            "shipping_info": record.shipping_info,
            "payment_method": record.payment_method,
            "payment_result": record.payment_result,
            "transaction_id": record.transaction_id,
            "source": record.source,
            "created_at": record.created_at,
            "estimated_delivery": record.estimated_delivery,
        }
    )


class SqlAlchemyOrderRepository:
    """Stores orders in the ``orders`` table."""

    def __init__(self, database: Database):
        self.database = database

    async def add(self, order: Order) -> None:
        async with self.database.session_factory() as session:
            session.add(to_record(order))
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                logger.error(
                    "order_insert_conflict",
                    order_id=order.id,
                    transaction_id=order.transaction_id,
                    error=str(e.orig),
                )
                raise DuplicateOrderError(order.id) from e

    async def get(self, order_id: str) -> Optional[Order]:
        async with self.database.session_factory() as session:
            record = await session.get(OrderRecord, order_id)
            return from_record(record) if record is not None else None

    async def get_by_transaction(self, transaction_id: str) -> Optional[Order]:
        stmt = select(OrderRecord).where(OrderRecord.transaction_id == transaction_id)
        async with self.database.session_factory() as session:
            record = (await session.execute(stmt)).scalar_one_or_none()
            return from_record(record) if record is not None else None

    async def list_for_user(self, user_id: Optional[str]) -> List[Order]:
        stmt = select(OrderRecord)
        if user_id is None:
            stmt = stmt.where(OrderRecord.user_id.is_(None))
        else:
            stmt = stmt.where(OrderRecord.user_id == user_id)
        stmt = stmt.order_by(OrderRecord.created_at.desc())

        async with self.database.session_factory() as session:
            result = await session.execute(stmt)
            return [from_record(record) for record in result.scalars().all()]

    async def set_status(self, order_id: str, status: OrderStatus) -> Optional[Order]:
        async with self.database.session_factory() as session:
            record = await session.get(OrderRecord, order_id)
            if record is None:
                return None
            record.status = status.value
            await session.commit()
            return from_record(record)
