"""
SQLAlchemy-backed scheduling store (async engine; SQLite or PostgreSQL).

Double booking is blocked at the database level by a partial unique index
on (resource_id, service_id, start_datetime) restricted to active
statuses; the resulting IntegrityError is surfaced as ConflictError.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import AsyncIterator, Collection, Iterable, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    delete,
    select,
    text,
    update,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from salon_scheduler.errors import ConflictError, InternalError
from salon_scheduler.schemas.booking_schema import Booking, BookingStatus
from salon_scheduler.schemas.scheduling_schema import OperatingHours, ServiceOffering

logger = logging.getLogger(__name__)

_ACTIVE_ONLY = text("status IN ('pending', 'confirmed')")


class Base(DeclarativeBase):
    pass


class OperatingHoursRow(Base):
    __tablename__ = "operating_hours"

    resource_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    # 0=Sun..6=Sat
    day_of_week: Mapped[int] = mapped_column(Integer, primary_key=True)
    is_open: Mapped[bool] = mapped_column(Boolean, default=True)
    start_time: Mapped[str] = mapped_column(String(5), default="09:00")
    end_time: Mapped[str] = mapped_column(String(5), default="17:00")
    slot_duration_minutes: Mapped[int] = mapped_column(Integer, default=30)
    break_time_minutes: Mapped[int] = mapped_column(Integer, default=15)
    max_bookings_per_slot: Mapped[int] = mapped_column(Integer, default=1)


class ServiceOfferingRow(Base):
    __tablename__ = "service_offerings"

    resource_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    service_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    is_available: Mapped[bool] = mapped_column(Boolean, default=True)
    # comma-separated weekdays, NULL = every day
    available_days: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)


class BookingRow(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index(
            "uq_bookings_active_slot",
            "resource_id",
            "service_id",
            "start_datetime",
            unique=True,
            sqlite_where=_ACTIVE_ONLY,
            postgresql_where=_ACTIVE_ONLY,
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    resource_id: Mapped[str] = mapped_column(String(64), index=True)
    service_id: Mapped[str] = mapped_column(String(64))
    start_datetime: Mapped[datetime] = mapped_column(DateTime)
    status: Mapped[str] = mapped_column(String(16), index=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    customer_name: Mapped[str] = mapped_column(String(200))
    customer_phone: Mapped[str] = mapped_column(String(32))
    customer_email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    customer_user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    payment_method: Mapped[str] = mapped_column(String(16))
    created_at: Mapped[datetime] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(DateTime)


def _days_to_column(days: Optional[frozenset[int]]) -> Optional[str]:
    if days is None:
        return None
    return ",".join(str(d) for d in sorted(days))


def _days_from_column(raw: Optional[str]) -> Optional[frozenset[int]]:
    if raw is None:
        return None
    return frozenset(int(part) for part in raw.split(",") if part.strip())


def _offering_from_row(row: ServiceOfferingRow) -> ServiceOffering:
    return ServiceOffering(
        resource_id=row.resource_id,
        service_id=row.service_id,
        duration_minutes=row.duration_minutes,
        price=row.price,
        is_available=row.is_available,
        available_days=_days_from_column(row.available_days),
    )


def _booking_from_row(row: BookingRow) -> Booking:
    return Booking.model_validate(row, from_attributes=True)


def _booking_to_row(booking: Booking) -> BookingRow:
    data = booking.model_dump()
    data["status"] = booking.status.value
    data["payment_method"] = booking.payment_method.value
    return BookingRow(**data)


class SqlStore:
    """Store implementation over an async SQLAlchemy engine."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._session_factory = async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )

    @classmethod
    def from_url(cls, database_url: str, echo: bool = False, **engine_kwargs) -> "SqlStore":
        return cls(create_async_engine(database_url, echo=echo, **engine_kwargs))

    async def init_db(self) -> None:
        """Create the tables if they don't exist."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            try:
                yield session
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error("Storage failure: %s", exc)
                raise InternalError(f"Storage failure: {exc.__class__.__name__}") from exc

    # ------------------------------------------------------------------ #
    # Configuration owned by other parts of the application
    # ------------------------------------------------------------------ #

    async def put_operating_hours(self, hours: OperatingHours) -> None:
        async with self._session() as session:
            await session.merge(OperatingHoursRow(**hours.model_dump()))
            await session.commit()

    async def put_service_offering(self, offering: ServiceOffering) -> None:
        data = offering.model_dump()
        data["available_days"] = _days_to_column(offering.available_days)
        async with self._session() as session:
            await session.merge(ServiceOfferingRow(**data))
            await session.commit()

    async def get_operating_hours(
        self, resource_id: str, day_of_week: int
    ) -> Optional[OperatingHours]:
        async with self._session() as session:
            row = await session.get(OperatingHoursRow, (resource_id, day_of_week))
            if row is None:
                return None
            return OperatingHours.model_validate(row, from_attributes=True)

    async def get_service_offering(
        self, resource_id: str, service_id: str
    ) -> Optional[ServiceOffering]:
        async with self._session() as session:
            row = await session.get(ServiceOfferingRow, (resource_id, service_id))
            return _offering_from_row(row) if row is not None else None

    # ------------------------------------------------------------------ #
    # Bookings
    # ------------------------------------------------------------------ #

    async def list_bookings(
        self,
        resource_id: str,
        service_id: str,
        start: datetime,
        end: datetime,
        statuses: Collection[BookingStatus],
    ) -> list[Booking]:
        statement = (
            select(BookingRow)
            .where(
                BookingRow.resource_id == resource_id,
                BookingRow.service_id == service_id,
                BookingRow.start_datetime >= start,
                BookingRow.start_datetime < end,
                BookingRow.status.in_([s.value for s in statuses]),
            )
            .order_by(BookingRow.start_datetime)
        )
        async with self._session() as session:
            result = await session.execute(statement)
            return [_booking_from_row(row) for row in result.scalars().all()]

    async def find_booking_at(
        self,
        resource_id: str,
        service_id: str,
        start: datetime,
        statuses: Collection[BookingStatus],
    ) -> Optional[Booking]:
        statement = (
            select(BookingRow)
            .where(
                BookingRow.resource_id == resource_id,
                BookingRow.service_id == service_id,
                BookingRow.start_datetime == start,
                BookingRow.status.in_([s.value for s in statuses]),
            )
            .limit(1)
        )
        async with self._session() as session:
            row = (await session.execute(statement)).scalars().first()
            return _booking_from_row(row) if row is not None else None

    async def add_booking(self, booking: Booking) -> Booking:
        async with self._session() as session:
            session.add(_booking_to_row(booking))
            try:
                await session.commit()
            except IntegrityError as exc:
                # Unique index on active slots: another request won the race.
                await session.rollback()
                raise ConflictError("This time slot is already booked") from exc
        return booking

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        async with self._session() as session:
            row = await session.get(BookingRow, booking_id)
            return _booking_from_row(row) if row is not None else None

    async def get_bookings(self, booking_ids: Iterable[str]) -> list[Booking]:
        ids = list(booking_ids)
        if not ids:
            return []
        async with self._session() as session:
            result = await session.execute(select(BookingRow).where(BookingRow.id.in_(ids)))
            return [_booking_from_row(row) for row in result.scalars().all()]

    async def update_status(
        self, booking_ids: Iterable[str], status: BookingStatus, updated_at: datetime
    ) -> int:
        ids = list(booking_ids)
        if not ids:
            return 0
        statement = (
            update(BookingRow)
            .where(BookingRow.id.in_(ids))
            .values(status=status.value, updated_at=updated_at)
        )
        async with self._session() as session:
            try:
                result = await session.execute(statement)
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise ConflictError("This time slot is already booked") from exc
            return result.rowcount

    async def delete_booking(self, booking_id: str) -> bool:
        async with self._session() as session:
            result = await session.execute(delete(BookingRow).where(BookingRow.id == booking_id))
            await session.commit()
            return result.rowcount > 0
