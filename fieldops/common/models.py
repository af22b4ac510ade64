from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


class WorkOrder(Base):
    __tablename__ = "work_orders"
    __table_args__ = (UniqueConstraint("order_no", name="uq_work_orders_order_no"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    order_no: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending_review")
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    service_date: Mapped[str | None] = mapped_column(String(32))
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)
    driver_name: Mapped[str | None] = mapped_column(String(255))
    location_name: Mapped[str | None] = mapped_column(String(255))
    optimoroute_status: Mapped[str | None] = mapped_column(String(32))
    completion_status: Mapped[str | None] = mapped_column(String(32))
    has_images: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    signature_url: Mapped[str | None] = mapped_column(Text)
    tracking_url: Mapped[str | None] = mapped_column(Text)
    service_notes: Mapped[str | None] = mapped_column(Text)
    tech_notes: Mapped[str | None] = mapped_column(Text)
    search_response: Mapped[Any | None] = mapped_column(JSON)
    completion_response: Mapped[Any | None] = mapped_column(JSON)
    run_id: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class AutoImportLog(Base):
    __tablename__ = "auto_import_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    execution_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    result: Mapped[Any] = mapped_column(JSON, nullable=False)
    run_id: Mapped[str | None] = mapped_column(String(64))


class SystemConfig(Base):
    __tablename__ = "system_config"
    __table_args__ = (UniqueConstraint("key", name="uq_system_config_key"),)

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    key: Mapped[str] = mapped_column(Text, nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
