"""SQLAlchemy ORM models for OrderGuard internal state."""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Float, Integer, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class PreAuthOrderDB(Base):
    __tablename__ = "preauth_orders"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    merchant_id: Mapped[str] = mapped_column(String, index=True)
    customer_email: Mapped[str] = mapped_column(String, index=True)
    device_fingerprint: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    order_amount: Mapped[float] = mapped_column(Float)
    status: Mapped[str] = mapped_column(String, index=True)
    composite_score: Mapped[int] = mapped_column(Integer)
    decision: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    payload: Mapped[dict] = mapped_column(JSONB)


class PostAuthOrderDB(Base):
    __tablename__ = "postauth_orders"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    merchant_id: Mapped[str] = mapped_column(String, index=True)
    status: Mapped[str] = mapped_column(String, index=True)
    days_monitored: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    payload: Mapped[dict] = mapped_column(JSONB)


class MonitoringRunDB(Base):
    """One row per order per merchant-local day the order was advanced."""

    __tablename__ = "monitoring_runs"
    __table_args__ = (UniqueConstraint("order_id", "day_key", name="uq_monitoring_run_day"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String, index=True)
    day_key: Mapped[str] = mapped_column(String)
    claimed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class SweepMarkerDB(Base):
    """One row per merchant per local day the scheduled sweep fired."""

    __tablename__ = "sweep_markers"
    __table_args__ = (UniqueConstraint("merchant_id", "day_key", name="uq_sweep_marker_day"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    merchant_id: Mapped[str] = mapped_column(String, index=True)
    day_key: Mapped[str] = mapped_column(String)
    ran_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class EvidencePackageDB(Base):
    __tablename__ = "evidence_packages"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    package_id: Mapped[str] = mapped_column(String, unique=True)
    order_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    status: Mapped[str] = mapped_column(String, index=True)
    payload: Mapped[dict] = mapped_column(JSONB)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class MerchantPolicyDB(Base):
    __tablename__ = "merchant_policies"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    merchant_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    settings: Mapped[dict] = mapped_column(JSONB, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
