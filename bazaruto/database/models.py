"""
SQLAlchemy models for the marketplace entities.
Used by postgres_real when DATABASE_URL is set.
"""
from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4
from sqlalchemy import JSON, Boolean, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Amounts are handled as floats in the domain layer.
MONEY = Numeric(18, 2, asdecimal=False)


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class SoftDeleteMixin(TimestampMixin):
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)


class Customer(SoftDeleteMixin, Base):
    __tablename__ = "customers"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(String(128), default="")
    last_name: Mapped[str] = mapped_column(String(128), default="")
    status: Mapped[str] = mapped_column(String(32), default="active", index=True)
    kyc_status: Mapped[str] = mapped_column(String(32), default="pending")
    aml_status: Mapped[str] = mapped_column(String(32), default="pending")
    risk_profile: Mapped[str] = mapped_column(String(32), default="low")
    customer_tier: Mapped[str] = mapped_column(String(32), default="bronze")
    default_payment_method: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    addresses: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)


class Product(SoftDeleteMixin, Base):
    __tablename__ = "products"

    name: Mapped[str] = mapped_column(String(256), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    base_price: Mapped[float] = mapped_column(MONEY, default=0)
    coverage_amount: Mapped[float] = mapped_column(MONEY, default=0)
    coverage_period_days: Mapped[int] = mapped_column(Integer, default=365)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    description: Mapped[str] = mapped_column(Text, default="")
    partner_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(32), default="active", index=True)
    effective_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    expiration_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class Quote(SoftDeleteMixin, Base):
    __tablename__ = "quotes"

    product_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    quote_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    base_price: Mapped[float] = mapped_column(MONEY, nullable=False)
    final_price: Mapped[float] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    status: Mapped[str] = mapped_column(String(32), default="pending", index=True)
    valid_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    coverage_amount: Mapped[float] = mapped_column(MONEY, default=0)
    payment_frequency: Mapped[str] = mapped_column(String(16), default="annually")
    effective_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expiration_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    risk_factors: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    discount: Mapped[float] = mapped_column(MONEY, default=0)
    tax: Mapped[float] = mapped_column(MONEY, default=0)


class Policy(SoftDeleteMixin, Base):
    __tablename__ = "policies"

    product_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    policy_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    premium: Mapped[float] = mapped_column(MONEY, nullable=False)
    coverage_amount: Mapped[float] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    payment_frequency: Mapped[str] = mapped_column(String(16), default="annually")
    status: Mapped[str] = mapped_column(String(32), default="active", index=True)
    effective_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expiration_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    renewal_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    auto_renew: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    grace_period_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    quote_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    renewed_from_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class Claim(SoftDeleteMixin, Base):
    __tablename__ = "claims"

    policy_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    claim_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    claim_amount: Mapped[float] = mapped_column(MONEY, nullable=False)
    paid_amount: Mapped[float] = mapped_column(MONEY, default=0)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    status: Mapped[str] = mapped_column(String(32), default="submitted", index=True)
    incident_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reported_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    denial_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    documents: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)


class Payment(SoftDeleteMixin, Base):
    __tablename__ = "payments"

    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    payment_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    policy_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    subscription_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    amount: Mapped[float] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    status: Mapped[str] = mapped_column(String(32), default="pending", index=True)
    payment_method: Mapped[str] = mapped_column(String(64), default="")
    payment_provider: Mapped[str] = mapped_column(String(64), default="simulated")
    description: Mapped[str] = mapped_column(Text, default="")
    transaction_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refund_amount: Mapped[float] = mapped_column(MONEY, default=0)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class ClaimWorkflow(TimestampMixin, Base):
    __tablename__ = "claim_workflows"

    claim_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), default="pending")
    current_stage: Mapped[str] = mapped_column(String(64), default="")
    stages: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
