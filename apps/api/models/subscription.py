"""Subscription model for billing-plan cycles."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class Subscription(Base):
    """One billing cycle of a plan for an account. Unique per (account, cycle_start)."""

    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint("account_id", "cycle_start", name="uq_subscriptions_account_cycle"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(String, ForeignKey("accounts.id"), nullable=False, index=True)
    plan_id = Column(String, nullable=False)
    monthly_credit_limit = Column(Integer, nullable=False)
    cycle_start = Column(DateTime, nullable=False)
    cycle_end = Column(DateTime, nullable=False)
    active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    account = relationship("Account", back_populates="subscriptions")
