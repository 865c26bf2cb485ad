"""CreditBalance model: the mutable remaining-credits counter of a cycle."""

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class CreditBalance(Base):
    """Remaining credits for one account cycle. Only the ledger and the subscription sync write it."""

    __tablename__ = "credit_balances"
    __table_args__ = (
        UniqueConstraint("account_id", "cycle_start", name="uq_credit_balances_account_cycle"),
        CheckConstraint("credits_remaining >= 0", name="ck_credit_balances_non_negative"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(String, ForeignKey("accounts.id"), nullable=False, index=True)
    cycle_start = Column(DateTime, nullable=False)
    credits_remaining = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    account = relationship("Account", back_populates="credit_balances")
