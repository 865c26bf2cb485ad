"""UsageRecord model: append-only audit log of credit debits."""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class UsageRecord(Base):
    """Immutable usage log entry."""

    __tablename__ = "usage_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(String, ForeignKey("accounts.id"), nullable=False, index=True)
    feature_type = Column(String, nullable=False, index=True)
    credits_spent = Column(Integer, nullable=False)
    # "metadata" is reserved on declarative classes.
    metadata_json = Column("metadata", JSON, nullable=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    account = relationship("Account", back_populates="usage_records")
