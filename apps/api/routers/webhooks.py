"""Subscription lifecycle webhook sent by the membership site."""

from __future__ import annotations

import hmac
import logging
from datetime import date, datetime, timezone
from typing import Any, Optional, Union

from fastapi import APIRouter, Depends, Header
from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from services.accounts import AccountStore
from services.errors import BadSignature, InternalError

router = APIRouter()
logger = logging.getLogger(__name__)


def parse_cycle_datetime(value: Any) -> Any:
    """Accept ISO dates or datetimes; aware values are stored as naive UTC."""
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("date must not be empty")
        value = datetime.fromisoformat(text.replace("Z", "+00:00"))
    elif isinstance(value, date) and not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    if isinstance(value, datetime) and value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class SubscriptionUpdateRequest(BaseModel):
    external_account_id: Union[str, int] = Field(
        validation_alias=AliasChoices("external_account_id", "wp_user_id"),
    )
    email: Optional[str] = None
    plan_id: str = Field(min_length=1)
    monthly_credit_limit: int = Field(gt=0)
    cycle_start: datetime
    cycle_end: datetime
    active: bool = True

    @field_validator("external_account_id")
    @classmethod
    def _external_id_text(cls, value: Union[str, int]) -> str:
        text = str(value).strip()
        if not text:
            raise ValueError("external_account_id must not be empty")
        return text

    @field_validator("cycle_start", "cycle_end", mode="before")
    @classmethod
    def _cycle_dates(cls, value: Any) -> Any:
        return parse_cycle_datetime(value)

    @field_validator("cycle_start", "cycle_end")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        return parse_cycle_datetime(value)

    @model_validator(mode="after")
    def _cycle_order(self) -> "SubscriptionUpdateRequest":
        if self.cycle_end < self.cycle_start:
            raise ValueError("cycle_end must not precede cycle_start")
        return self


def require_webhook_secret(x_webhook_secret: Optional[str] = Header(default=None)) -> None:
    expected = settings.WEBHOOK_SECRET
    if not expected:
        return
    if not hmac.compare_digest(expected.encode("utf-8"), (x_webhook_secret or "").encode("utf-8")):
        raise BadSignature("Missing or invalid X-Webhook-Secret header.")


@router.post("/webhook/subscription-update")
async def subscription_update(
    request: SubscriptionUpdateRequest,
    _signed: None = Depends(require_webhook_secret),
    db: AsyncSession = Depends(get_db),
):
    """
    Upsert the account and its subscription for the given cycle and reset the
    cycle balance to the full allotment. Safe to replay.
    """
    external_id = str(request.external_account_id)
    store = AccountStore(db)
    try:
        account = await store.upsert_account(external_id, request.email)
        await store.upsert_subscription_and_reset_balance(
            account_id=account.id,
            plan_id=request.plan_id,
            allotment=request.monthly_credit_limit,
            cycle_start=request.cycle_start,
            cycle_end=request.cycle_end,
            active=request.active,
        )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("subscription sync failed external_id=%s plan=%s: %s", external_id, request.plan_id, exc)
        raise InternalError() from exc

    logger.info(
        "subscription synced external_id=%s plan=%s limit=%s cycle_start=%s active=%s",
        external_id,
        request.plan_id,
        request.monthly_credit_limit,
        request.cycle_start.isoformat(),
        request.active,
    )
    return {"ok": True}
