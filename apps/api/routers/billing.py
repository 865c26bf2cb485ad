"""Metered billing router: charge a feature usage and read the usage dashboard."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Depends, Query, Request
from pydantic import AliasChoices, BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from services.credits import consume_feature, get_usage_summary
from services.errors import GatewayError, InternalError
from services.pricing import DEFAULT_PRICING, PricingTable

router = APIRouter()
logger = logging.getLogger(__name__)


class ConsumeRequest(BaseModel):
    external_account_id: Union[str, int] = Field(
        validation_alias=AliasChoices("external_account_id", "wp_user_id"),
    )
    feature_type: str = Field(min_length=1)
    estimated_cost: Any = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("external_account_id")
    @classmethod
    def _external_id_text(cls, value: Union[str, int]) -> str:
        text = str(value).strip()
        if not text:
            raise ValueError("external_account_id must not be empty")
        return text


class ConsumeResponse(BaseModel):
    ok: bool = True
    credits_remaining: int
    charged: int


def get_pricing_table(request: Request) -> PricingTable:
    return getattr(request.app.state, "pricing", None) or DEFAULT_PRICING


@router.post("/consume", response_model=ConsumeResponse)
async def consume(
    request: ConsumeRequest,
    pricing: PricingTable = Depends(get_pricing_table),
    db: AsyncSession = Depends(get_db),
):
    """Charge one feature usage against the caller's current cycle balance."""
    try:
        result = await consume_feature(
            db,
            external_account_id=str(request.external_account_id),
            feature_type=request.feature_type,
            estimated_cost=request.estimated_cost,
            metadata=request.metadata,
            pricing=pricing,
            lock_timeout_ms=settings.LEDGER_LOCK_TIMEOUT_MS,
        )
    except GatewayError:
        raise
    except Exception as exc:
        logger.exception(
            "consume crashed external_id=%s feature=%s: %s",
            request.external_account_id,
            request.feature_type,
            exc,
        )
        raise InternalError() from exc

    return ConsumeResponse(credits_remaining=result.credits_remaining, charged=result.charged)


@router.get("/usage/{external_account_id}")
async def usage_summary(
    external_account_id: str,
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Plan, remaining credits and recent usage for the dashboard."""
    try:
        return await get_usage_summary(
            db,
            external_account_id=external_account_id,
            limit=limit or settings.USAGE_RECENT_LIMIT,
        )
    except GatewayError:
        raise
    except Exception as exc:
        logger.exception("usage query crashed external_id=%s: %s", external_account_id, exc)
        raise InternalError() from exc
