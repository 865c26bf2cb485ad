"""Credit ledger and usage accounting.

``CreditLedger.consume`` is the only code path that decrements a balance.
It runs one database transaction: lock the balance row, re-check it, debit,
append the usage record, commit. Any failure rolls the whole thing back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import func, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credit_balance import CreditBalance
from models.usage_record import UsageRecord
from services.accounts import AccountStore
from services.errors import (
    AccountNotFound,
    BalanceMissing,
    GatewayError,
    InsufficientCredits,
    NoActiveSubscription,
    TransactionFailed,
)
from services.pricing import PricingTable, resolve_cost

logger = logging.getLogger(__name__)


@dataclass
class ConsumeResult:
    credits_remaining: int
    charged: int


class CreditLedger:
    """Row-locked debit of a credit balance plus its usage record."""

    def __init__(self, session: AsyncSession, lock_timeout_ms: Optional[int] = None):
        self.session = session
        self.lock_timeout_ms = lock_timeout_ms

    async def _apply_lock_timeout(self) -> None:
        bind = self.session.bind
        if not self.lock_timeout_ms or bind is None or bind.dialect.name != "postgresql":
            return
        await self.session.execute(text(f"SET LOCAL lock_timeout = {int(self.lock_timeout_ms)}"))

    async def consume(
        self,
        *,
        account_id: str,
        balance_id: int,
        feature_type: str,
        cost: int,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> ConsumeResult:
        """Debit ``cost`` from the balance row and log it, atomically."""
        try:
            async with self.session.begin():
                await self._apply_lock_timeout()

                locked = await self.session.execute(
                    select(CreditBalance)
                    .where(CreditBalance.id == balance_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )
                balance = locked.scalar_one_or_none()
                if balance is None:
                    raise BalanceMissing("Balance row disappeared before it could be locked.")

                # The locked row is authoritative; any earlier read may be stale.
                if balance.credits_remaining < cost:
                    raise InsufficientCredits(
                        f"Required: {cost}, available: {balance.credits_remaining}."
                    )

                debited = await self.session.execute(
                    update(CreditBalance)
                    .where(
                        CreditBalance.id == balance_id,
                        CreditBalance.credits_remaining >= cost,
                    )
                    .values(
                        credits_remaining=CreditBalance.credits_remaining - cost,
                        updated_at=func.now(),
                    )
                    .returning(CreditBalance.credits_remaining)
                    .execution_options(synchronize_session=False)
                )
                new_balance = debited.scalar_one_or_none()
                if new_balance is None:
                    raise InsufficientCredits(f"Required: {cost}, balance changed concurrently.")

                self.session.add(
                    UsageRecord(
                        account_id=account_id,
                        feature_type=feature_type,
                        credits_spent=cost,
                        metadata_json=dict(metadata) if metadata else None,
                    )
                )
                await self.session.flush()
        except GatewayError:
            raise
        except SQLAlchemyError as exc:
            logger.exception(
                "ledger transaction failed account=%s feature=%s cost=%s: %s",
                account_id,
                feature_type,
                cost,
                exc,
            )
            raise TransactionFailed("Credit transaction was rolled back; it is safe to retry.") from exc

        return ConsumeResult(credits_remaining=int(new_balance), charged=cost)


async def consume_feature(
    db: AsyncSession,
    *,
    external_account_id: str,
    feature_type: str,
    estimated_cost: Any = None,
    metadata: Optional[Mapping[str, Any]] = None,
    pricing: Optional[PricingTable] = None,
    lock_timeout_ms: Optional[int] = None,
) -> ConsumeResult:
    """Price a feature usage and charge it to the account's current cycle balance."""
    cost: Optional[int] = None
    try:
        cost = resolve_cost(feature_type, estimated_cost, metadata, pricing)

        store = AccountStore(db)
        account = await store.find_account_by_external_id(external_account_id)
        if account is None:
            raise AccountNotFound()

        subscription, balance = await store.find_active_subscription_and_balance(account.id)
        if subscription is None:
            raise NoActiveSubscription()
        if balance is None:
            raise BalanceMissing(f"Active plan {subscription.plan_id} has no credit balance row.")

        # Unlocked fast path only; the ledger re-checks under the row lock.
        if balance.credits_remaining < cost:
            raise InsufficientCredits(
                f"Required: {cost}, available: {balance.credits_remaining}."
            )

        account_id, balance_id = account.id, balance.id
        await db.commit()

        result = await CreditLedger(db, lock_timeout_ms=lock_timeout_ms).consume(
            account_id=account_id,
            balance_id=balance_id,
            feature_type=feature_type,
            cost=cost,
            metadata=metadata,
        )
    except TransactionFailed:
        raise
    except GatewayError as exc:
        logger.info(
            "consume rejected external_id=%s feature=%s cost=%s error=%s",
            external_account_id,
            feature_type,
            cost,
            exc.code,
        )
        raise

    logger.info(
        "consume ok external_id=%s feature=%s charged=%s remaining=%s",
        external_account_id,
        feature_type,
        result.charged,
        result.credits_remaining,
    )
    return result


async def get_usage_summary(
    db: AsyncSession,
    *,
    external_account_id: str,
    limit: int = 10,
) -> Dict[str, Any]:
    """Dashboard projection: plan, balance and the most recent usage, newest first."""
    store = AccountStore(db)
    account = await store.find_account_by_external_id(external_account_id)
    if account is None:
        raise AccountNotFound()

    subscription, balance = await store.find_active_subscription_and_balance(account.id)
    if subscription is None:
        raise NoActiveSubscription(status_code=404)

    records: List[UsageRecord] = await store.recent_usage(account.id, limit=limit)
    return {
        "plan_id": subscription.plan_id,
        "credits_remaining": balance.credits_remaining if balance else 0,
        "monthly_credit_limit": subscription.monthly_credit_limit,
        "cycle_end": subscription.cycle_end.isoformat() if subscription.cycle_end else None,
        "recent_usage": [
            {
                "timestamp": record.timestamp.isoformat() if record.timestamp else None,
                "feature_type": record.feature_type,
                "credits_spent": record.credits_spent,
            }
            for record in records
        ],
    }
