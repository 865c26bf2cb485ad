"""Account, subscription and balance persistence.

The store only flushes; committing is left to the caller so one webhook call
or one login exchange is a single transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.account import Account
from models.credit_balance import CreditBalance
from models.subscription import Subscription
from models.usage_record import UsageRecord

logger = logging.getLogger(__name__)


class AccountStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_account_by_external_id(self, external_id: str) -> Optional[Account]:
        result = await self.session.execute(
            select(Account).where(Account.external_id == str(external_id))
        )
        return result.scalar_one_or_none()

    async def find_active_subscription_and_balance(
        self, account_id: str
    ) -> Tuple[Optional[Subscription], Optional[CreditBalance]]:
        """Unlocked read of the active subscription and its cycle balance."""
        sub_result = await self.session.execute(
            select(Subscription)
            .where(Subscription.account_id == account_id, Subscription.active.is_(True))
            .order_by(Subscription.cycle_start.desc(), Subscription.id.desc())
            .limit(1)
        )
        subscription = sub_result.scalar_one_or_none()
        if subscription is None:
            return None, None

        balance_result = await self.session.execute(
            select(CreditBalance).where(
                CreditBalance.account_id == account_id,
                CreditBalance.cycle_start == subscription.cycle_start,
            )
        )
        return subscription, balance_result.scalar_one_or_none()

    async def upsert_account(self, external_id: str, email: Optional[str] = None) -> Account:
        """Create the account on first sight, or sync a changed email."""
        account = await self.find_account_by_external_id(external_id)
        if account is None:
            account = Account(external_id=str(external_id), email=email or None)
            self.session.add(account)
            await self.session.flush()
            logger.info("account_created external_id=%s account=%s", external_id, account.id)
            return account

        if email and email != account.email:
            account.email = email
            await self.session.flush()
        return account

    async def get_or_create_account(self, external_id: str, email: Optional[str] = None) -> Account:
        """Find the account, creating it when missing. Never overwrites a stored email."""
        account = await self.find_account_by_external_id(external_id)
        if account is not None:
            return account
        return await self.upsert_account(external_id, email)

    async def upsert_subscription_and_reset_balance(
        self,
        account_id: str,
        plan_id: str,
        allotment: int,
        cycle_start: datetime,
        cycle_end: datetime,
        active: bool,
    ) -> None:
        """Upsert the (account, cycle_start) subscription and overwrite its balance with the full allotment."""
        sub_result = await self.session.execute(
            select(Subscription).where(
                Subscription.account_id == account_id,
                Subscription.cycle_start == cycle_start,
            )
        )
        subscription = sub_result.scalar_one_or_none()
        if subscription is None:
            subscription = Subscription(account_id=account_id, cycle_start=cycle_start)
            self.session.add(subscription)
        subscription.plan_id = plan_id
        subscription.monthly_credit_limit = allotment
        subscription.cycle_end = cycle_end
        subscription.active = active
        await self.session.flush()

        if active:
            await self.session.execute(
                update(Subscription)
                .where(
                    Subscription.account_id == account_id,
                    Subscription.id != subscription.id,
                    Subscription.active.is_(True),
                )
                .values(active=False)
                .execution_options(synchronize_session=False)
            )

        balance_result = await self.session.execute(
            select(CreditBalance).where(
                CreditBalance.account_id == account_id,
                CreditBalance.cycle_start == cycle_start,
            )
        )
        balance = balance_result.scalar_one_or_none()
        if balance is None:
            balance = CreditBalance(account_id=account_id, cycle_start=cycle_start)
            self.session.add(balance)
        # Full overwrite: unused credits of the previous state do not roll over.
        balance.credits_remaining = allotment
        balance.updated_at = func.now()
        await self.session.flush()

    async def recent_usage(self, account_id: str, limit: int = 10) -> List[UsageRecord]:
        result = await self.session.execute(
            select(UsageRecord)
            .where(UsageRecord.account_id == account_id)
            .order_by(UsageRecord.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
