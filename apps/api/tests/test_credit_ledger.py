import asyncio

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credit_balance import CreditBalance
from models.usage_record import UsageRecord
from services.credits import CreditLedger, consume_feature
from services.errors import (
    AccountNotFound,
    BalanceMissing,
    FeatureUnknown,
    InsufficientCredits,
    NoActiveSubscription,
    TransactionFailed,
)


async def _balance_id(session_maker, account_id):
    async with session_maker() as session:
        return (
            await session.execute(select(CreditBalance.id).where(CreditBalance.account_id == account_id))
        ).scalar_one()


@pytest.mark.asyncio
async def test_ledger_debits_and_logs_usage(session_maker, seed_account, ledger_snapshot):
    account_id = await seed_account(credits=100)
    balance_id = await _balance_id(session_maker, account_id)

    async with session_maker() as session:
        result = await CreditLedger(session).consume(
            account_id=account_id,
            balance_id=balance_id,
            feature_type="kling_video",
            cost=40,
            metadata={"duration": 5},
        )

    assert result.credits_remaining == 60
    assert result.charged == 40
    assert await ledger_snapshot() == (60, 1)

    async with session_maker() as session:
        record = (await session.execute(select(UsageRecord))).scalar_one()
        assert record.feature_type == "kling_video"
        assert record.credits_spent == 40
        assert record.metadata_json == {"duration": 5}
        assert record.timestamp is not None


@pytest.mark.asyncio
async def test_ledger_rejects_overdraft_without_side_effects(session_maker, seed_account, ledger_snapshot):
    account_id = await seed_account(credits=30)
    balance_id = await _balance_id(session_maker, account_id)

    async with session_maker() as session:
        with pytest.raises(InsufficientCredits):
            await CreditLedger(session).consume(
                account_id=account_id, balance_id=balance_id, feature_type="test_feature", cost=31
            )

    assert await ledger_snapshot() == (30, 0)


@pytest.mark.asyncio
async def test_ledger_allows_spending_to_exactly_zero(session_maker, seed_account, ledger_snapshot):
    account_id = await seed_account(credits=10)
    balance_id = await _balance_id(session_maker, account_id)

    async with session_maker() as session:
        result = await CreditLedger(session).consume(
            account_id=account_id, balance_id=balance_id, feature_type="test_feature", cost=10
        )

    assert result.credits_remaining == 0
    assert await ledger_snapshot() == (0, 1)


@pytest.mark.asyncio
async def test_ledger_missing_balance_row(session_maker, seed_account):
    account_id = await seed_account()

    async with session_maker() as session:
        with pytest.raises(BalanceMissing):
            await CreditLedger(session).consume(
                account_id=account_id, balance_id=999, feature_type="test_feature", cost=1
            )


@pytest.mark.asyncio
async def test_ledger_write_failure_rolls_back_debit(session_maker, seed_account, ledger_snapshot, monkeypatch):
    account_id = await seed_account(credits=100)
    balance_id = await _balance_id(session_maker, account_id)

    async def failing_flush(self, objects=None):
        raise SQLAlchemyError("simulated usage insert failure")

    monkeypatch.setattr(AsyncSession, "flush", failing_flush)
    async with session_maker() as session:
        with pytest.raises(TransactionFailed) as exc_info:
            await CreditLedger(session).consume(
                account_id=account_id, balance_id=balance_id, feature_type="test_feature", cost=10
            )
    monkeypatch.undo()

    assert exc_info.value.code == "TX_FAILED"
    assert exc_info.value.status_code == 500
    assert await ledger_snapshot() == (100, 0)


@pytest.mark.asyncio
async def test_concurrent_consumes_never_overdraw(session_maker, seed_account, ledger_snapshot):
    await seed_account(credits=55)

    async def attempt():
        async with session_maker() as session:
            try:
                await consume_feature(session, external_account_id="wp-1001", feature_type="test_feature")
            except InsufficientCredits:
                return False
            return True

    outcomes = await asyncio.gather(*(attempt() for _ in range(12)))

    assert outcomes.count(True) == 5
    assert await ledger_snapshot() == (5, 5)


@pytest.mark.asyncio
async def test_consume_feature_resolves_cost_from_metadata(session_maker, seed_account, ledger_snapshot):
    await seed_account(credits=1000)

    async with session_maker() as session:
        result = await consume_feature(
            session,
            external_account_id="wp-1001",
            feature_type="video_gen",
            metadata={"duration": "10"},
        )

    assert result.charged == 500
    assert await ledger_snapshot() == (500, 1)


@pytest.mark.asyncio
async def test_consume_feature_business_rejections(session_maker, seed_account):
    async with session_maker() as session:
        with pytest.raises(AccountNotFound):
            await consume_feature(session, external_account_id="nobody", feature_type="test_feature")

    async with session_maker() as session:
        with pytest.raises(FeatureUnknown):
            await consume_feature(session, external_account_id="nobody", feature_type="teleportation")

    await seed_account(external_id="wp-2002", with_balance=False)
    async with session_maker() as session:
        with pytest.raises(BalanceMissing):
            await consume_feature(session, external_account_id="wp-2002", feature_type="test_feature")


@pytest.mark.asyncio
async def test_consume_feature_requires_active_subscription(session_maker):
    from services.accounts import AccountStore

    async with session_maker() as session:
        await AccountStore(session).upsert_account("wp-3003")
        await session.commit()

    async with session_maker() as session:
        with pytest.raises(NoActiveSubscription):
            await consume_feature(session, external_account_id="wp-3003", feature_type="test_feature")
