import pytest

from app.domain.ledger.exceptions import BelowMinimum, InsufficientPoints, Unauthorized, UserNotFound
from app.domain.ledger.models import SwapStatus, TransactionReason
from app.domain.ledger.service import LedgerService
from app.infra.auth import AuthenticatedUser

WALLET = "0x" + "ab" * 20


@pytest.mark.asyncio
async def test_swap_debits_and_records_pending_swap(ledger_service, make_user, as_caller, admin):
    user = make_user("trader", wallet_address=WALLET)
    await ledger_service.award_points(admin, user.id, 250, "seed")

    result = await ledger_service.swap_points(as_caller(user), user.id, 100)

    assert result.points_swapped == 100
    assert result.token_amount == 1.0
    assert result.exchange_rate == 100
    assert result.remaining_points == 150
    assert result.swap.status is SwapStatus.PENDING
    assert result.swap.wallet_address == WALLET

    history = await ledger_service.get_swap_history(as_caller(user), user.id)
    assert [swap.id for swap in history] == [result.swap.id]

    latest = (await ledger_service.list_transactions(as_caller(user), user.id))[0]
    assert latest.points_change == -100
    assert latest.reason is TransactionReason.TOKEN_SWAP
    assert latest.reference_id == result.swap.id
    assert latest.description == "Swapped 100 A-Points for 1 tokens"
    assert await ledger_service.audit_balance(user.id) == (150, 150)


@pytest.mark.asyncio
async def test_swap_more_than_balance_is_rejected(ledger_service, ledger_repo, make_user, as_caller, admin):
    user = make_user("dreamer")
    await ledger_service.award_points(admin, user.id, 150, "seed")

    with pytest.raises(InsufficientPoints):
        await ledger_service.swap_points(as_caller(user), user.id, 500)

    state = ledger_repo.snapshot()
    assert state.users[user.id].a_points == 150
    assert state.swaps == []


@pytest.mark.asyncio
async def test_swap_below_minimum(ledger_service, make_user, as_caller):
    user = make_user("tiny", a_points=1000)
    with pytest.raises(BelowMinimum):
        await ledger_service.swap_points(as_caller(user), user.id, 99)


@pytest.mark.asyncio
async def test_swap_only_for_own_account(ledger_service, make_user, as_caller, admin):
    owner = make_user("owner", a_points=1000)
    other = make_user("other")
    with pytest.raises(Unauthorized):
        await ledger_service.swap_points(as_caller(other), owner.id, 100)
    # admins cannot spend someone else's balance either
    with pytest.raises(Unauthorized):
        await ledger_service.swap_points(admin, owner.id, 100)


@pytest.mark.asyncio
async def test_swap_unknown_user(ledger_service):
    ghost = AuthenticatedUser(id="ghost")
    with pytest.raises(UserNotFound):
        await ledger_service.swap_points(ghost, "ghost", 100)


@pytest.mark.asyncio
async def test_custom_exchange_rate(ledger_repo, notification_sink, make_user, as_caller):
    service = LedgerService(ledger_repo, notification_sink, exchange_rate=40, min_swap_points=10)
    user = make_user("custom", a_points=100)

    result = await service.swap_points(as_caller(user), user.id, 10)

    assert result.token_amount == 0.25
    assert result.remaining_points == 90


@pytest.mark.asyncio
async def test_swap_history_visibility(ledger_service, make_user, as_caller, admin):
    owner = make_user("owner", a_points=500)
    stranger = make_user("stranger")
    await ledger_service.swap_points(as_caller(owner), owner.id, 200)
    await ledger_service.swap_points(as_caller(owner), owner.id, 100)

    history = await ledger_service.get_swap_history(admin, owner.id)
    assert [swap.points_swapped for swap in history] == [100, 200]
    with pytest.raises(Unauthorized):
        await ledger_service.get_swap_history(as_caller(stranger), owner.id)
