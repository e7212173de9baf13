from datetime import datetime, timezone

import pytest

from app.domain.ledger.exceptions import (
    AwardOverCap,
    InsufficientPoints,
    InvalidAmount,
    LedgerValidationError,
    Unauthorized,
    UserNotFound,
)
from app.domain.ledger.models import AchievementType, TransactionReason
from app.domain.ledger.points import PointsLedger
from app.infra.auth import AuthenticatedUser
from app.settings import settings


@pytest.mark.asyncio
async def test_leaderboard_orders_by_balance_then_signup(ledger_service, make_user):
    early = make_user("early", a_points=100, created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
    late = make_user("late", a_points=100, created_at=datetime(2024, 2, 1, tzinfo=timezone.utc))
    top = make_user("top", a_points=500)
    bottom = make_user("bottom", a_points=5)

    board = await ledger_service.get_leaderboard(10)

    assert [entry.user_id for entry in board] == [top.id, early.id, late.id, bottom.id]
    assert [entry.rank for entry in board] == [1, 2, 3, 4]
    for entry in board:
        assert await ledger_service.get_rank(entry.user_id) == entry.rank


@pytest.mark.asyncio
async def test_leaderboard_limit_is_clamped(ledger_service, make_user):
    for index in range(5):
        make_user(f"player_{index}", a_points=index)
    assert len(await ledger_service.get_leaderboard(2)) == 2
    assert len(await ledger_service.get_leaderboard(0)) == 1
    assert len(await ledger_service.get_leaderboard(10_000)) == 5


@pytest.mark.asyncio
async def test_rank_unknown_user(ledger_service):
    with pytest.raises(UserNotFound):
        await ledger_service.get_rank("missing")


@pytest.mark.asyncio
async def test_admin_negative_award_stops_at_zero(ledger_service, make_user, admin):
    user = make_user("spender")
    await ledger_service.award_points(admin, user.id, 50, "seed balance")

    result = await ledger_service.award_points(admin, user.id, -10_000, "correction")

    assert result.points_change == -50
    assert result.new_balance == 0
    assert await ledger_service.audit_balance(user.id) == (0, 0)
    transactions = await ledger_service.list_transactions(admin, user.id)
    assert transactions[0].id == result.transaction_id
    assert transactions[0].points_change == -50
    assert transactions[0].reason is TransactionReason.ADMIN
    assert transactions[0].metadata == {"admin_id": admin.id, "requested": -10_000}


@pytest.mark.asyncio
async def test_admin_negative_award_on_empty_balance_is_recorded(ledger_service, make_user, admin):
    user = make_user("broke")
    result = await ledger_service.award_points(admin, user.id, -20, "nothing to take")
    assert result.points_change == 0
    assert result.new_balance == 0
    transactions = await ledger_service.list_transactions(admin, user.id)
    assert [t.points_change for t in transactions] == [0]


@pytest.mark.asyncio
async def test_admin_award_validation(ledger_service, make_user, admin):
    user = make_user("target")
    with pytest.raises(InvalidAmount):
        await ledger_service.award_points(admin, user.id, 0, "zero")
    with pytest.raises(AwardOverCap):
        await ledger_service.award_points(admin, user.id, settings.ledger_max_admin_award + 1, "too much")
    with pytest.raises(AwardOverCap):
        await ledger_service.award_points(admin, user.id, -(settings.ledger_max_admin_award + 1), "too much")
    with pytest.raises(UserNotFound):
        await ledger_service.award_points(admin, "missing", 10, "ghost")
    with pytest.raises(Unauthorized):
        await ledger_service.award_points(AuthenticatedUser(id=user.id), user.id, 10, "self service")


@pytest.mark.asyncio
async def test_configured_admin_ids_can_award(ledger_service, make_user, monkeypatch):
    user = make_user("target")
    monkeypatch.setattr(settings, "ledger_admin_ids", ("ops-1",))
    result = await ledger_service.award_points(AuthenticatedUser(id="ops-1"), user.id, 10, "welcome")
    assert result.new_balance == 10


@pytest.mark.asyncio
async def test_large_award_reaches_connector_level(ledger_service, make_user, admin, notification_sink):
    user = make_user("grinder")

    await ledger_service.award_points(admin, user.id, 5000, "event prize")

    level = await ledger_service.get_level(user.id)
    assert level.total_xp == 5000
    assert level.current_level == 11
    assert level.level_name == "Connector"
    level_ups = [e for e in notification_sink.events if e.kind == "level_up"]
    assert level_ups[-1].data == {"new_level": 11, "level_name": "Connector"}


@pytest.mark.asyncio
async def test_influencer_unlocks_at_level_twenty(ledger_service, make_user, admin):
    user = make_user("celebrity")

    result = await ledger_service.award_points(admin, user.id, 18_050, "keynote")

    assert result.points_change == 18_050
    assert result.new_balance == 18_050 + 100
    achievements = await ledger_service.list_achievements(user.id)
    assert [a.achievement_type for a in achievements] == [AchievementType.INFLUENCER]
    balance, total = await ledger_service.audit_balance(user.id)
    assert balance == total == 18_150


@pytest.mark.asyncio
async def test_level_never_decreases_after_debit(ledger_service, make_user, admin):
    user = make_user("climber")
    await ledger_service.award_points(admin, user.id, 200, "bonus")
    await ledger_service.award_points(admin, user.id, -200, "clawback")

    level = await ledger_service.get_level(user.id)
    assert level.current_level == 3
    assert level.total_xp == 200


@pytest.mark.asyncio
async def test_user_stats_window(ledger_service, make_user, as_caller):
    alice = make_user("alice")
    bob = make_user("bob")
    await ledger_service.create_connection(as_caller(alice), alice.id, bob.id)

    stats = await ledger_service.get_user_stats(alice.id)

    assert stats.rank in (1, 2)
    assert stats.points_this_week == 65
    assert stats.connections_this_week == 1
    assert len(stats.recent_transactions) == 2


@pytest.mark.asyncio
async def test_user_stats_unknown_user(ledger_service):
    with pytest.raises(UserNotFound):
        await ledger_service.get_user_stats("missing")
    with pytest.raises(UserNotFound):
        await ledger_service.get_level("missing")
    with pytest.raises(UserNotFound):
        await ledger_service.list_achievements("missing")


@pytest.mark.asyncio
async def test_transactions_visible_to_owner_and_admin_only(ledger_service, make_user, as_caller, admin):
    alice = make_user("alice")
    bob = make_user("bob")
    await ledger_service.award_points(admin, alice.id, 30, "gift")

    assert len(await ledger_service.list_transactions(as_caller(alice), alice.id)) == 1
    assert len(await ledger_service.list_transactions(admin, alice.id)) == 1
    with pytest.raises(Unauthorized):
        await ledger_service.list_transactions(as_caller(bob), alice.id)


@pytest.mark.asyncio
async def test_points_ledger_debit_guards(ledger_repo, make_user):
    user = make_user("saver", a_points=20)
    ledger = PointsLedger()

    async with ledger_repo.unit_of_work() as uow:
        with pytest.raises(InvalidAmount):
            await ledger.credit(uow, user.id, -5, TransactionReason.ADMIN, "negative credit")
        with pytest.raises(InsufficientPoints):
            await ledger.debit(uow, user.id, 21, TransactionReason.ADMIN, "overdraw")
        balance, transaction = await ledger.debit(uow, user.id, 20, TransactionReason.ADMIN, "spend all")

    assert balance == 0
    assert transaction.points_change == -20
    assert ledger_repo.snapshot().users[user.id].a_points == 0


@pytest.mark.asyncio
async def test_award_is_booked_under_requested_reason(ledger_service, make_user, admin):
    user = make_user("regular")

    daily = await ledger_service.award_points(
        admin, user.id, 5, "daily check-in", reason=TransactionReason.DAILY_BONUS
    )
    scan = await ledger_service.award_points(admin, user.id, 3, "booth scan", reason="qr_scan")

    transactions = await ledger_service.list_transactions(admin, user.id)
    by_id = {t.id: t for t in transactions}
    assert by_id[daily.transaction_id].reason is TransactionReason.DAILY_BONUS
    assert by_id[daily.transaction_id].description == "daily check-in"
    assert by_id[scan.transaction_id].reason is TransactionReason.QR_SCAN
    assert (await ledger_service.get_level(user.id)).total_xp == 8


@pytest.mark.asyncio
@pytest.mark.parametrize("reason", ["token_swap", "connection", "achievement", "bogus"])
async def test_award_rejects_reasons_owned_by_other_flows(ledger_service, make_user, admin, reason):
    user = make_user("target")
    with pytest.raises(LedgerValidationError) as excinfo:
        await ledger_service.award_points(admin, user.id, 5, "nope", reason=reason)
    assert excinfo.value.reason == "invalid_award_reason"
    assert await ledger_service.audit_balance(user.id) == (0, 0)


@pytest.mark.asyncio
async def test_xp_leaderboard_orders_by_total_xp(ledger_service, make_user, admin):
    idle_early = make_user("idle_early")
    grinder = make_user("grinder")
    casual = make_user("casual")
    idle_late = make_user("idle_late")
    await ledger_service.award_points(admin, grinder.id, 500, "prize")
    await ledger_service.award_points(admin, casual.id, 40, "bonus")
    # a debit never lowers xp
    await ledger_service.award_points(admin, casual.id, -40, "clawback")

    board = await ledger_service.get_xp_leaderboard(10)

    assert [entry.user_id for entry in board] == [grinder.id, casual.id, idle_early.id, idle_late.id]
    assert [entry.total_xp for entry in board] == [500, 40, 0, 0]
    assert board[0].current_level == 4
    assert board[0].level_name == "Newcomer"
    assert board[2].current_level == 1

    page = await ledger_service.get_xp_leaderboard(2, offset=2)
    assert [(entry.rank, entry.user_id) for entry in page] == [(3, idle_early.id), (4, idle_late.id)]
