"""
AccrualController lifecycle: start / tick / claim / stop.
"""
import logging

import pytest
from sqlalchemy.exc import OperationalError

from models import PointsHistory
from utils.accrual_controller import MiningDisabledError, NoActiveSessionError
from utils.mining_service import MAX_SESSION_SECONDS


def test_start_creates_active_session(make_controller, store, user, clock):
    controller = make_controller()
    result = controller.start()

    assert result.resumed is False
    assert controller.is_mining
    assert controller.started_at == clock()
    assert [s.id for s in store.list_active_sessions(user.id)] == [result.session.id]
    assert controller.current_points() == 0


def test_start_twice_on_same_controller_keeps_session(make_controller, store, user):
    controller = make_controller()
    first = controller.start()
    second = controller.start()

    assert second.resumed is True
    assert second.session.id == first.session.id
    assert len(store.list_active_sessions(user.id)) == 1


def test_start_finalizes_sessions_left_by_other_clients(make_controller, store, ledger, user, clock):
    other_tab = store.create_session(user.id)
    clock.advance(hours=2)

    controller = make_controller()
    result = controller.start()

    assert [s.points for s in result.settlements] == [20]
    assert store.get_session(other_tab.id).is_active is False
    assert ledger.balance(user.id) == 20
    assert len(store.list_active_sessions(user.id)) == 1


def test_start_refused_when_mining_disabled(make_controller, store, user):
    controller = make_controller(mining_enabled=lambda: False)
    with pytest.raises(MiningDisabledError):
        controller.start()
    assert store.list_active_sessions(user.id) == []


def test_tick_writes_watermark_only_when_whole_points_change(make_controller, store, user, clock, monkeypatch):
    controller = make_controller()
    session_id = controller.start().session.id
    writes = []
    original = store.update_watermark
    monkeypatch.setattr(store, 'update_watermark', lambda sid, pts: writes.append(pts) or original(sid, pts))

    for _ in range(10):
        clock.advance(seconds=30)  # 10/h -> 1 分需要 6 分钟
        controller.tick()

    assert writes == []
    clock.advance(seconds=60)
    controller.tick()
    controller.tick()

    assert writes == [1]
    assert controller.watermark == 1
    assert store.get_session(session_id).recorded_points == 1


def test_tick_throttle_defers_write_inside_interval(make_controller, store, user, clock, composer):
    composer.update(referral_pct=500)
    controller = make_controller(watermark_write_interval=120)
    session_id = controller.start().session.id

    clock.advance(seconds=61)
    controller.tick()
    clock.advance(seconds=61)
    controller.tick()
    assert store.get_session(session_id).recorded_points == 1
    # 显示值不受写入节流影响
    assert controller.current_points() == pytest.approx(122 / 60)

    clock.advance(seconds=61)
    controller.tick()
    assert store.get_session(session_id).recorded_points == 3


def test_tick_continues_when_watermark_write_fails(make_controller, store, user, clock, monkeypatch):
    controller = make_controller()
    controller.start()
    monkeypatch.setattr(store, 'update_watermark', lambda sid, pts: False)

    clock.advance(hours=1)
    result = controller.tick()
    assert result.points == pytest.approx(10)
    assert controller.is_mining


def test_tick_finalizes_at_session_cap(make_controller, store, ledger, user, clock, composer):
    composer.update(x_profile_pct=500)
    controller = make_controller()
    session_id = controller.start().session.id

    clock.advance(seconds=MAX_SESSION_SECONDS + 30)
    result = controller.tick()

    assert result.finalized is True
    assert result.settlement.points == 480
    assert controller.is_mining is False
    assert controller.tick() is None
    row = store.get_session(session_id)
    assert row.is_active is False
    assert row.recorded_points == 480
    assert ledger.balance(user.id) == 480


def test_accrual_survives_disconnect(make_controller, user, clock, composer):
    composer.update(streak_days=7)
    connected = make_controller()
    connected.start()
    clock.advance(minutes=95)

    # 另一个进程在断线后重新连接
    reconnected = make_controller()
    reconnected.sync()
    assert reconnected.session_id == connected.session_id
    assert reconnected.current_points() == pytest.approx(connected.current_points())
    assert reconnected.current_points() == pytest.approx(95 / 60 * 10.7)


def test_sync_finalizes_older_duplicates_and_resumes_newest(make_controller, store, ledger, user, clock):
    older = store.create_session(user.id)
    clock.advance(minutes=30)
    newer = store.create_session(user.id)
    clock.advance(minutes=30)

    controller = make_controller()
    assert controller.sync() == newer.id

    row = store.get_session(older.id)
    assert row.is_active is False
    assert row.recorded_points == 10
    assert ledger.balance(user.id) == 10
    assert [s.id for s in store.list_active_sessions(user.id)] == [newer.id]
    assert controller.current_points() == pytest.approx(5)


def test_claim_credits_floor_and_reanchors(make_controller, store, ledger, user, clock, composer):
    composer.update(streak_days=30)  # 13/h
    controller = make_controller()
    session_id = controller.start().session.id
    clock.advance(seconds=1800)

    result = controller.claim()

    assert result.status == 'claimed'
    assert result.points == 6  # floor(6.5)
    assert result.credited is True
    assert ledger.balance(user.id) == 6
    assert controller.current_points() == 0
    row = store.get_session(session_id)
    assert row.is_active is True
    assert row.started_at == clock()
    assert row.recorded_points == 0


def test_claim_twice_without_elapsed_time_credits_nothing(make_controller, ledger, user, clock):
    controller = make_controller()
    controller.start()
    clock.advance(seconds=1800)

    assert controller.claim().points == 5
    second = controller.claim()
    assert second.status == 'nothing_to_claim'
    assert second.points == 0
    assert ledger.balance(user.id) == 5


def test_claim_conflict_between_clients_credits_once(make_controller, ledger, user, clock):
    tab_a = make_controller()
    tab_a.start()
    clock.advance(hours=2)
    tab_b = make_controller()
    tab_b.sync()

    assert tab_a.claim().status == 'claimed'
    conflict = tab_b.claim()

    assert conflict.status == 'conflict'
    assert ledger.balance(user.id) == 20
    # 冲突后重新同步到新的窗口
    assert tab_b.started_at == tab_a.started_at


def test_claim_after_cap_finalizes_instead(make_controller, store, ledger, user, clock):
    controller = make_controller()
    session_id = controller.start().session.id
    clock.advance(hours=9)

    result = controller.claim()

    assert result.status == 'finalized'
    assert result.points == 80
    assert store.get_session(session_id).is_active is False
    assert ledger.balance(user.id) == 80


def test_claim_and_stop_require_active_session(make_controller, user):
    controller = make_controller()
    with pytest.raises(NoActiveSessionError):
        controller.claim()
    with pytest.raises(NoActiveSessionError):
        controller.stop()


def test_stop_credits_floor_of_accrued(make_controller, store, ledger, user, clock):
    controller = make_controller()
    session_id = controller.start().session.id
    clock.advance(minutes=100)

    settlement = controller.stop()

    assert settlement.changed is True
    assert settlement.points == 16  # floor(16.67)
    assert controller.is_mining is False
    row = store.get_session(session_id)
    assert row.ended_at == clock()
    assert row.recorded_points == 16
    assert ledger.balance(user.id) == 16


def test_stop_with_zero_points_ends_without_credit(make_controller, store, user, clock):
    controller = make_controller()
    session_id = controller.start().session.id
    clock.advance(seconds=20)

    settlement = controller.stop()

    assert settlement.changed is True
    assert settlement.points == 0
    assert store.get_session(session_id).is_active is False
    assert PointsHistory.query.count() == 0


def test_concurrent_finalize_credits_exactly_once(make_controller, ledger, user, clock):
    tab_a = make_controller()
    tab_a.start()
    clock.advance(hours=3)
    tab_b = make_controller()
    tab_b.sync()

    first = tab_a.stop()
    second = tab_b.stop()

    assert first.changed is True
    assert second.changed is False
    assert ledger.balance(user.id) == 30
    assert PointsHistory.query.count() == 1


def test_finalize_failure_leaves_session_active(make_controller, store, user, clock, monkeypatch):
    controller = make_controller()
    session_id = controller.start().session.id
    clock.advance(hours=1)

    def broken(*args, **kwargs):
        raise OperationalError('UPDATE mining_sessions', {}, Exception('connection reset'))

    monkeypatch.setattr(store, 'conditional_finalize', broken)
    settlement = controller.stop()

    assert settlement.failed is True
    assert controller.is_mining is True
    assert store.get_session(session_id).is_active is True


def test_ledger_failure_after_finalize_is_logged(make_controller, store, ledger, user, clock, monkeypatch, caplog):
    controller = make_controller()
    session_id = controller.start().session.id
    clock.advance(hours=1)

    def broken(*args, **kwargs):
        raise OperationalError('INSERT INTO points_history', {}, Exception('disk full'))

    monkeypatch.setattr(ledger, 'credit', broken)
    # 让 caplog 能收到 mining 日志器的记录
    monkeypatch.setattr(logging.getLogger('mining'), 'propagate', True)
    with caplog.at_level(logging.CRITICAL):
        settlement = controller.stop()

    assert settlement.changed is True
    assert settlement.credited is False
    assert store.get_session(session_id).is_active is False
    assert any('needs backfill' in r.getMessage() for r in caplog.records)


def test_rate_change_applies_to_running_session(make_controller, user, clock, composer):
    controller = make_controller()
    controller.start()
    clock.advance(hours=1)
    assert controller.current_points() == pytest.approx(10)

    composer.update(referral_pct=100)
    assert controller.rate_per_hour == 20
    assert controller.current_points() == pytest.approx(20)
