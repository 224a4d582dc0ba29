import time

import pytest

import database
from core.context import build_game_context
from core.exceptions import (
    InsufficientCreditsError,
    NoSelectionError,
    NotFoundError,
    PhaseError,
    ValidationError,
)
from core.ledger import Ledger
from core.session_manager import BattleOutcome, SessionManager
from database import get_settings
from models import GameSession, RoundResult, RoundStatus, SessionPhase


def _enter_round1(db, ctx, player_id):
    return SessionManager.advance_phase(db, player_id, ctx)


def _play_to_round3(db, ctx, player_id):
    """Round 1 / Round 2 各輸 1000，停在 Round 3 第 1 場（點數 8000）"""
    ctx.overrides.set_round1_winner(2)
    ctx.overrides.set_round2_range(1000)
    _enter_round1(db, ctx, player_id)
    SessionManager.submit_round1(db, player_id, 1000, 1, ctx)
    SessionManager.advance_phase(db, player_id, ctx)
    SessionManager.submit_round2(db, player_id, 1000, 100, ctx)
    return SessionManager.advance_phase(db, player_id, ctx)


def test_new_session_starts_on_landing(db, player):
    session = SessionManager.get_session(db, player.id)

    assert session.phase == SessionPhase.LANDING
    assert session.round_status is None
    assert session.balance == 10000

    # 查詢不寫入資料庫
    assert SessionManager.get_history(db, player.id) == []
    assert db.query(GameSession).count() == 0


def test_ensure_session_creates_landing_row_once(db, player):
    first = SessionManager.ensure_session(db, player.id)
    second = SessionManager.ensure_session(db, player.id)

    assert first.id == second.id
    assert db.query(GameSession).count() == 1


def test_session_for_unknown_player(db):
    with pytest.raises(NotFoundError):
        SessionManager.get_session(db, 12345)


def test_full_play_through_with_overrides(db, ctx, player):
    ctx.overrides.set_round1_winner(1)
    ctx.overrides.set_round2_range(560)

    session = _enter_round1(db, ctx, player.id)
    assert session.phase == SessionPhase.ROUND1
    assert session.round_status == RoundStatus.BETTING

    result = SessionManager.submit_round1(db, player.id, 1000, 1, ctx)
    assert result.balance_after == 11500
    assert result.resolved_outcome == {"winner": 1}

    session = SessionManager.get_session(db, player.id)
    assert session.phase == SessionPhase.INTERSTITIAL1
    assert session.round_status == RoundStatus.SETTLED
    assert session.balance == 11500

    SessionManager.advance_phase(db, player.id, ctx)
    result = SessionManager.submit_round2(db, player.id, 2000, 550, ctx)
    assert result.resolved_outcome == {"target": 560, "accuracy": 10}
    assert result.balance_after == 19500

    db.expire_all()
    assert Ledger.get_player(db, player.id).balance == 19500
    assert SessionManager.get_session(db, player.id).phase == SessionPhase.INTERSTITIAL2


def test_advance_rejected_mid_round(db, ctx, player):
    _enter_round1(db, ctx, player.id)

    with pytest.raises(PhaseError):
        SessionManager.advance_phase(db, player.id, ctx)


def test_submit_in_wrong_phase(db, ctx, player):
    with pytest.raises(PhaseError):
        SessionManager.submit_round1(db, player.id, 100, 1, ctx)

    _enter_round1(db, ctx, player.id)
    with pytest.raises(PhaseError):
        SessionManager.submit_round2(db, player.id, 100, 500, ctx)
    with pytest.raises(PhaseError):
        SessionManager.submit_round3_battle(db, player.id, 1, 0, 1, ctx)


def test_round1_requires_a_rocket(db, ctx, player):
    _enter_round1(db, ctx, player.id)

    with pytest.raises(NoSelectionError):
        SessionManager.submit_round1(db, player.id, 100, None, ctx)
    with pytest.raises(ValidationError):
        SessionManager.submit_round1(db, player.id, 100, 6, ctx)

    # 失敗的提交不會改變階段
    session = SessionManager.get_session(db, player.id)
    assert session.phase == SessionPhase.ROUND1
    assert session.round_status == RoundStatus.BETTING


def test_round1_stake_validation(db, ctx, player):
    _enter_round1(db, ctx, player.id)

    with pytest.raises(ValidationError):
        SessionManager.submit_round1(db, player.id, 0, 1, ctx)
    with pytest.raises(InsufficientCreditsError):
        SessionManager.submit_round1(db, player.id, 10001, 1, ctx)

    result = SessionManager.submit_round1(db, player.id, 10000, 1, ctx)
    assert result.stake == 10000


def test_round2_prediction_validation(db, ctx, player):
    ctx.overrides.set_round1_winner(1)
    _enter_round1(db, ctx, player.id)
    SessionManager.submit_round1(db, player.id, 100, 1, ctx)
    SessionManager.advance_phase(db, player.id, ctx)

    for prediction in (99, 1001, None):
        with pytest.raises(ValidationError):
            SessionManager.submit_round2(db, player.id, 100, prediction, ctx)


def test_settlement_uses_admin_balance_set_mid_round(db, ctx, player):
    _enter_round1(db, ctx, player.id)
    Ledger.set_balance(db, player.id, 500)

    with pytest.raises(InsufficientCreditsError):
        SessionManager.submit_round1(db, player.id, 1000, 1, ctx)

    ctx.overrides.set_round1_winner(3)
    result = SessionManager.submit_round1(db, player.id, 500, 1, ctx)
    assert result.balance_after == 0


def test_entering_round1_seeds_starting_balance(db, ctx, player):
    Ledger.set_balance(db, player.id, 42)

    session = _enter_round1(db, ctx, player.id)

    assert session.balance == 10000
    db.expire_all()
    assert Ledger.get_player(db, player.id).balance == 10000


def test_round3_settles_after_twenty_battles(db, ctx, rng, player):
    session = _play_to_round3(db, ctx, player.id)
    assert session.phase == SessionPhase.ROUND3
    assert session.current_battle == 1
    assert session.balance == 8000

    rng.choices = [1] * 16 + [2] * 4
    for index in range(1, 21):
        outcome = SessionManager.submit_round3_battle(db, player.id, index, 100, 1, ctx)
        assert isinstance(outcome, BattleOutcome)
        if index < 20:
            assert outcome.settlement is None

    settlement = outcome.settlement
    assert settlement is not None
    assert settlement.stake == 2000
    assert settlement.resolved_outcome["wins"] == 16
    assert float(settlement.multiplier) == 4.0
    assert settlement.balance_after == 8000 - 2000 + 8000

    session = SessionManager.get_session(db, player.id)
    assert session.phase == SessionPhase.COMPLETE
    assert len(session.battles) == 20


def test_round3_battles_must_be_in_order(db, ctx, player):
    _play_to_round3(db, ctx, player.id)

    with pytest.raises(PhaseError):
        SessionManager.submit_round3_battle(db, player.id, 2, 0, 1, ctx)
    with pytest.raises(ValidationError):
        SessionManager.submit_round3_battle(db, player.id, 21, 0, 1, ctx)

    SessionManager.submit_round3_battle(db, player.id, 1, 0, 1, ctx)
    with pytest.raises(PhaseError):
        SessionManager.submit_round3_battle(db, player.id, 1, 0, 1, ctx)


def test_round3_stakes_bounded_by_balance(db, ctx, player):
    _play_to_round3(db, ctx, player.id)

    outcome = SessionManager.submit_round3_battle(db, player.id, 1, 8000, None, ctx)
    assert outcome.battle.choice == 1

    with pytest.raises(InsufficientCreditsError):
        SessionManager.submit_round3_battle(db, player.id, 2, 1, 1, ctx)

    # 下注 0 仍然可以
    SessionManager.submit_round3_battle(db, player.id, 2, 0, 2, ctx)
    assert SessionManager.get_session(db, player.id).current_battle == 3


def test_round3_rejects_unknown_fighter(db, ctx, player):
    _play_to_round3(db, ctx, player.id)

    with pytest.raises(ValidationError):
        SessionManager.submit_round3_battle(db, player.id, 1, 0, 3, ctx)


def _current_key(db, player_id):
    return SessionManager.timer_key(SessionManager.get_session(db, player_id))


def test_auto_submit_settles_with_zero_stake(db, ctx, player):
    _enter_round1(db, ctx, player.id)

    result = SessionManager.auto_submit(db, player.id, _current_key(db, player.id), ctx)

    assert isinstance(result, RoundResult)
    assert result.stake == 0
    assert result.choice == 1
    assert result.auto_submitted is True
    assert result.balance_after == 10000
    assert SessionManager.get_session(db, player.id).phase == SessionPhase.INTERSTITIAL1


def test_auto_submit_round2_uses_default_prediction(db, ctx, player):
    _enter_round1(db, ctx, player.id)
    SessionManager.auto_submit(db, player.id, _current_key(db, player.id), ctx)
    SessionManager.advance_phase(db, player.id, ctx)

    result = SessionManager.auto_submit(db, player.id, _current_key(db, player.id), ctx)

    assert result.choice == get_settings().round2_default_prediction
    assert result.auto_submitted is True


def test_auto_submit_loses_race_against_manual_submit(db, ctx, player):
    _enter_round1(db, ctx, player.id)
    key = _current_key(db, player.id)
    SessionManager.submit_round1(db, player.id, 100, 2, ctx)

    assert SessionManager.auto_submit(db, player.id, key, ctx) is None

    session = SessionManager.get_session(db, player.id)
    assert len(session.results) == 1
    assert session.results[0].auto_submitted is False


def test_auto_submit_for_stale_battle_is_ignored(db, ctx, player):
    _play_to_round3(db, ctx, player.id)
    key = _current_key(db, player.id)
    assert (key.phase, key.battle) == ("ROUND3", 1)

    outcome = SessionManager.auto_submit(db, player.id, key, ctx)
    assert isinstance(outcome, BattleOutcome)
    assert outcome.battle.auto_submitted is True
    assert outcome.battle.stake == 0

    # 第 1 場已結束，同一個 key 再觸發不做任何事
    assert SessionManager.auto_submit(db, player.id, key, ctx) is None
    assert SessionManager.get_session(db, player.id).current_battle == 2


def test_timer_from_previous_play_through_is_ignored(db, ctx, player):
    _enter_round1(db, ctx, player.id)
    old_key = _current_key(db, player.id)

    SessionManager.reset_session(db, player.id, ctx)
    SessionManager.advance_phase(db, player.id, ctx)
    new_key = _current_key(db, player.id)

    # 同樣是 Round 1 的第 0 場，只有 epoch 不同
    assert (old_key.phase, old_key.battle) == (new_key.phase, new_key.battle)
    assert old_key.epoch != new_key.epoch

    assert SessionManager.auto_submit(db, player.id, old_key, ctx) is None

    session = SessionManager.get_session(db, player.id)
    assert session.phase == SessionPhase.ROUND1
    assert session.round_status == RoundStatus.BETTING
    assert session.results == []

    assert isinstance(SessionManager.auto_submit(db, player.id, new_key, ctx), RoundResult)


def test_betting_epoch_advances_with_each_window(db, ctx, player):
    epochs = [_enter_round1(db, ctx, player.id).betting_epoch]
    SessionManager.submit_round1(db, player.id, 100, 1, ctx)
    epochs.append(SessionManager.advance_phase(db, player.id, ctx).betting_epoch)
    SessionManager.submit_round2(db, player.id, 100, 500, ctx)
    epochs.append(SessionManager.advance_phase(db, player.id, ctx).betting_epoch)
    SessionManager.submit_round3_battle(db, player.id, 1, 0, 1, ctx)
    epochs.append(SessionManager.get_session(db, player.id).betting_epoch)
    epochs.append(SessionManager.reset_session(db, player.id, ctx).betting_epoch)

    assert epochs == sorted(set(epochs))


def test_reset_returns_to_landing_without_touching_ledger(db, ctx, player):
    ctx.overrides.set_round1_winner(1)
    _enter_round1(db, ctx, player.id)
    SessionManager.submit_round1(db, player.id, 1000, 1, ctx)

    session = SessionManager.reset_session(db, player.id, ctx)

    assert session.phase == SessionPhase.LANDING
    assert session.balance == 10000
    assert session.results == []
    assert SessionManager.get_history(db, player.id) == []
    db.expire_all()
    assert Ledger.get_player(db, player.id).balance == 11500

    session = SessionManager.advance_phase(db, player.id, ctx)
    assert session.phase == SessionPhase.ROUND1
    db.expire_all()
    assert Ledger.get_player(db, player.id).balance == 10000


def test_reset_mid_round3(db, ctx, player):
    _play_to_round3(db, ctx, player.id)
    SessionManager.submit_round3_battle(db, player.id, 1, 100, 1, ctx)

    session = SessionManager.reset_session(db, player.id, ctx)

    assert session.phase == SessionPhase.LANDING
    assert session.battles == []
    assert session.current_battle == 0


def test_history_lists_settled_rounds_and_open_series(db, ctx, player):
    _play_to_round3(db, ctx, player.id)
    SessionManager.submit_round3_battle(db, player.id, 1, 100, 1, ctx)

    history = SessionManager.get_history(db, player.id)

    assert [entry["round_number"] for entry in history] == [1, 2, 3]
    assert history[0]["multiplier"] == 0.0
    assert history[0]["delta"] == -1000
    assert history[2]["settled"] is False
    assert len(history[2]["battles"]) == 1


# ============ 真實計時器 ============

@pytest.fixture()
def timed_ctx(file_session_factory, monkeypatch):
    monkeypatch.setattr(database, "SessionLocal", file_session_factory)
    settings = get_settings()
    monkeypatch.setattr(settings, "round1_duration_sec", 0.1)
    context = build_game_context(enable_timers=True)
    yield context
    context.timers.shutdown()


def _wait_for_phase(factory, player_id, phase, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        db = factory()
        try:
            session = SessionManager.get_session(db, player_id)
            if session.phase == phase:
                return session
        finally:
            db.close()
        time.sleep(0.05)
    return None


def test_timer_auto_submits_expired_round(file_session_factory, timed_ctx):
    db = file_session_factory()
    player, _ = Ledger.create_player(db, "Sleepy")
    player_id = player.id

    session = SessionManager.advance_phase(db, player_id, timed_ctx)
    assert session.betting_deadline is not None
    assert timed_ctx.timers.pending(player_id) == SessionManager.timer_key(session)
    db.close()

    assert _wait_for_phase(file_session_factory, player_id, SessionPhase.INTERSTITIAL1) is not None

    check = file_session_factory()
    history = SessionManager.get_history(check, player_id)
    assert history[0]["auto_submitted"] is True
    assert history[0]["stake"] == 0
    check.close()


def test_manual_submit_cancels_timer(file_session_factory, timed_ctx, monkeypatch):
    monkeypatch.setattr(get_settings(), "round1_duration_sec", 5)
    db = file_session_factory()
    player, _ = Ledger.create_player(db, "Quick")

    SessionManager.advance_phase(db, player.id, timed_ctx)
    SessionManager.submit_round1(db, player.id, 100, 1, timed_ctx)

    assert timed_ctx.timers.pending(player.id) is None
    db.close()
