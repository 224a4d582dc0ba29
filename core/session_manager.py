"""
Session Manager：管理一位玩家三個回合的完整流程

職責：
1. 建立 / 查詢 Session
2. 推進階段（Landing -> Round 1，Interstitial -> 下一回合）
3. 三個回合的下注、結算、寫入 Ledger
4. 逾時自動提交（計時器）
5. Play again（重置 Session）

並發原則：
- 每個會改點數的操作都在 player_mutex 內完成整個 transaction
- BETTING -> RESOLVING 是 compare-and-swap：手動提交和計時器只有一個會成功
- 計時器觸發時重新檢查 (phase, battle, epoch)，不相符就放棄
"""
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import GameSession, RoundResult, BattleBet, SessionPhase, RoundStatus
from core.context import GameContext
from core.ledger import Ledger
from core.locks import player_mutex, with_player_lock, with_session_lock
from core.state_machine import SessionStateMachine, RoundStateMachine
from core.exceptions import (
    NotFoundError,
    NoSelectionError,
    PhaseError,
    ValidationError,
)
from services.settlement_service import (
    round1_multiplier,
    round2_multiplier,
    round3_multiplier,
    validate_stake,
)
from services.round_phase_service import (
    BATTLE_COUNT,
    FIGHTER_CHOICES,
    PHASE_ADVANCES,
    PHASE_AFTER_SETTLEMENT,
    PREDICTION_MAX,
    PREDICTION_MIN,
    ROCKET_CHOICES,
    betting_duration,
    default_choice,
    get_round_number,
    is_round_phase,
)
from services.timer_service import TimerKey
from services.history_service import get_session_history
import database
from database import transactional, get_settings

logger = logging.getLogger(__name__)


@dataclass
class BattleOutcome:
    """Round 3 單場對戰的結果；最後一場會附上整回合的結算"""
    battle: BattleBet
    settlement: Optional[RoundResult] = None


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class SessionManager:
    """Session 生命週期管理器"""

    # ============ 查詢 ============

    @staticmethod
    def ensure_session(db: Session, player_id: int) -> GameSession:
        """
        取得玩家的 Session，沒有的話建立一個 LANDING 狀態的

        同一個新名稱同時註冊兩次時，兩個請求都會走到這裡；
        player_mutex 讓第二個請求讀到第一個建立的 Session

        異常：
            NotFoundError: 玩家不存在
        """
        with player_mutex(player_id):
            try:
                return SessionManager._ensure_session(db, player_id)
            except IntegrityError:
                # 另一個 process 搶先建立（mutex 只涵蓋本 process）
                logger.warning(f"Concurrent session creation detected for player {player_id}")
                return SessionManager._find_session(db, player_id)

    @staticmethod
    @transactional
    def _ensure_session(db: Session, player_id: int) -> GameSession:
        return SessionManager._load_session(db, player_id)

    @staticmethod
    def get_session(db: Session, player_id: int) -> GameSession:
        """
        查詢 Session（唯讀，不會寫入資料庫）

        玩家存在但還沒有 Session 時，返回一個未儲存的 LANDING Session

        異常：
            NotFoundError: 玩家不存在
        """
        session = SessionManager._find_session(db, player_id)
        if session:
            return session
        Ledger.get_player(db, player_id)
        return SessionManager._new_session(player_id)

    @staticmethod
    def get_history(db: Session, player_id: int) -> List[dict]:
        session = SessionManager.get_session(db, player_id)
        if session.id is None:
            return []
        return get_session_history(session.id, db)

    # ============ 階段推進 ============

    @staticmethod
    def advance_phase(db: Session, player_id: int, ctx: GameContext) -> GameSession:
        """
        玩家主動推進階段

        允許的轉換：
        - LANDING -> ROUND1（發放初始點數）
        - INTERSTITIAL1 -> ROUND2
        - INTERSTITIAL2 -> ROUND3

        異常：
            NotFoundError: 玩家不存在
            PhaseError: 回合進行中或已完成，不能推進
        """
        with player_mutex(player_id):
            session = SessionManager._advance(db, player_id, ctx)
            SessionManager._arm_timer(session, ctx)
            return session

    @staticmethod
    @transactional
    def _advance(db: Session, player_id: int, ctx: GameContext) -> GameSession:
        # 1. 取得並鎖定 Session
        session = SessionManager._load_session(db, player_id, lock=True)

        # 2. 找出下一個階段
        target = PHASE_ADVANCES.get(session.phase)
        if target is None:
            raise PhaseError(f"Cannot advance from phase {session.phase.value}")

        # 3. 狀態轉換
        SessionStateMachine.transition(session, target)
        session.round_number = get_round_number(target)

        # 4. 同步點數：進入 Round 1 時發放初始點數，其他回合沿用 Ledger 的點數
        player = with_player_lock(player_id, db).first()
        if target == SessionPhase.ROUND1:
            grant = get_settings().starting_balance
            player.balance = grant
            logger.info(f"Seeded player {player_id} with starting balance {grant}")
        session.balance = player.balance

        # 5. 開始下注
        session.round_status = None
        RoundStateMachine.transition(session, RoundStatus.BETTING)
        session.betting_epoch += 1
        if target == SessionPhase.ROUND3:
            session.current_battle = 1
            session.battle_stake_total = 0
        SessionManager._set_deadline(session, ctx)

        return session

    @staticmethod
    def reset_session(db: Session, player_id: int, ctx: GameContext) -> GameSession:
        """
        Play again：無條件回到 LANDING

        效果：
        - Session 點數重設為初始點數，歷史紀錄清空
        - 取消尚未觸發的計時器
        - 不修改 Ledger 的點數（下次進入 Round 1 時才重新發放）
        """
        with player_mutex(player_id):
            session = SessionManager._reset(db, player_id)
            ctx.timers.cancel(player_id)
            return session

    @staticmethod
    @transactional
    def _reset(db: Session, player_id: int) -> GameSession:
        session = SessionManager._load_session(db, player_id, lock=True)

        if session.phase != SessionPhase.LANDING:
            SessionStateMachine.transition(session, SessionPhase.LANDING)

        session.results.clear()
        session.battles.clear()
        session.balance = get_settings().starting_balance
        session.round_number = 0
        session.round_status = None
        session.current_battle = 0
        session.battle_stake_total = 0
        session.betting_deadline = None
        session.betting_epoch += 1

        logger.info(f"Session of player {player_id} reset")
        return session

    # ============ Round 1 ============

    @staticmethod
    def submit_round1(db: Session, player_id: int, stake, choice, ctx: GameContext) -> RoundResult:
        """
        Round 1（Rocket Race）下注並結算

        參數：
            stake: 下注額（> 0 且 <= 目前點數）
            choice: 火箭 ID（1-5）

        返回：
            RoundResult

        異常：
            PhaseError: 不在 Round 1 下注階段
            NoSelectionError: 沒有選擇火箭
            ValidationError: 下注額或火箭 ID 不合法
            InsufficientCreditsError: 下注額超過點數
        """
        with player_mutex(player_id):
            result = SessionManager._submit_round1(db, player_id, stake, choice, ctx)
            ctx.timers.cancel(player_id)
            return result

    @staticmethod
    @transactional
    def _submit_round1(db: Session, player_id: int, stake, choice, ctx: GameContext) -> RoundResult:
        session = SessionManager._load_betting_session(db, player_id, SessionPhase.ROUND1)

        if choice is None:
            raise NoSelectionError("Choose a rocket before placing a bet")
        if not _is_int(choice) or choice not in ROCKET_CHOICES:
            raise ValidationError(f"Rocket must be one of {list(ROCKET_CHOICES)}, got {choice!r}")

        player = with_player_lock(player_id, db).first()
        validate_stake(stake, player.balance)

        return SessionManager._settle_round1(db, session, stake, choice, ctx, auto_submitted=False)

    @staticmethod
    def _settle_round1(db, session, stake, choice, ctx, auto_submitted) -> RoundResult:
        RoundStateMachine.transition(session, RoundStatus.RESOLVING)
        winner = ctx.authority.resolve_round1()
        multiplier = round1_multiplier(choice, winner)
        return SessionManager._record_settlement(
            db, session, stake, choice, {"winner": winner}, multiplier, auto_submitted
        )

    # ============ Round 2 ============

    @staticmethod
    def submit_round2(db: Session, player_id: int, stake, prediction, ctx: GameContext) -> RoundResult:
        """
        Round 2（Precision Shot）下注並結算

        參數：
            stake: 下注額（> 0 且 <= 目前點數）
            prediction: 預測射程（100-1000）

        異常：
            PhaseError: 不在 Round 2 下注階段
            ValidationError: 下注額或預測值不合法
            InsufficientCreditsError: 下注額超過點數
        """
        with player_mutex(player_id):
            result = SessionManager._submit_round2(db, player_id, stake, prediction, ctx)
            ctx.timers.cancel(player_id)
            return result

    @staticmethod
    @transactional
    def _submit_round2(db: Session, player_id: int, stake, prediction, ctx: GameContext) -> RoundResult:
        session = SessionManager._load_betting_session(db, player_id, SessionPhase.ROUND2)

        player = with_player_lock(player_id, db).first()
        validate_stake(stake, player.balance)

        if not _is_int(prediction) or not PREDICTION_MIN <= prediction <= PREDICTION_MAX:
            raise ValidationError(
                f"Prediction must be within [{PREDICTION_MIN}, {PREDICTION_MAX}], got {prediction!r}"
            )

        return SessionManager._settle_round2(db, session, stake, prediction, ctx, auto_submitted=False)

    @staticmethod
    def _settle_round2(db, session, stake, prediction, ctx, auto_submitted) -> RoundResult:
        RoundStateMachine.transition(session, RoundStatus.RESOLVING)
        target = ctx.authority.resolve_round2()
        multiplier = round2_multiplier(prediction, target)
        outcome = {"target": target, "accuracy": abs(target - prediction)}
        return SessionManager._record_settlement(
            db, session, stake, prediction, outcome, multiplier, auto_submitted
        )

    # ============ Round 3 ============

    @staticmethod
    def submit_round3_battle(
        db: Session,
        player_id: int,
        battle_index,
        stake,
        choice,
        ctx: GameContext
    ) -> BattleOutcome:
        """
        Round 3（Final Nexus）單場對戰下注

        規則：
        - 對戰必須依序提交（1 -> 20）
        - 單場下注可以是 0；所有場次的下注總和不可超過點數
        - choice 為 None 時預設押鬥士 1
        - 第 20 場結束後，依勝率對下注總和結算一次

        異常：
            PhaseError: 不在 Round 3 下注階段，或不是下一場對戰
            ValidationError: 對戰編號、下注額或鬥士不合法
            InsufficientCreditsError: 累積下注超過點數
        """
        with player_mutex(player_id):
            outcome = SessionManager._submit_battle(db, player_id, battle_index, stake, choice, ctx)
            ctx.timers.cancel(player_id)
            SessionManager._arm_timer(outcome.battle.session, ctx)
            return outcome

    @staticmethod
    @transactional
    def _submit_battle(db: Session, player_id: int, battle_index, stake, choice, ctx: GameContext) -> BattleOutcome:
        session = SessionManager._load_betting_session(db, player_id, SessionPhase.ROUND3)

        if not _is_int(battle_index) or not 1 <= battle_index <= BATTLE_COUNT:
            raise ValidationError(f"Battle index must be within [1, {BATTLE_COUNT}], got {battle_index!r}")
        if battle_index != session.current_battle:
            raise PhaseError(
                f"Battle {battle_index} is not open, next battle is {session.current_battle}"
            )

        if choice is None:
            choice = FIGHTER_CHOICES[0]
        if not _is_int(choice) or choice not in FIGHTER_CHOICES:
            raise ValidationError(f"Fighter must be one of {list(FIGHTER_CHOICES)}, got {choice!r}")

        player = with_player_lock(player_id, db).first()
        available = max(player.balance - session.battle_stake_total, 0)
        validate_stake(stake, available, allow_zero=True)

        return SessionManager._settle_battle(db, session, stake, choice, ctx, auto_submitted=False)

    @staticmethod
    def _settle_battle(db, session, stake, choice, ctx, auto_submitted) -> BattleOutcome:
        # 1. 擲硬幣決定這一場
        RoundStateMachine.transition(session, RoundStatus.RESOLVING)
        winner = ctx.authority.resolve_battle()
        battle = BattleBet(
            session_id=session.id,
            battle_index=session.current_battle,
            stake=stake,
            choice=choice,
            winner=winner,
            player_won=(choice == winner),
            auto_submitted=auto_submitted
        )
        db.add(battle)
        session.battles.append(battle)
        session.battle_stake_total += stake

        logger.info(
            f"Battle {battle.battle_index} for player {session.player_id}: "
            f"picked {choice}, winner {winner}, stake {stake}"
        )

        # 2. 還有下一場：回到 BETTING
        if session.current_battle < BATTLE_COUNT:
            session.current_battle += 1
            RoundStateMachine.transition(session, RoundStatus.BETTING)
            session.betting_epoch += 1
            SessionManager._set_deadline(session, ctx)
            db.flush()
            return BattleOutcome(battle=battle)

        # 3. 第 20 場：整個系列一次結算
        battles = sorted(session.battles, key=lambda b: b.battle_index)
        wins = sum(1 for b in battles if b.player_won)
        multiplier = round3_multiplier(wins, BATTLE_COUNT)
        outcome = {"winners": [b.winner for b in battles], "wins": wins, "battles": BATTLE_COUNT}
        settlement = SessionManager._record_settlement(
            db,
            session,
            session.battle_stake_total,
            [b.choice for b in battles],
            outcome,
            multiplier,
            auto_submitted
        )
        return BattleOutcome(battle=battle, settlement=settlement)

    # ============ 計時器 ============

    @staticmethod
    def auto_submit(db: Session, player_id: int, key: TimerKey, ctx: GameContext):
        """
        下注逾時：以 stake=0 和預設選擇自動提交

        只有在 Session 仍停在計時器當初的 (phase, battle) 且狀態為 BETTING 時才會執行，
        否則（玩家已手動提交、已重置）直接放棄

        返回：
            RoundResult / BattleOutcome；放棄時返回 None
        """
        with player_mutex(player_id):
            outcome = SessionManager._auto_submit(db, player_id, key, ctx)
            if isinstance(outcome, BattleOutcome):
                SessionManager._arm_timer(outcome.battle.session, ctx)
            return outcome

    @staticmethod
    @transactional
    def _auto_submit(db: Session, player_id: int, key: TimerKey, ctx: GameContext):
        session = with_session_lock(player_id, db).first()
        if not session:
            logger.warning(f"[timer-abort] player={player_id} has no session")
            return None

        if (
            session.phase.value != key.phase
            or session.round_status != RoundStatus.BETTING
            or session.betting_epoch != key.epoch
            or (session.phase == SessionPhase.ROUND3 and session.current_battle != key.battle)
        ):
            logger.warning(
                f"[timer-abort] player={player_id} expected {key.phase}/{key.battle}/{key.epoch}, "
                f"actual {session.phase.value}/{session.current_battle}/{session.betting_epoch}"
            )
            return None

        choice = default_choice(session.phase)
        logger.info(f"Auto-submitting {session.phase.value} for player {player_id} with choice {choice}")

        if session.phase == SessionPhase.ROUND1:
            return SessionManager._settle_round1(db, session, 0, choice, ctx, auto_submitted=True)
        elif session.phase == SessionPhase.ROUND2:
            return SessionManager._settle_round2(db, session, 0, choice, ctx, auto_submitted=True)
        else:
            return SessionManager._settle_battle(db, session, 0, choice, ctx, auto_submitted=True)

    @staticmethod
    def timer_key(session: GameSession) -> TimerKey:
        """目前下注窗口的計時器 key"""
        return TimerKey(session.phase.value, session.current_battle, session.betting_epoch)

    @staticmethod
    def _arm_timer(session: GameSession, ctx: GameContext) -> None:
        """Session 停在 BETTING 時啟動（或重設）下注倒數"""
        if not ctx.timers.enabled:
            return
        if not is_round_phase(session.phase) or session.round_status != RoundStatus.BETTING:
            return

        ctx.timers.schedule(
            session.player_id,
            SessionManager.timer_key(session),
            betting_duration(session.phase),
            SessionManager._timeout_callback(ctx)
        )

    @staticmethod
    def _timeout_callback(ctx: GameContext):
        def fire(player_id: int, key: TimerKey) -> None:
            # 計時器在背景執行緒，需要自己的 DB session
            db = database.SessionLocal()
            try:
                SessionManager.auto_submit(db, player_id, key, ctx)
            finally:
                db.close()
        return fire

    # ============ 內部工具 ============

    @staticmethod
    def _load_session(db: Session, player_id: int, lock: bool = False) -> GameSession:
        """
        取得（必要時建立）玩家的 Session

        異常：
            NotFoundError: 玩家不存在
        """
        if lock:
            session = with_session_lock(player_id, db).first()
        else:
            session = SessionManager._find_session(db, player_id)
        if session:
            return session

        # 確認玩家存在
        Ledger.get_player(db, player_id)

        session = SessionManager._new_session(player_id)
        db.add(session)
        db.flush()
        logger.info(f"Created session {session.id} for player {player_id}")
        return session

    @staticmethod
    def _find_session(db: Session, player_id: int) -> Optional[GameSession]:
        return db.query(GameSession).filter(GameSession.player_id == player_id).first()

    @staticmethod
    def _new_session(player_id: int) -> GameSession:
        """尚未加入 db 的 LANDING Session"""
        return GameSession(
            player_id=player_id,
            phase=SessionPhase.LANDING,
            round_number=0,
            round_status=None,
            balance=get_settings().starting_balance,
            current_battle=0,
            battle_stake_total=0,
            betting_deadline=None,
            betting_epoch=0
        )

    @staticmethod
    def _load_betting_session(db: Session, player_id: int, phase: SessionPhase) -> GameSession:
        """
        取得並鎖定 Session，確認正在指定回合的下注階段

        異常：
            PhaseError: 階段不符或已不在 BETTING
        """
        session = SessionManager._load_session(db, player_id, lock=True)
        if session.phase != phase:
            raise PhaseError(
                f"Cannot submit {phase.value} while session is in {session.phase.value}"
            )
        if session.round_status != RoundStatus.BETTING:
            status = session.round_status.value if session.round_status else "NONE"
            raise PhaseError(f"{phase.value} is not accepting bets (status: {status})")
        return session

    @staticmethod
    def _set_deadline(session: GameSession, ctx: GameContext) -> None:
        duration = betting_duration(session.phase)
        if ctx.timers.enabled and duration:
            session.betting_deadline = time.time() + duration
        else:
            session.betting_deadline = None

    @staticmethod
    def _record_settlement(
        db: Session,
        session: GameSession,
        stake: int,
        choice,
        resolved_outcome: dict,
        multiplier: Decimal,
        auto_submitted: bool
    ) -> RoundResult:
        """
        寫入結算結果

        流程：
        1. Ledger read-modify-write
        2. 新增 RoundResult（append-only）
        3. 回合 -> SETTLED，Session -> 下一個階段
        """
        # 1. 寫入 Ledger
        before, after = Ledger.apply_settlement(db, session.player_id, stake, multiplier)

        # 2. 紀錄結果
        result = RoundResult(
            session_id=session.id,
            round_number=session.round_number,
            stake=stake,
            choice=choice,
            resolved_outcome=resolved_outcome,
            multiplier=multiplier,
            delta=after - before,
            balance_after=after,
            auto_submitted=auto_submitted
        )
        db.add(result)
        session.results.append(result)
        session.balance = after

        # 3. 狀態轉換
        RoundStateMachine.transition(session, RoundStatus.SETTLED)
        SessionStateMachine.transition(session, PHASE_AFTER_SETTLEMENT[session.phase])
        session.betting_deadline = None
        db.flush()

        logger.info(
            f"Round {session.round_number} settled for player {session.player_id}: "
            f"stake={stake} multiplier={multiplier} balance {before} -> {after}"
        )
        return result
