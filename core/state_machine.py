"""
狀態機：集中管理所有狀態轉換

兩層狀態：
1. Session 階段：LANDING -> ROUND1 -> INTERSTITIAL1 -> ROUND2 -> INTERSTITIAL2 -> ROUND3 -> COMPLETE
2. 回合狀態：BETTING -> RESOLVING -> SETTLED（Round 3 每場對戰之間 RESOLVING -> BETTING）

消除特殊情況：所有轉換都查表，不合法就丟 PhaseError
"""
import logging

from models import GameSession, SessionPhase, RoundStatus
from core.exceptions import PhaseError

logger = logging.getLogger(__name__)


class SessionStateMachine:
    """Session 階段轉換"""

    # 任何階段都可以回到 LANDING（play again）
    TRANSITIONS = {
        SessionPhase.LANDING: {SessionPhase.ROUND1},
        SessionPhase.ROUND1: {SessionPhase.INTERSTITIAL1, SessionPhase.LANDING},
        SessionPhase.INTERSTITIAL1: {SessionPhase.ROUND2, SessionPhase.LANDING},
        SessionPhase.ROUND2: {SessionPhase.INTERSTITIAL2, SessionPhase.LANDING},
        SessionPhase.INTERSTITIAL2: {SessionPhase.ROUND3, SessionPhase.LANDING},
        SessionPhase.ROUND3: {SessionPhase.COMPLETE, SessionPhase.LANDING},
        SessionPhase.COMPLETE: {SessionPhase.LANDING},
    }

    @classmethod
    def can_transition(cls, current: SessionPhase, target: SessionPhase) -> bool:
        return target in cls.TRANSITIONS.get(current, set())

    @classmethod
    def transition(cls, session: GameSession, target: SessionPhase) -> GameSession:
        """
        轉換 Session 階段

        參數：
            session: 已鎖定的 GameSession
            target: 目標階段

        返回：
            更新後的 GameSession（未 commit）

        異常：
            PhaseError: 非法的轉換
        """
        current = session.phase
        if not cls.can_transition(current, target):
            raise PhaseError(
                f"Cannot move session of player {session.player_id} "
                f"from {current.value} to {target.value}"
            )

        session.phase = target
        logger.info(
            f"Session of player {session.player_id}: {current.value} -> {target.value}"
        )
        return session


class RoundStateMachine:
    """單一回合內的狀態轉換"""

    TRANSITIONS = {
        None: {RoundStatus.BETTING},
        RoundStatus.BETTING: {RoundStatus.RESOLVING},
        RoundStatus.RESOLVING: {RoundStatus.SETTLED, RoundStatus.BETTING},
        RoundStatus.SETTLED: set(),
    }

    @classmethod
    def transition(cls, session: GameSession, target: RoundStatus) -> GameSession:
        """
        轉換回合狀態

        BETTING -> RESOLVING 就是下注的 compare-and-swap：
        手動提交和計時器自動提交只有一個能成功

        異常：
            PhaseError: 非法的轉換
        """
        current = session.round_status
        if target not in cls.TRANSITIONS.get(current, set()):
            current_label = current.value if current else "NONE"
            raise PhaseError(
                f"Round {session.round_number} of player {session.player_id} "
                f"cannot move from {current_label} to {target.value}"
            )

        session.round_status = target
        return session
