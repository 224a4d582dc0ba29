"""
Session / Round API Endpoints

重點：
1. 所有業務邏輯集中在 SessionManager
2. 每個回合的下注 = 驗證 + 取得結果 + 結算 + 推進階段，一次完成
3. 前端靠 GET /api/sessions/{player_id} 取得目前階段與倒數截止時間
"""
from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import logging

from database import get_db
from schemas import (
    SessionStateResponse,
    Round1Submit,
    Round2Submit,
    BattleSubmit,
    RoundResultResponse,
    BattleResultResponse,
    SettlementResponse,
    BattleResponse,
    HistoryResponse,
)
from core.context import GameContext, get_game_context
from core.session_manager import SessionManager
from core.exceptions import NexusGambleException
from api.errors import to_http_exception, storage_unavailable, internal_error

router = APIRouter(prefix="/api/sessions", tags=["rounds"])
logger = logging.getLogger(__name__)


def _settlement_response(db: Session, player_id: int, result) -> SettlementResponse:
    session = SessionManager.get_session(db, player_id)
    return SettlementResponse(
        result=RoundResultResponse.model_validate(result),
        session=SessionStateResponse.model_validate(session)
    )


@router.get("/{player_id}", response_model=SessionStateResponse)
def get_session_state(player_id: int, db: Session = Depends(get_db)):
    """
    取得 Session 狀態

    返回：
        - phase: LANDING / ROUND1 / INTERSTITIAL1 / ROUND2 / INTERSTITIAL2 / ROUND3 / COMPLETE
        - round_status: BETTING / RESOLVING / SETTLED
        - balance: 目前點數
        - current_battle: Round 3 下一場對戰（1-20）
        - betting_deadline: 下注截止時間（epoch 秒）
    """
    try:
        session = SessionManager.get_session(db, player_id)
        return SessionStateResponse.model_validate(session)

    except NexusGambleException as e:
        raise to_http_exception(e)
    except SQLAlchemyError as e:
        logger.error(f"Storage failure while fetching session: {e}", exc_info=True)
        db.rollback()
        raise storage_unavailable(e)
    except Exception as e:
        logger.error(f"Failed to get session: {e}", exc_info=True)
        raise internal_error()


@router.post("/{player_id}/advance", response_model=SessionStateResponse)
def advance_phase(
    player_id: int,
    db: Session = Depends(get_db),
    ctx: GameContext = Depends(get_game_context)
):
    """
    推進到下一個回合（玩家 endpoint）

    允許：
    - LANDING -> ROUND1（發放初始點數）
    - INTERSTITIAL1 -> ROUND2
    - INTERSTITIAL2 -> ROUND3

    其他階段回傳 409 PhaseError
    """
    try:
        session = SessionManager.advance_phase(db, player_id, ctx)
        logger.info(f"Player {player_id} advanced to {session.phase.value}")
        return SessionStateResponse.model_validate(session)

    except NexusGambleException as e:
        raise to_http_exception(e)
    except SQLAlchemyError as e:
        logger.error(f"Storage failure while advancing: {e}", exc_info=True)
        db.rollback()
        raise storage_unavailable(e)
    except Exception as e:
        logger.error(f"Failed to advance phase: {e}", exc_info=True)
        db.rollback()
        raise internal_error()


@router.post("/{player_id}/reset", response_model=SessionStateResponse)
def reset_session(
    player_id: int,
    db: Session = Depends(get_db),
    ctx: GameContext = Depends(get_game_context)
):
    """
    Play again：回到 LANDING，Session 點數重設、歷史清空

    注意：
        - 不會修改 Ledger 的點數
    """
    try:
        session = SessionManager.reset_session(db, player_id, ctx)
        return SessionStateResponse.model_validate(session)

    except NexusGambleException as e:
        raise to_http_exception(e)
    except SQLAlchemyError as e:
        logger.error(f"Storage failure while resetting: {e}", exc_info=True)
        db.rollback()
        raise storage_unavailable(e)
    except Exception as e:
        logger.error(f"Failed to reset session: {e}", exc_info=True)
        db.rollback()
        raise internal_error()


@router.post("/{player_id}/round1", response_model=SettlementResponse)
def submit_round1(
    player_id: int,
    bet: Round1Submit,
    db: Session = Depends(get_db),
    ctx: GameContext = Depends(get_game_context)
):
    """
    Round 1（Rocket Race）下注

    參數：
        stake: 下注額
        choice: 火箭 ID（1-5）

    結算：
        押中 -> 2.5 倍；沒押中 -> 全輸
    """
    try:
        logger.info(f"Round 1 bet from player {player_id}: stake={bet.stake} choice={bet.choice}")
        result = SessionManager.submit_round1(db, player_id, bet.stake, bet.choice, ctx)
        return _settlement_response(db, player_id, result)

    except NexusGambleException as e:
        raise to_http_exception(e)
    except SQLAlchemyError as e:
        logger.error(f"Storage failure in round 1: {e}", exc_info=True)
        db.rollback()
        raise storage_unavailable(e)
    except Exception as e:
        logger.error(f"Failed to submit round 1: {e}", exc_info=True)
        db.rollback()
        raise internal_error()


@router.post("/{player_id}/round2", response_model=SettlementResponse)
def submit_round2(
    player_id: int,
    bet: Round2Submit,
    db: Session = Depends(get_db),
    ctx: GameContext = Depends(get_game_context)
):
    """
    Round 2（Precision Shot）下注

    參數：
        stake: 下注額
        prediction: 預測射程（100-1000）

    結算：
        誤差 <= 20 -> 5 倍；<= 50 -> 3 倍；<= 100 -> 2 倍；其他 -> 全輸
    """
    try:
        logger.info(
            f"Round 2 bet from player {player_id}: stake={bet.stake} prediction={bet.prediction}"
        )
        result = SessionManager.submit_round2(db, player_id, bet.stake, bet.prediction, ctx)
        return _settlement_response(db, player_id, result)

    except NexusGambleException as e:
        raise to_http_exception(e)
    except SQLAlchemyError as e:
        logger.error(f"Storage failure in round 2: {e}", exc_info=True)
        db.rollback()
        raise storage_unavailable(e)
    except Exception as e:
        logger.error(f"Failed to submit round 2: {e}", exc_info=True)
        db.rollback()
        raise internal_error()


@router.post("/{player_id}/round3/battles/{battle_index}", response_model=BattleResponse)
def submit_round3_battle(
    player_id: int,
    battle_index: int,
    bet: BattleSubmit,
    db: Session = Depends(get_db),
    ctx: GameContext = Depends(get_game_context)
):
    """
    Round 3（Final Nexus）單場對戰下注

    參數：
        battle_index: 對戰編號（1-20，必須依序）
        stake: 下注額（可以是 0）
        choice: 鬥士 1 或 2（省略時為 1）

    返回：
        - battle: 這一場的結果
        - settlement: 第 20 場時附上整回合結算，否則為 null
    """
    try:
        outcome = SessionManager.submit_round3_battle(
            db, player_id, battle_index, bet.stake, bet.choice, ctx
        )
        session = SessionManager.get_session(db, player_id)
        return BattleResponse(
            battle=BattleResultResponse.model_validate(outcome.battle),
            settlement=(
                RoundResultResponse.model_validate(outcome.settlement)
                if outcome.settlement is not None else None
            ),
            session=SessionStateResponse.model_validate(session)
        )

    except NexusGambleException as e:
        raise to_http_exception(e)
    except SQLAlchemyError as e:
        logger.error(f"Storage failure in round 3: {e}", exc_info=True)
        db.rollback()
        raise storage_unavailable(e)
    except Exception as e:
        logger.error(f"Failed to submit battle: {e}", exc_info=True)
        db.rollback()
        raise internal_error()


@router.get("/{player_id}/history", response_model=HistoryResponse)
def get_history(player_id: int, db: Session = Depends(get_db)):
    """取得本次遊戲已結算的回合紀錄（Round 3 進行中也會列出已完成的對戰）"""
    try:
        rounds = SessionManager.get_history(db, player_id)
        return HistoryResponse(player_id=player_id, rounds=rounds)

    except NexusGambleException as e:
        raise to_http_exception(e)
    except SQLAlchemyError as e:
        logger.error(f"Storage failure while fetching history: {e}", exc_info=True)
        db.rollback()
        raise storage_unavailable(e)
    except Exception as e:
        logger.error(f"Failed to get history: {e}", exc_info=True)
        raise internal_error()
