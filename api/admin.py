"""
Admin API Endpoints

職責：
1. 查看所有玩家與點數
2. 直接修改玩家點數（不檢查回合階段）
3. 設定 Round 1 / Round 2 的結果（sticky override）
4. 統計資料
"""
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from database import get_db
from schemas import (
    AdminPlayerResponse,
    BalanceUpdate,
    PlayerResponse,
    Round1Override,
    Round2Override,
    OverridesResponse,
    StatsResponse,
)
from core.context import GameContext, get_game_context
from core.ledger import Ledger
from core.exceptions import NexusGambleException
from services.leaderboard_service import get_admin_stats, player_status
from api.errors import to_http_exception, storage_unavailable, internal_error

router = APIRouter(prefix="/api/admin", tags=["admin"])
logger = logging.getLogger(__name__)


@router.get("/users", response_model=List[AdminPlayerResponse])
def list_users(db: Session = Depends(get_db)):
    """所有玩家（依 ID 排序），附上 Active / No Credits 狀態"""
    try:
        return [
            AdminPlayerResponse(
                id=player.id,
                display_name=player.display_name,
                balance=player.balance,
                status=player_status(player.balance)
            )
            for player in Ledger.list_players(db)
        ]

    except SQLAlchemyError as e:
        logger.error(f"Storage failure while listing users: {e}", exc_info=True)
        raise storage_unavailable(e)
    except Exception as e:
        logger.error(f"Failed to list users: {e}", exc_info=True)
        raise internal_error()


@router.patch("/users/{player_id}/balance", response_model=PlayerResponse)
def set_user_balance(player_id: int, data: BalanceUpdate, db: Session = Depends(get_db)):
    """
    修改玩家點數（Admin endpoint）

    前置條件：
    - balance 必須是非負整數

    注意：
        - 與回合結算共用 per-player 鎖，不會互相覆蓋
    """
    try:
        player = Ledger.set_balance(db, player_id, data.balance)
        return PlayerResponse.model_validate(player)

    except NexusGambleException as e:
        raise to_http_exception(e)
    except SQLAlchemyError as e:
        logger.error(f"Storage failure while updating balance: {e}", exc_info=True)
        db.rollback()
        raise storage_unavailable(e)
    except Exception as e:
        logger.error(f"Failed to update balance: {e}", exc_info=True)
        db.rollback()
        raise internal_error()


@router.post("/round1", response_model=OverridesResponse)
def set_round1_winner(data: Round1Override, ctx: GameContext = Depends(get_game_context)):
    """
    指定 Round 1 的贏家（火箭 1-3）

    Override 不會在使用後清除，之後每一次 Round 1 結算都會用到
    """
    try:
        snapshot = ctx.overrides.set_round1_winner(data.winner)
        return OverridesResponse(**snapshot.to_dict())

    except NexusGambleException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to set round 1 override: {e}", exc_info=True)
        raise internal_error()


@router.post("/round2", response_model=OverridesResponse)
def set_round2_range(data: Round2Override, ctx: GameContext = Depends(get_game_context)):
    """
    指定 Round 2 的射程（100-1000）

    Override 不會在使用後清除，之後每一次 Round 2 結算都會用到
    """
    try:
        snapshot = ctx.overrides.set_round2_range(data.range)
        return OverridesResponse(**snapshot.to_dict())

    except NexusGambleException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to set round 2 override: {e}", exc_info=True)
        raise internal_error()


@router.get("/overrides", response_model=OverridesResponse)
def get_overrides(ctx: GameContext = Depends(get_game_context)):
    return OverridesResponse(**ctx.overrides.snapshot().to_dict())


@router.get("/stats", response_model=StatsResponse)
def get_stats(db: Session = Depends(get_db)):
    """玩家總數與點數總和"""
    try:
        return StatsResponse(**get_admin_stats(db))

    except SQLAlchemyError as e:
        logger.error(f"Storage failure while computing stats: {e}", exc_info=True)
        raise storage_unavailable(e)
    except Exception as e:
        logger.error(f"Failed to compute stats: {e}", exc_info=True)
        raise internal_error()
