"""
Player API Endpoints

職責：
1. 玩家註冊（名稱冪等）
2. 查詢玩家資訊
3. 排行榜
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from database import get_db
from schemas import (
    PlayerRegister,
    PlayerResponse,
    RegisterResponse,
    SessionStateResponse,
    LeaderboardEntry,
)
from core.ledger import Ledger
from core.session_manager import SessionManager
from core.exceptions import NexusGambleException
from services.leaderboard_service import get_leaderboard
from api.errors import to_http_exception, storage_unavailable, internal_error

router = APIRouter(prefix="/api", tags=["players"])
logger = logging.getLogger(__name__)


@router.post("/players/register", response_model=RegisterResponse)
def register_player(player_data: PlayerRegister, db: Session = Depends(get_db)):
    """
    註冊玩家（玩家 endpoint）

    流程：
    1. trim 名稱並驗證（至少 2 個字元）
    2. 名稱已存在 -> 回傳既有玩家，點數不變
    3. 確保玩家有 Session（新玩家在 LANDING）

    返回：
        - player: 玩家資訊
        - created: 是否為新玩家
        - session: 目前 Session 狀態
    """
    try:
        player, created = Ledger.create_player(db, player_data.display_name)
        session = SessionManager.ensure_session(db, player.id)

        return RegisterResponse(
            player=PlayerResponse.model_validate(player),
            created=created,
            session=SessionStateResponse.model_validate(session)
        )

    except NexusGambleException as e:
        raise to_http_exception(e)
    except SQLAlchemyError as e:
        logger.error(f"Storage failure during registration: {e}", exc_info=True)
        db.rollback()
        raise storage_unavailable(e)
    except Exception as e:
        logger.error(f"Failed to register player: {e}", exc_info=True)
        db.rollback()
        raise internal_error()


@router.get("/players/{player_id}", response_model=PlayerResponse)
def get_player(player_id: int, db: Session = Depends(get_db)):
    """查詢玩家（點數以 Ledger 為準）"""
    try:
        return PlayerResponse.model_validate(Ledger.get_player(db, player_id))

    except NexusGambleException as e:
        raise to_http_exception(e)
    except SQLAlchemyError as e:
        logger.error(f"Storage failure while fetching player: {e}", exc_info=True)
        raise storage_unavailable(e)
    except Exception as e:
        logger.error(f"Failed to get player: {e}", exc_info=True)
        raise internal_error()


@router.get("/leaderboard", response_model=List[LeaderboardEntry])
def leaderboard(limit: int = Query(20, ge=1, le=100), db: Session = Depends(get_db)):
    """
    排行榜：依點數由高到低

    參數：
        limit: 最多回傳幾名（預設 20）
    """
    try:
        return get_leaderboard(db, limit=limit)

    except SQLAlchemyError as e:
        logger.error(f"Storage failure while building leaderboard: {e}", exc_info=True)
        raise storage_unavailable(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to build leaderboard: {e}", exc_info=True)
        raise internal_error()
