"""
排行榜服務：依點數排名與 admin 統計

純查詢邏輯，不改變任何狀態
"""
from typing import List, Dict, Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import Player


def get_leaderboard(db: Session, limit: int = 20) -> List[Dict[str, Any]]:
    """
    依點數由高到低排名（同分時 ID 小的在前）

    參數：
        db: SQLAlchemy Session
        limit: 最多回傳幾名

    返回：
        [{"rank": 1, "player_id": ..., "display_name": ..., "balance": ...}, ...]
    """
    players = (
        db.query(Player)
        .order_by(Player.balance.desc(), Player.id.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            "rank": index + 1,
            "player_id": player.id,
            "display_name": player.display_name,
            "balance": player.balance,
        }
        for index, player in enumerate(players)
    ]


def player_status(balance: int) -> str:
    """Admin 後台顯示用：有點數為 Active，否則 No Credits"""
    return "Active" if balance > 0 else "No Credits"


def get_admin_stats(db: Session) -> Dict[str, int]:
    """
    Admin 統計：玩家總數與點數總和
    """
    total_users, total_credits = db.query(
        func.count(Player.id),
        func.coalesce(func.sum(Player.balance), 0)
    ).one()
    return {
        "total_users": int(total_users),
        "total_credits": int(total_credits),
    }
