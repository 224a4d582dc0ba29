"""
Ledger：玩家身分與點數的唯一寫入點

職責：
1. 建立玩家（名稱冪等）
2. 查詢玩家
3. Admin 直接設定點數（不檢查回合階段）
4. 回合結算的 read-modify-write

並發：
- set_balance 與 apply_settlement 都在 player_mutex + row lock 內完成整個 transaction
- 兩個同時的 set_balance 結果一定是其中一個提交值，不會交錯
"""
import logging
from decimal import Decimal
from typing import List, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import Player
from core.locks import player_mutex, with_player_lock
from core.exceptions import NotFoundError, ValidationError
from services.naming_service import normalize_display_name
from services.settlement_service import settle_balance
from database import transactional, get_settings

logger = logging.getLogger(__name__)


def _validate_balance(balance) -> int:
    # bool 是 int 的子類別，要排除
    if isinstance(balance, bool) or not isinstance(balance, int):
        raise ValidationError(f"Balance must be an integer, got {balance!r}")
    if balance < 0:
        raise ValidationError(f"Balance must be non-negative, got {balance}")
    return balance


class Ledger:
    """玩家點數帳本"""

    @staticmethod
    def get_player(db: Session, player_id: int) -> Player:
        """
        透過 ID 取得玩家

        異常：
            NotFoundError: 玩家不存在
        """
        player = db.query(Player).filter(Player.id == player_id).first()
        if not player:
            raise NotFoundError(player_id)
        return player

    @staticmethod
    def get_player_by_name(db: Session, name: str) -> Player:
        """
        透過顯示名稱取得玩家（名稱會先 trim）

        異常：
            NotFoundError: 玩家不存在
        """
        trimmed = name.strip() if isinstance(name, str) else name
        player = db.query(Player).filter(Player.display_name == trimmed).first()
        if not player:
            raise NotFoundError(f"named {trimmed!r}")
        return player

    @staticmethod
    def create_player(db: Session, name: str) -> Tuple[Player, bool]:
        """
        建立玩家（冪等）

        流程：
        1. 驗證並 trim 名稱
        2. 名稱已存在 -> 原封不動回傳既有玩家
        3. 否則建立新玩家，點數為初始點數

        返回：
            (Player, created) tuple

        異常：
            ValidationError: 名稱不合法

        注意：
            - 兩個請求同時註冊同一個名稱時，unique constraint 會擋下其中一個，
              失敗的那個改為讀取既有玩家
        """
        display_name = normalize_display_name(name)

        existing = db.query(Player).filter(Player.display_name == display_name).first()
        if existing:
            logger.info(f"Player {existing.id} ({display_name}) already registered")
            return existing, False

        player = Player(
            display_name=display_name,
            balance=get_settings().starting_balance
        )
        db.add(player)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning(f"Concurrent registration detected for {display_name}")
            return Ledger.get_player_by_name(db, display_name), False

        db.refresh(player)
        logger.info(f"Created player {player.id} ({display_name}) with balance {player.balance}")
        return player, True

    @staticmethod
    def set_balance(db: Session, player_id: int, balance: int) -> Player:
        """
        Admin 直接設定玩家點數

        這是回合結算以外唯一能修改點數的路徑，不檢查回合階段，
        所以和進行中的結算共用同一把 player_mutex

        異常：
            ValidationError: balance 不是非負整數
            NotFoundError: 玩家不存在
        """
        balance = _validate_balance(balance)
        with player_mutex(player_id):
            return Ledger._set_balance(db, player_id, balance)

    @staticmethod
    @transactional
    def _set_balance(db: Session, player_id: int, balance: int) -> Player:
        player = with_player_lock(player_id, db).first()
        if not player:
            raise NotFoundError(player_id)

        previous = player.balance
        player.balance = balance
        logger.info(f"Balance of player {player_id} set {previous} -> {balance}")
        return player

    @staticmethod
    def apply_settlement(
        db: Session,
        player_id: int,
        stake: int,
        multiplier: Decimal
    ) -> Tuple[int, int]:
        """
        結算寫入：讀取目前點數 -> 計算 -> 寫回

        呼叫者必須已持有 player_mutex，且在同一個 transaction 內 commit

        返回：
            (balance_before, balance_after) tuple

        注意：
            - 不 commit（讓外層 transaction 處理）
            - 結果若為負（admin 在 Round 3 途中調低點數）會被壓到 0
        """
        player = with_player_lock(player_id, db).first()
        if not player:
            raise NotFoundError(player_id)

        before = player.balance
        after = settle_balance(before, stake, multiplier)
        if after < 0:
            logger.warning(
                f"Settlement for player {player_id} would go negative ({after}), clamping to 0"
            )
            after = 0

        player.balance = after
        db.flush()
        return before, after

    @staticmethod
    def list_players(db: Session) -> List[Player]:
        """所有玩家，依 ID 由小到大"""
        return db.query(Player).order_by(Player.id.asc()).all()
