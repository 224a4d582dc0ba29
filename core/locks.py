"""
並發控制工具

防止 admin 修改點數與回合結算之間的競態條件（Lost Update）

兩層鎖：
1. Process 內：每位玩家一把 threading.Lock（SQLite 不支援 row lock）
2. Database：PostgreSQL 的 SELECT ... FOR UPDATE 悲觀鎖

不同玩家之間互不阻塞
"""
import threading
import weakref
from contextlib import contextmanager
from typing import Iterator, MutableMapping

from sqlalchemy.orm import Session, Query

from models import Player, GameSession

_registry_lock = threading.Lock()
# 只保留正在被使用的鎖：沒有人持有或等待時，項目會自動消失
_player_mutexes: MutableMapping[int, threading.Lock] = weakref.WeakValueDictionary()


def _mutex_for(player_id: int) -> threading.Lock:
    with _registry_lock:
        mutex = _player_mutexes.get(player_id)
        if mutex is None:
            mutex = threading.Lock()
            _player_mutexes[player_id] = mutex
        return mutex


@contextmanager
def player_mutex(player_id: int) -> Iterator[None]:
    """
    取得某位玩家的 process 內互斥鎖

    使用場景：
    - Ledger.set_balance（admin 修改點數）
    - 回合結算的 read-modify-write
    - 計時器自動提交

    範例：
        with player_mutex(player_id):
            SessionManager._settle(db, ...)   # @transactional，commit 在鎖內完成

    注意：
        - 鎖必須包住整個 transaction（含 commit），否則另一個執行緒可能讀到舊值
        - 不可重入：持有鎖時不要再呼叫會取同一把鎖的函式
    """
    mutex = _mutex_for(player_id)
    with mutex:
        yield


def with_player_lock(player_id: int, db: Session) -> Query:
    """
    鎖定一個 Player（行級鎖）

    使用場景：
    - 修改 balance 時
    - 需要確保 balance 在整個 transaction 期間不被其他請求修改

    參數：
        player_id: Player ID
        db: SQLAlchemy Session

    返回：
        Query object（需要呼叫 .first() 或 .one() 來取得結果）

    注意：
        - nowait=False 表示如果鎖被佔用，會等待
        - SQLite 會忽略 FOR UPDATE，由 player_mutex 負責序列化
    """
    return db.query(Player).filter(
        Player.id == player_id
    ).with_for_update(nowait=False)


def with_session_lock(player_id: int, db: Session) -> Query:
    """
    鎖定玩家的 GameSession（行級鎖）

    使用場景：
    - 檢查並修改回合狀態時（BETTING -> RESOLVING 的 compare-and-swap）
    - 計時器觸發時確認階段是否仍然相符
    """
    return db.query(GameSession).filter(
        GameSession.player_id == player_id
    ).with_for_update(nowait=False)
