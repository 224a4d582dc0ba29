from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from pydantic_settings import BaseSettings
from functools import lru_cache, wraps
import logging

from core.exceptions import NexusGambleException

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    database_url: str = "sqlite:///./nexus_gamble.db"

    # 初始點數：新玩家註冊與每次進入 Round 1 時發放
    starting_balance: int = 10000

    # 下注倒數（秒），逾時會以 stake=0 自動提交
    round1_duration_sec: int = 30
    round2_duration_sec: int = 45
    round3_battle_duration_sec: int = 20

    # Round 2 逾時的預設預測值
    round2_default_prediction: int = 500

    # 測試環境可關閉背景計時器
    enable_timers: bool = True

    # 前端來源，逗號分隔；"*" 表示全部允許
    cors_origins: str = "*"

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings():
    return Settings()


settings = get_settings()


def build_engine(database_url: str):
    """
    建立 SQLAlchemy Engine

    SQLite 需要特殊設定：
    - connect_args={"check_same_thread": False}：允許計時器執行緒共用連線
    - in-memory 資料庫必須用 StaticPool，否則每個連線都是一個新的空資料庫
    """
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True)

    kwargs = {"connect_args": {"check_same_thread": False}}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """
    FastAPI dependency：每個請求一個 Session，請求結束就關閉
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _find_session(args, kwargs):
    if args and isinstance(args[0], Session):
        return args[0]
    return kwargs.get("db")


def transactional(func):
    """
    把整個函式包成一個 transaction

    - 正常返回：commit
    - 拋出異常：rollback 後原樣拋出，由 API 層轉成錯誤回應

    範例：
        @transactional
        def _reset(db: Session, player_id: int):
            session = ...
            session.phase = SessionPhase.LANDING   # 離開函式時才 commit

    注意：
        - db 必須是第一個位置參數或 db= 關鍵字參數
        - 被包住的函式裡不要自己 commit
        - 需要 per-player 序列化時，player_mutex 要包在這個 decorator 外面，
          讓 commit 也在鎖內完成
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        db = _find_session(args, kwargs)
        if db is None:
            raise ValueError(f"{func.__name__} is @transactional but no db Session was passed")

        try:
            result = func(*args, **kwargs)
            db.commit()
        except NexusGambleException as e:
            # 領域驗證失敗：正常的拒絕，不算錯誤
            logger.debug(f"Rolling back {func.__name__}: {e}")
            db.rollback()
            raise
        except Exception as e:
            logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            db.rollback()
            raise
        return result

    return wrapper
