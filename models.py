"""
ORM Models

資料表：
- players：玩家身分與點數（Ledger）
- game_sessions：每位玩家一個 session，記錄目前階段
- round_results：回合結算紀錄（append-only）
- battle_bets：Round 3 每一場對戰的下注與結果
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class SessionPhase(str, enum.Enum):
    LANDING = "LANDING"
    ROUND1 = "ROUND1"
    INTERSTITIAL1 = "INTERSTITIAL1"
    ROUND2 = "ROUND2"
    INTERSTITIAL2 = "INTERSTITIAL2"
    ROUND3 = "ROUND3"
    COMPLETE = "COMPLETE"


class RoundStatus(str, enum.Enum):
    BETTING = "BETTING"
    RESOLVING = "RESOLVING"
    SETTLED = "SETTLED"


class Player(Base):
    __tablename__ = "players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    display_name = Column(String(64), unique=True, nullable=False, index=True)
    balance = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    session = relationship(
        "GameSession", back_populates="player", uselist=False, cascade="all, delete-orphan"
    )


class GameSession(Base):
    __tablename__ = "game_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    player_id = Column(Integer, ForeignKey("players.id"), unique=True, nullable=False)
    phase = Column(Enum(SessionPhase), nullable=False, default=SessionPhase.LANDING)
    round_number = Column(Integer, nullable=False, default=0)
    round_status = Column(Enum(RoundStatus), nullable=True)
    balance = Column(Integer, nullable=False, default=0)

    # Round 3 進度：下一場要下注的對戰（1-based）與本回合累積的下注額
    current_battle = Column(Integer, nullable=False, default=0)
    battle_stake_total = Column(Integer, nullable=False, default=0)

    # 下注窗口編號：每次開新的下注窗口（推進、重置、下一場對戰）都 +1，
    # 計時器帶著這個值，舊窗口的計時器永遠對不上
    betting_epoch = Column(Integer, nullable=False, default=0)

    # 下注截止時間（epoch 秒），只給前端倒數用
    betting_deadline = Column(Float, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    player = relationship("Player", back_populates="session")
    results = relationship(
        "RoundResult",
        back_populates="session",
        order_by="RoundResult.id",
        cascade="all, delete-orphan",
    )
    battles = relationship(
        "BattleBet",
        back_populates="session",
        order_by="BattleBet.battle_index",
        cascade="all, delete-orphan",
    )


class RoundResult(Base):
    __tablename__ = "round_results"
    __table_args__ = (
        UniqueConstraint("session_id", "round_number", name="uq_round_result_session_round"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("game_sessions.id"), nullable=False, index=True)
    round_number = Column(Integer, nullable=False)
    stake = Column(Integer, nullable=False)
    choice = Column(JSON, nullable=True)
    resolved_outcome = Column(JSON, nullable=True)
    multiplier = Column(Numeric(6, 2), nullable=False)
    delta = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    auto_submitted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    session = relationship("GameSession", back_populates="results")


class BattleBet(Base):
    __tablename__ = "battle_bets"
    __table_args__ = (
        UniqueConstraint("session_id", "battle_index", name="uq_battle_bet_session_index"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("game_sessions.id"), nullable=False, index=True)
    battle_index = Column(Integer, nullable=False)
    stake = Column(Integer, nullable=False)
    choice = Column(Integer, nullable=False)
    winner = Column(Integer, nullable=False)
    player_won = Column(Boolean, nullable=False)
    auto_submitted = Column(Boolean, nullable=False, default=False)

    session = relationship("GameSession", back_populates="battles")
