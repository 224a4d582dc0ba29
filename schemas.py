"""
Request / Response schemas

請求欄位只做型別檢查，範圍驗證交給領域層（錯誤種類才會一致）
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, StrictInt

from models import SessionPhase, RoundStatus


# ============ Player ============

class PlayerRegister(BaseModel):
    display_name: str


class PlayerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    display_name: str
    balance: int


class SessionStateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    player_id: int
    phase: SessionPhase
    round_number: int
    round_status: Optional[RoundStatus] = None
    balance: int
    current_battle: int
    battle_stake_total: int
    betting_deadline: Optional[float] = None


class RegisterResponse(BaseModel):
    player: PlayerResponse
    created: bool
    session: SessionStateResponse


class LeaderboardEntry(BaseModel):
    rank: int
    player_id: int
    display_name: str
    balance: int


# ============ Rounds ============

class Round1Submit(BaseModel):
    stake: int
    choice: Optional[int] = None


class Round2Submit(BaseModel):
    stake: int
    prediction: int


class BattleSubmit(BaseModel):
    stake: int = 0
    choice: Optional[int] = None


class RoundResultResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    round_number: int
    stake: int
    choice: Any
    resolved_outcome: Dict[str, Any]
    multiplier: float
    delta: int
    balance_after: int
    auto_submitted: bool


class BattleResultResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    battle_index: int
    stake: int
    choice: int
    winner: int
    player_won: bool
    auto_submitted: bool


class SettlementResponse(BaseModel):
    result: RoundResultResponse
    session: SessionStateResponse


class BattleResponse(BaseModel):
    battle: BattleResultResponse
    settlement: Optional[RoundResultResponse] = None
    session: SessionStateResponse


class HistoryResponse(BaseModel):
    player_id: int
    rounds: List[Dict[str, Any]]


# ============ Admin ============

class AdminPlayerResponse(BaseModel):
    id: int
    display_name: str
    balance: int
    status: str


class BalanceUpdate(BaseModel):
    balance: StrictInt


class Round1Override(BaseModel):
    winner: int


class Round2Override(BaseModel):
    range: int


class OverridesResponse(BaseModel):
    round1_winner: Optional[int] = None
    round2_range: Optional[int] = None


class StatsResponse(BaseModel):
    total_users: int
    total_credits: int
