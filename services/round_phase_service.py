"""
回合階段服務：每個回合的規則常數與階段對應

Nexus Gamble 的回合設計：
- Round 1（Rocket Race）：5 支火箭選 1
- Round 2（Precision Shot）：預測射程 100-1000
- Round 3（Final Nexus）：20 場兩選一對戰
- 每個回合結束後進入 Interstitial（排行榜），Round 3 結束後進入 Complete
"""
from typing import Optional

from models import SessionPhase
from database import get_settings

ROCKET_CHOICES = (1, 2, 3, 4, 5)
FIGHTER_CHOICES = (1, 2)
BATTLE_COUNT = 20

PREDICTION_MIN = 100
PREDICTION_MAX = 1000

# Admin override 的範圍，Round 1 只開放前三支火箭
ROUND1_OVERRIDE_CHOICES = (1, 2, 3)

ROUND_PHASES = {
    1: SessionPhase.ROUND1,
    2: SessionPhase.ROUND2,
    3: SessionPhase.ROUND3,
}

# 結算後的下一個階段
PHASE_AFTER_SETTLEMENT = {
    SessionPhase.ROUND1: SessionPhase.INTERSTITIAL1,
    SessionPhase.ROUND2: SessionPhase.INTERSTITIAL2,
    SessionPhase.ROUND3: SessionPhase.COMPLETE,
}

# 玩家主動推進（advance）允許的轉換
PHASE_ADVANCES = {
    SessionPhase.LANDING: SessionPhase.ROUND1,
    SessionPhase.INTERSTITIAL1: SessionPhase.ROUND2,
    SessionPhase.INTERSTITIAL2: SessionPhase.ROUND3,
}


def get_round_number(phase: SessionPhase) -> int:
    """
    根據階段決定「目前/剛結束」的回合數

    範例：
        get_round_number(SessionPhase.LANDING)       -> 0
        get_round_number(SessionPhase.INTERSTITIAL1) -> 1
        get_round_number(SessionPhase.COMPLETE)      -> 3
    """
    return {
        SessionPhase.LANDING: 0,
        SessionPhase.ROUND1: 1,
        SessionPhase.INTERSTITIAL1: 1,
        SessionPhase.ROUND2: 2,
        SessionPhase.INTERSTITIAL2: 2,
        SessionPhase.ROUND3: 3,
        SessionPhase.COMPLETE: 3,
    }[phase]


def is_round_phase(phase: SessionPhase) -> bool:
    """檢查是否為可下注的回合階段"""
    return phase in PHASE_AFTER_SETTLEMENT


def betting_duration(phase: SessionPhase) -> Optional[int]:
    """
    下注倒數秒數

    返回：
        秒數；非回合階段返回 None
    """
    settings = get_settings()
    if phase == SessionPhase.ROUND1:
        return settings.round1_duration_sec
    elif phase == SessionPhase.ROUND2:
        return settings.round2_duration_sec
    elif phase == SessionPhase.ROUND3:
        return settings.round3_battle_duration_sec
    return None


def default_choice(phase: SessionPhase) -> Optional[int]:
    """
    逾時自動提交用的預設選擇

    - Round 1：第一支火箭
    - Round 2：預設預測值（設定檔）
    - Round 3：第一位鬥士
    """
    if phase == SessionPhase.ROUND1:
        return ROCKET_CHOICES[0]
    elif phase == SessionPhase.ROUND2:
        return get_settings().round2_default_prediction
    elif phase == SessionPhase.ROUND3:
        return FIGHTER_CHOICES[0]
    return None
