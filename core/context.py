"""
GameContext：process 內共用、但不是全域變數的物件

- OverrideConfig：admin override
- OutcomeAuthority：結果決定者（持有 override 與亂數來源）
- BettingTimers：下注倒數計時器

main.py 建立一份放在 app.state，API 透過 dependency 取得；測試可以注入自己的版本
"""
import random
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from core.outcome_authority import OverrideConfig, OutcomeAuthority
from services.timer_service import BettingTimers
from database import get_settings


@dataclass
class GameContext:
    overrides: OverrideConfig
    authority: OutcomeAuthority
    timers: BettingTimers


def build_game_context(
    rng: Optional[random.Random] = None,
    enable_timers: Optional[bool] = None
) -> GameContext:
    """
    建立 GameContext

    參數：
        rng: 亂數來源（測試可傳入固定序列）
        enable_timers: 是否啟用背景計時器，預設讀設定檔
    """
    if enable_timers is None:
        enable_timers = get_settings().enable_timers

    overrides = OverrideConfig()
    return GameContext(
        overrides=overrides,
        authority=OutcomeAuthority(overrides, rng=rng),
        timers=BettingTimers(enabled=enable_timers),
    )


def get_game_context(request: Request) -> GameContext:
    """FastAPI dependency：取得 app 建立時放進 app.state 的 GameContext"""
    return request.app.state.game_context
