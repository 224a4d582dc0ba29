"""
Outcome Authority：決定每個回合的「真實」結果

規則：
- Round 1：admin override 優先，否則在 5 支火箭中均勻抽一支
- Round 2：admin override 優先，否則在 [100, 1000] 均勻抽一個射程
- Round 3：每一場對戰獨立擲硬幣，沒有 override

Override 是 sticky 的：設定後每一次結算都會用到，直到 admin 再次修改

Override 存在明確的 OverrideConfig 物件裡（由 GameContext 持有），
不是全域變數；測試可以直接注入 override 與亂數來源
"""
import logging
import random
import threading
from dataclasses import dataclass
from typing import Optional

from core.exceptions import ValidationError
from services.round_phase_service import (
    ROCKET_CHOICES,
    FIGHTER_CHOICES,
    PREDICTION_MIN,
    PREDICTION_MAX,
    ROUND1_OVERRIDE_CHOICES,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OverrideSnapshot:
    """某一時間點的 override 值（唯讀）"""
    round1_winner: Optional[int] = None
    round2_range: Optional[int] = None

    def to_dict(self):
        return {
            "round1_winner": self.round1_winner,
            "round2_range": self.round2_range,
        }


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class OverrideConfig:
    """
    Admin override 設定（process 生命週期）

    寫入與讀取都在同一把鎖內，結算時呼叫 snapshot() 讀一次即可
    """

    def __init__(self, round1_winner: Optional[int] = None, round2_range: Optional[int] = None):
        self._lock = threading.Lock()
        self._snapshot = OverrideSnapshot()
        if round1_winner is not None:
            self.set_round1_winner(round1_winner)
        if round2_range is not None:
            self.set_round2_range(round2_range)

    def set_round1_winner(self, winner: int) -> OverrideSnapshot:
        """
        設定 Round 1 贏家

        異常：
            ValidationError: winner 不在 {1, 2, 3}
        """
        if not _is_int(winner) or winner not in ROUND1_OVERRIDE_CHOICES:
            raise ValidationError(
                f"Round 1 winner must be one of {list(ROUND1_OVERRIDE_CHOICES)}, got {winner!r}"
            )
        with self._lock:
            self._snapshot = OverrideSnapshot(winner, self._snapshot.round2_range)
            logger.info(f"Round 1 override set: winner={winner}")
            return self._snapshot

    def set_round2_range(self, target: int) -> OverrideSnapshot:
        """
        設定 Round 2 射程

        異常：
            ValidationError: 射程不在 [100, 1000]
        """
        if not _is_int(target) or not PREDICTION_MIN <= target <= PREDICTION_MAX:
            raise ValidationError(
                f"Round 2 range must be within [{PREDICTION_MIN}, {PREDICTION_MAX}], got {target!r}"
            )
        with self._lock:
            self._snapshot = OverrideSnapshot(self._snapshot.round1_winner, target)
            logger.info(f"Round 2 override set: range={target}")
            return self._snapshot

    def snapshot(self) -> OverrideSnapshot:
        with self._lock:
            return self._snapshot


class OutcomeAuthority:
    """回合結果的決定者"""

    def __init__(self, overrides: OverrideConfig, rng: Optional[random.Random] = None):
        self.overrides = overrides
        self._rng = rng or random.Random()
        self._rng_lock = threading.Lock()

    def resolve_round1(self) -> int:
        """
        決定 Round 1 贏家

        返回：
            火箭 ID（1-5）；有 override 時原樣回傳
        """
        snapshot = self.overrides.snapshot()
        if snapshot.round1_winner is not None:
            logger.info(f"Round 1 resolved by override: {snapshot.round1_winner}")
            return snapshot.round1_winner

        with self._rng_lock:
            winner = self._rng.choice(ROCKET_CHOICES)
        logger.info(f"Round 1 resolved by draw: {winner}")
        return winner

    def resolve_round2(self) -> int:
        """
        決定 Round 2 目標射程

        返回：
            100-1000 之間的整數；有 override 時原樣回傳
        """
        snapshot = self.overrides.snapshot()
        if snapshot.round2_range is not None:
            logger.info(f"Round 2 resolved by override: {snapshot.round2_range}")
            return snapshot.round2_range

        with self._rng_lock:
            target = self._rng.randint(PREDICTION_MIN, PREDICTION_MAX)
        logger.info(f"Round 2 resolved by draw: {target}")
        return target

    def resolve_battle(self) -> int:
        """
        擲硬幣決定單場對戰的贏家

        返回：
            1（鬥士 1 勝）或 2（鬥士 2 勝），與玩家選擇無關
        """
        with self._rng_lock:
            return self._rng.choice(FIGHTER_CHOICES)
