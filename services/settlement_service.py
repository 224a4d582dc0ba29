"""
結算服務：三個回合的 Multiplier 規則與點數計算

純計算邏輯，不碰資料庫、不改變狀態

balance_after = floor(balance_before - stake + stake * multiplier)
"""
import math
from decimal import Decimal
from fractions import Fraction

from core.exceptions import InsufficientCreditsError, ValidationError

ROUND1_WIN_MULTIPLIER = Decimal("2.5")
ZERO = Decimal("0")

# (最大誤差, multiplier)，由嚴到寬
ROUND2_ACCURACY_TIERS = (
    (20, Decimal("5")),
    (50, Decimal("3")),
    (100, Decimal("2")),
)

# (最低勝率, multiplier)，由高到低
ROUND3_WIN_RATE_TIERS = (
    (Fraction(4, 5), Decimal("4")),
    (Fraction(3, 5), Decimal("2.5")),
    (Fraction(2, 5), Decimal("1.5")),
)


def round1_multiplier(choice: int, winner: int) -> Decimal:
    """
    Rocket Race：押中贏家拿 2.5 倍，否則全輸

    範例：
        round1_multiplier(3, 3) -> 2.5
        round1_multiplier(1, 3) -> 0
    """
    return ROUND1_WIN_MULTIPLIER if choice == winner else ZERO


def round2_multiplier(prediction: int, target: int) -> Decimal:
    """
    Precision Shot：依預測誤差分級

    ┌──────────────┬────────────┐
    │ |誤差|       │ multiplier │
    ├──────────────┼────────────┤
    │ <= 20        │ 5          │
    │ <= 50        │ 3          │
    │ <= 100       │ 2          │
    │ > 100        │ 0          │
    └──────────────┴────────────┘
    """
    accuracy = abs(target - prediction)
    for max_error, multiplier in ROUND2_ACCURACY_TIERS:
        if accuracy <= max_error:
            return multiplier
    return ZERO


def round3_multiplier(wins: int, total: int) -> Decimal:
    """
    Final Nexus：依整個系列的勝率分級，套用在所有對戰下注的總和上

    ┌──────────────┬────────────┐
    │ 勝率         │ multiplier │
    ├──────────────┼────────────┤
    │ >= 0.8       │ 4          │
    │ >= 0.6       │ 2.5        │
    │ >= 0.4       │ 1.5        │
    │ < 0.4        │ 0          │
    └──────────────┴────────────┘

    用 Fraction 比較，避免 0.6 之類的浮點誤差
    """
    if total <= 0:
        return ZERO
    win_rate = Fraction(wins, total)
    for min_rate, multiplier in ROUND3_WIN_RATE_TIERS:
        if win_rate >= min_rate:
            return multiplier
    return ZERO


def settle_balance(balance: int, stake: int, multiplier: Decimal) -> int:
    """
    計算結算後的點數（無條件捨去到整數）

    範例：
        settle_balance(10000, 1000, Decimal("2.5")) -> 11500
        settle_balance(10000, 333, Decimal("1.5"))  -> 10166
    """
    result = Decimal(balance) - Decimal(stake) + Decimal(stake) * multiplier
    return math.floor(result)


def validate_stake(stake, available: int, allow_zero: bool = False) -> int:
    """
    驗證下注額

    規則：
    - 必須是整數
    - Round 1/2：必須 > 0；Round 3 單場可以是 0（跳過該場）
    - 不可超過可用點數

    異常：
        ValidationError: 不是整數或超出下限
        InsufficientCreditsError: 超過可用點數
    """
    if isinstance(stake, bool) or not isinstance(stake, int):
        raise ValidationError(f"Stake must be an integer, got {stake!r}")
    if stake < 0 or (stake == 0 and not allow_zero):
        raise ValidationError(f"Invalid stake {stake}")
    if stake > available:
        raise InsufficientCreditsError(stake, available)
    return stake
