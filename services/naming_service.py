"""
命名服務：檢查並正規化玩家顯示名稱

純計算邏輯，不涉及狀態轉換
"""
from core.exceptions import ValidationError

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 64


def normalize_display_name(name) -> str:
    """
    去除前後空白並驗證名稱長度

    規則：
    - 必須是字串
    - trim 後長度 >= 2
    - 不超過資料庫欄位長度（64）

    參數：
        name: 玩家輸入的名稱

    返回：
        trim 後的名稱

    異常：
        ValidationError: 名稱不合法

    範例：
        normalize_display_name("  Nova ") -> "Nova"
        normalize_display_name(" a ")     -> ValidationError
    """
    if not isinstance(name, str):
        raise ValidationError("Display name must be a string")

    trimmed = name.strip()
    if len(trimmed) < MIN_NAME_LENGTH:
        raise ValidationError(
            f"Display name must be at least {MIN_NAME_LENGTH} characters"
        )
    if len(trimmed) > MAX_NAME_LENGTH:
        raise ValidationError(
            f"Display name must be at most {MAX_NAME_LENGTH} characters"
        )
    return trimmed
