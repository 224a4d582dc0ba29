"""
自定義異常類別

集中管理所有業務邏輯異常，方便 API 層統一處理

每個異常都帶有 error_kind，API 層直接把它回傳給呼叫者
"""


class NexusGambleException(Exception):
    """所有遊戲異常的基類"""
    error_kind = "NexusGambleError"


# ============ 輸入驗證 ============

class ValidationError(NexusGambleException):
    """輸入格式或範圍錯誤（名稱、點數、下注額、預測值、override 值）"""
    error_kind = "ValidationError"


class NoSelectionError(ValidationError):
    """Round 1 下注時沒有選擇火箭"""
    error_kind = "NoSelectionError"


# ============ Ledger 相關異常 ============

class NotFoundError(NexusGambleException):
    """玩家不存在"""
    error_kind = "NotFoundError"

    def __init__(self, player_ref):
        self.player_ref = player_ref
        super().__init__(f"Player {player_ref} not found")


class InsufficientCreditsError(NexusGambleException):
    """下注額超過可用點數"""
    error_kind = "InsufficientCreditsError"

    def __init__(self, stake, available):
        self.stake = stake
        self.available = available
        super().__init__(
            f"Stake {stake} exceeds available balance {available}"
        )


# ============ 狀態轉換異常 ============

class PhaseError(NexusGambleException):
    """在錯誤的階段執行動作（例如還在 Round 1 就提交 Round 2）"""
    error_kind = "PhaseError"


# ============ 儲存層異常 ============

class StorageUnavailableError(NexusGambleException):
    """資料庫 I/O 失敗，和領域驗證錯誤分開"""
    error_kind = "StorageUnavailableError"
