"""
服務層

這個 package 包含純計算邏輯，不負責狀態轉換：
- SettlementService：三個回合的 multiplier 與點數計算
- RoundPhaseService：回合規則與階段對應
- NamingService：名稱驗證
- HistoryService：回合紀錄
- LeaderboardService：排名與統計
- TimerService：下注倒數計時器
"""
