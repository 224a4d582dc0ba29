"""
核心業務邏輯層

這個 package 包含所有核心業務邏輯，包括：
- 狀態機：集中管理 Session 與回合的狀態轉換
- Ledger：玩家點數的唯一寫入點
- Outcome Authority：admin override 與隨機結果
- SessionManager：管理三個回合的完整流程
- Locks：並發控制工具
"""
