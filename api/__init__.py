"""
HTTP 層

每個 router 只負責：解析請求 -> 呼叫 core -> 把領域異常轉成 HTTP 回應
"""
