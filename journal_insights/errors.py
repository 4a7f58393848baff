"""
インサイト生成のエラー定義

各エラーはクライアント向けのエラーコードと HTTP ステータスを持つ
"""
from typing import Optional


class InsightError(Exception):
    """インサイト生成エラーの基底クラス"""
    error_code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        """レスポンスボディに変換"""
        return {"error_code": self.error_code, "message": self.message}


class AuthError(InsightError):
    """認証エラー"""
    error_code = "AUTH_FAILED"
    status_code = 401


class ValidationError(InsightError):
    """入力エラー（エントリ数・内容が範囲外）"""
    error_code = "VALIDATION_ERROR"
    status_code = 400

    MISSING_ENTRIES = "MissingEntries"
    TOO_FEW_ENTRIES = "TooFewEntries"
    TOO_MANY_ENTRIES = "TooManyEntries"
    EMPTY_CONTENT = "EmptyContent"
    INVALID_JSON = "InvalidJson"
    INVALID_DATE_RANGE = "InvalidDateRange"

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["reason"] = self.reason
        return body


class UpstreamError(InsightError):
    """LLM 呼び出しの失敗（タイムアウト・レート制限・サービスエラー）"""
    error_code = "UPSTREAM_ERROR"
    status_code = 502

    def __init__(
        self,
        message: str,
        retryable: bool = False,
        rate_limited: bool = False,
        retry_after: Optional[int] = None,
    ):
        super().__init__(message)
        self.retryable = retryable
        self.rate_limited = rate_limited
        self.retry_after = retry_after
        if rate_limited:
            # インスタンス単位でコードを上書き
            self.error_code = "RATE_LIMIT"
            self.status_code = 429

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.retry_after is not None:
            body["retryAfter"] = self.retry_after
        return body


class InvalidResponse(InsightError):
    """LLM の応答が不正な形式"""
    error_code = "INVALID_RESPONSE"
    status_code = 502


class CacheError(InsightError):
    """キャッシュストアの読み書き失敗（呼び出し側で回復する）"""
    error_code = "CACHE_ERROR"
    status_code = 500
