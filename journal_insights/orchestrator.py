"""
インサイト生成リクエストの処理フロー

認証済み → 入力検証 → キャッシュ確認 → (キャッシュ返却 | 生成 → 応答検証 → キャッシュ保存) → 応答
"""
import logging
from datetime import datetime
from typing import Any, Optional, Tuple

import pytz

from .cache import DEFAULT_INSIGHT_TYPE, CachedInsightRecord, CacheKey
from .errors import AuthError, CacheError, InsightError, ValidationError
from .formatter import EntryFormatter, parse_entries
from .freshness import CacheState, FreshnessPolicy
from .insight_client import InsightClient
from .models import InsightResponse, JournalEntry, parse_timestamp
from .validator import ResponseValidator

logger = logging.getLogger(__name__)


def short_id(user_id: str) -> str:
    """ログ用にユーザーIDを短縮"""
    return f"{user_id[:8]}..."


def parse_range_bound(value: Any) -> str:
    """日付範囲の端を YYYY-MM-DD に変換（解析できなければ ValidationError）"""
    try:
        return parse_timestamp(str(value)).date().isoformat()
    except ValueError as e:
        raise ValidationError(
            ValidationError.INVALID_DATE_RANGE, "Date range bounds must be ISO dates"
        ) from e


def normalize_date_range(
    date_range: Optional[Tuple[Optional[str], Optional[str]]]
) -> Optional[Tuple[str, str]]:
    """日付範囲を YYYY-MM-DD に正規化（両端とも指定、かつ start <= end が必要）"""
    if not date_range or date_range == (None, None):
        return None
    start, end = date_range
    if not start or not end:
        raise ValidationError(
            ValidationError.INVALID_DATE_RANGE, "Date range needs both start and end"
        )
    start, end = parse_range_bound(start), parse_range_bound(end)
    if end < start:
        raise ValidationError(
            ValidationError.INVALID_DATE_RANGE, "Date range end must not precede start"
        )
    return start, end


class InsightOrchestrator:
    """キャッシュと LLM 生成を組み合わせたリクエストハンドラ"""

    def __init__(
        self,
        store,
        client: InsightClient,
        formatter: Optional[EntryFormatter] = None,
        freshness: Optional[FreshnessPolicy] = None,
        validator: Optional[ResponseValidator] = None,
        insight_type: str = DEFAULT_INSIGHT_TYPE,
    ):
        """
        Args:
            store: キャッシュストア（read / write を持つオブジェクト）
            client: インサイト生成クライアント
            formatter: エントリ整形
            freshness: 鮮度判定ポリシー
            validator: 応答検証
            insight_type: キャッシュキーに使うインサイト種別
        """
        self.store = store
        self.client = client
        self.formatter = formatter or EntryFormatter()
        self.freshness = freshness or FreshnessPolicy()
        self.validator = validator or ResponseValidator()
        self.insight_type = insight_type

    def handle(
        self,
        user_id: str,
        raw_entries: Any,
        force_refresh: bool = False,
        date_range: Optional[Tuple[Optional[str], Optional[str]]] = None,
        now: Optional[datetime] = None,
    ) -> InsightResponse:
        """
        インサイトを返す（キャッシュが新しければそれを、なければ生成）

        Args:
            user_id: 認証済みユーザーID
            raw_entries: リクエストの entries（dict のリスト、または JournalEntry のリスト）
            force_refresh: キャッシュを無視して再生成する
            date_range: (start, end) の日付範囲
            now: 現在時刻（テスト用）

        Returns:
            InsightResponse

        Raises:
            AuthError, ValidationError, UpstreamError, InvalidResponse
        """
        if not user_id or not str(user_id).strip():
            raise AuthError("Unauthorized")
        now = now or datetime.now(pytz.utc)
        uid = short_id(user_id)
        logger.info("Insights request from user: %s", uid)

        # 入力検証（LLM 呼び出しより必ず先）
        try:
            if (
                isinstance(raw_entries, list)
                and raw_entries
                and all(isinstance(e, JournalEntry) for e in raw_entries)
            ):
                entries = raw_entries
            else:
                entries = parse_entries(raw_entries)
            formatted = self.formatter.format_entries(entries)
            key = CacheKey.for_request(
                user_id, self.insight_type, normalize_date_range(date_range)
            )
        except ValidationError as e:
            logger.info("Validation failed for %s: %s", uid, e.reason)
            raise
        logger.debug("state=Validated user=%s entries=%d", uid, len(formatted))

        # キャッシュ確認（読み込み失敗は Miss として扱う）
        try:
            record = self.store.read(key)
        except CacheError as e:
            logger.warning("Cache read failed, treating as miss: %s", e)
            record = None

        decision = self.freshness.evaluate(record, now, force_refresh=force_refresh)
        logger.debug("state=CacheChecked user=%s cache=%s", uid, decision.state.value)

        if not decision.regenerate:
            logger.info("Cache HIT for %s - returning cached insights", uid)
            if decision.refresh_recommended:
                hours = int(decision.age.total_seconds() // 3600)
                logger.info("Cache is %dh old - consider refreshing", hours)
            return InsightResponse(
                result=record.content.with_cache_flag(True),
                cache_expires_at=record.expires_at,
                refresh_recommended=decision.refresh_recommended,
            )

        if force_refresh and decision.state is CacheState.HIT:
            logger.info("Force refresh requested by %s", uid)
        else:
            logger.info("Cache %s for %s - generating fresh insights",
                        decision.state.value.upper(), uid)

        # 生成と応答検証（失敗時はキャッシュに書き込まない）
        try:
            logger.debug("state=Generating user=%s", uid)
            generation = self.client.generate(formatted)
            result = self.validator.validate(
                generation.text, entries_analyzed=len(formatted), generated_at=now
            )
        except InsightError as e:
            logger.error("Insight generation failed for %s: %s (%s)", uid, e.error_code, e.message)
            raise
        logger.debug("state=Validated2 user=%s themes=%d", uid, len(result.themes))

        self._save(CachedInsightRecord(
            key=key,
            content=result,
            entries_count=len(formatted),
            generated_at=now,
            ttl_hours=self.freshness.ttl_hours,
            model_id=generation.model_id,
            prompt_tokens=generation.usage.input_tokens,
            completion_tokens=generation.usage.output_tokens,
            generation_time_ms=generation.generation_time_ms,
        ))

        logger.info("Fresh insights generated for %s: %d themes", uid, len(result.themes))
        return InsightResponse(result=result)

    def _save(self, record: CachedInsightRecord) -> None:
        """キャッシュ保存（失敗してもレスポンスは返す）"""
        try:
            saved = self.store.write(record)
        except CacheError as e:
            logger.error("Cache save error: %s", e)
            return
        if saved is False:
            logger.error("Cache save error: store rejected the record")
            return
        logger.info("Saved to cache (expires in %dh)", record.ttl_hours)
