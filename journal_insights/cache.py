"""
インサイトキャッシュの読み書き（DynamoDB / メモリ内）
"""
import copy
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import CacheError
from .models import InsightResult, format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_INSIGHT_TYPE = "theme_summary"


@dataclass(frozen=True)
class CacheKey:
    """キャッシュレコードの識別子"""
    user_id: str
    insight_type: str = DEFAULT_INSIGHT_TYPE
    date_range_start: Optional[str] = None
    date_range_end: Optional[str] = None

    @classmethod
    def for_request(
        cls,
        user_id: str,
        insight_type: str = DEFAULT_INSIGHT_TYPE,
        date_range: Optional[Tuple[Optional[str], Optional[str]]] = None,
    ) -> "CacheKey":
        start, end = date_range if date_range else (None, None)
        return cls(user_id, insight_type, start, end)

    def storage_key(self) -> str:
        """DynamoDB のパーティションキー文字列"""
        return "#".join([
            self.user_id,
            self.insight_type,
            self.date_range_start or "*",
            self.date_range_end or "*",
        ])


@dataclass(frozen=True)
class CachedInsightRecord:
    """キャッシュされたインサイト"""
    key: CacheKey
    content: InsightResult
    entries_count: int
    generated_at: datetime
    ttl_hours: int
    model_id: Optional[str] = None
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    generation_time_ms: Optional[int] = None

    @property
    def expires_at(self) -> datetime:
        return self.generated_at + timedelta(hours=self.ttl_hours)

    def age(self, now: datetime) -> timedelta:
        return now - self.generated_at

    def to_item(self) -> dict:
        """DynamoDB アイテムに変換（content は JSON 文字列で保存）"""
        item = {
            "cache_key": self.key.storage_key(),
            "user_id": self.key.user_id,
            "insight_type": self.key.insight_type,
            "content": json.dumps(self.content.to_dict(), ensure_ascii=False),
            "entries_count": self.entries_count,
            "generated_at": format_timestamp(self.generated_at),
            "expires_at": format_timestamp(self.expires_at),
            "ttl_hours": self.ttl_hours,
        }
        if self.key.date_range_start:
            item["date_range_start"] = self.key.date_range_start
        if self.key.date_range_end:
            item["date_range_end"] = self.key.date_range_end
        # 生成メタデータ（None は保存しない）
        for name in ("model_id", "prompt_tokens", "completion_tokens", "generation_time_ms"):
            value = getattr(self, name)
            if value is not None:
                item[name] = value
        return item

    @classmethod
    def from_item(cls, key: CacheKey, item: dict) -> "CachedInsightRecord":
        """DynamoDB アイテムから復元（数値は Decimal で返るため int に変換）"""

        def optional_int(name):
            value = item.get(name)
            return int(value) if value is not None else None

        return cls(
            key=key,
            content=InsightResult.from_dict(json.loads(item["content"])),
            entries_count=int(item["entries_count"]),
            generated_at=parse_timestamp(item["generated_at"]),
            ttl_hours=int(item["ttl_hours"]),
            model_id=item.get("model_id"),
            prompt_tokens=optional_int("prompt_tokens"),
            completion_tokens=optional_int("completion_tokens"),
            generation_time_ms=optional_int("generation_time_ms"),
        )


class InMemoryInsightStore:
    """開発モード・テスト用のメモリ内キャッシュ"""

    def __init__(self):
        self.data: Dict[str, CachedInsightRecord] = {}

    def __len__(self):
        return len(self.data)

    def read(self, key: CacheKey) -> Optional[CachedInsightRecord]:
        record = self.data.get(key.storage_key())
        return copy.deepcopy(record)

    def write(self, record: CachedInsightRecord) -> bool:
        self.data[record.key.storage_key()] = copy.deepcopy(record)
        return True


class DynamoInsightStore:
    """DynamoDB テーブル操作クラス"""

    def __init__(self, table_name: str, table=None):
        """
        DynamoDB テーブルを初期化

        Args:
            table_name: DynamoDB テーブル名
            table: 既存の Table リソース（テスト用）
        """
        self.table_name = table_name
        if table is None:
            dynamodb = boto3.resource("dynamodb")
            table = dynamodb.Table(table_name)
        self.table = table

    def read(self, key: CacheKey) -> Optional[CachedInsightRecord]:
        """
        キャッシュレコードを取得

        Args:
            key: キャッシュキー

        Returns:
            レコード、見つからない場合は None

        Raises:
            CacheError: テーブルにアクセスできない、またはレコードが壊れている場合
        """
        try:
            response = self.table.get_item(Key={"cache_key": key.storage_key()})
        except (BotoCoreError, ClientError) as e:
            raise CacheError(f"Cache read failed: {e}") from e

        item = response.get("Item")
        if not item:
            return None

        try:
            return CachedInsightRecord.from_item(key, item)
        except (KeyError, TypeError, ValueError) as e:
            raise CacheError(f"Corrupted cache record: {e}") from e

    def write(self, record: CachedInsightRecord) -> bool:
        """
        キャッシュレコードを保存（同じキーは上書き）

        Raises:
            CacheError: 書き込みに失敗した場合
        """
        try:
            self.table.put_item(Item=record.to_item())
        except (BotoCoreError, ClientError) as e:
            raise CacheError(f"Cache write failed: {e}") from e
        return True


def create_store(settings):
    """
    設定に応じたキャッシュストアを生成

    テーブル名が未設定、または AWS に接続できない場合はメモリ内ストアを使う
    """
    if not settings.table_name:
        return InMemoryInsightStore()

    try:
        dynamodb = boto3.resource("dynamodb", region_name=settings.aws_region)
        table = dynamodb.Table(settings.table_name)
        # テーブル存在確認
        table.table_status
    except (BotoCoreError, ClientError) as e:
        logger.warning(
            "DynamoDB table %s unavailable (%s), using in-memory cache",
            settings.table_name, e,
        )
        return InMemoryInsightStore()

    return DynamoInsightStore(settings.table_name, table=table)
