"""
キャッシュの鮮度判定（Hit / Stale / Miss）
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from .cache import CachedInsightRecord

CACHE_TTL_HOURS = 168  # 7 days
CACHE_STALE_HOURS = 24


class CacheState(str, Enum):
    HIT = "hit"
    STALE = "stale"
    MISS = "miss"


@dataclass(frozen=True)
class FreshnessDecision:
    """鮮度判定の結果"""
    state: CacheState
    age: Optional[timedelta] = None
    refresh_recommended: bool = False
    force_refresh: bool = False

    @property
    def regenerate(self) -> bool:
        """LLM で再生成が必要か"""
        return self.force_refresh or self.state is not CacheState.HIT


class FreshnessPolicy:
    """
    キャッシュレコードの経過時間と TTL から鮮度を判定する

    stale_hours は Hit の提供を妨げず、「更新を検討」のヒントとしてのみ返す
    """

    def __init__(self, ttl_hours: int = CACHE_TTL_HOURS, stale_hours: int = CACHE_STALE_HOURS):
        self.ttl_hours = ttl_hours
        self.stale_hours = stale_hours

    def evaluate(
        self,
        record: Optional[CachedInsightRecord],
        now: datetime,
        force_refresh: bool = False,
    ) -> FreshnessDecision:
        """
        鮮度を判定

        Args:
            record: キャッシュレコード（存在しない場合は None）
            now: 現在時刻
            force_refresh: 強制再生成フラグ

        Returns:
            FreshnessDecision
        """
        if record is None:
            return FreshnessDecision(CacheState.MISS, force_refresh=force_refresh)

        age = record.age(now)
        # レコード自身の TTL を優先
        ttl_hours = record.ttl_hours if record.ttl_hours is not None else self.ttl_hours
        if age >= timedelta(hours=ttl_hours):
            return FreshnessDecision(CacheState.STALE, age=age, force_refresh=force_refresh)

        return FreshnessDecision(
            CacheState.HIT,
            age=age,
            refresh_recommended=age > timedelta(hours=self.stale_hours),
            force_refresh=force_refresh,
        )
