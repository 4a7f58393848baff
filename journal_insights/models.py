"""
データモデル定義 - dataclassesを使用
"""
from dataclasses import dataclass, asdict, field, replace
from typing import Optional, List, Union
from datetime import datetime


def parse_timestamp(value: Union[str, datetime]) -> datetime:
    """ISO8601 文字列（"Z" サフィックス可）を datetime に変換"""
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def format_timestamp(value: datetime) -> str:
    """datetime を ISO8601 文字列に変換"""
    return value.isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class JournalEntry:
    """アプリから送られる日記エントリ（読み取り専用）"""
    date: Union[str, datetime]
    title: str
    content: str
    word_count: int = 0
    mood: Optional[str] = None


@dataclass(frozen=True)
class FormattedEntry:
    """プロンプト用に整形したエントリ"""
    date: str  # YYYY-MM-DD format
    title: str
    content: str
    word_count: int
    mood: str

    def to_dict(self):
        """辞書に変換"""
        return asdict(self)


@dataclass(frozen=True)
class SourceEntry:
    """テーマの根拠となったエントリ"""
    date: str
    title: str


@dataclass(frozen=True)
class Theme:
    """日記から抽出されたテーマ"""
    name: str
    icon: str
    explanation: str
    frequency: str
    source_entries: List[SourceEntry] = field(default_factory=list)

    def to_dict(self):
        """辞書に変換"""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Theme":
        return cls(
            name=data["name"],
            icon=data["icon"],
            explanation=data["explanation"],
            frequency=data["frequency"],
            source_entries=[
                SourceEntry(date=s["date"], title=s["title"])
                for s in data.get("source_entries", [])
            ],
        )


@dataclass(frozen=True)
class InsightResult:
    """インサイト生成結果"""
    summary: str
    description: str
    themes: List[Theme]
    entries_analyzed: int
    generated_at: datetime
    from_cache: bool = False

    def with_cache_flag(self, from_cache: bool) -> "InsightResult":
        return replace(self, from_cache=from_cache)

    def to_dict(self) -> dict:
        """
        クライアント向けの辞書に変換（キーはアプリ側モデルに合わせて camelCase）
        """
        return {
            "summary": self.summary,
            "description": self.description,
            "themes": [theme.to_dict() for theme in self.themes],
            "entriesAnalyzed": self.entries_analyzed,
            "generatedAt": format_timestamp(self.generated_at),
            "fromCache": self.from_cache,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "InsightResult":
        return cls(
            summary=data["summary"],
            description=data["description"],
            themes=[Theme.from_dict(t) for t in data["themes"]],
            entries_analyzed=int(data["entriesAnalyzed"]),
            generated_at=parse_timestamp(data["generatedAt"]),
            from_cache=bool(data.get("fromCache", False)),
        )


@dataclass(frozen=True)
class InsightResponse:
    """API レスポンス（InsightResult + キャッシュ情報）"""
    result: InsightResult
    cache_expires_at: Optional[datetime] = None
    refresh_recommended: bool = False

    @property
    def from_cache(self) -> bool:
        return self.result.from_cache

    def to_dict(self) -> dict:
        body = self.result.to_dict()
        if self.cache_expires_at is not None:
            body["cacheExpiresAt"] = format_timestamp(self.cache_expires_at)
        body["refreshRecommended"] = self.refresh_recommended
        return body
