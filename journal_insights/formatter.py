"""
日記エントリの検証と整形

エントリ数と本文の長さを制限し、プロンプトのトークン数を一定に抑える
"""
from datetime import datetime
from typing import Any, List, Sequence

from .errors import ValidationError
from .models import FormattedEntry, JournalEntry

MIN_ENTRIES = 1
MAX_ENTRIES = 20
MAX_CONTENT_LENGTH = 500


def truncate_content(content: str, limit: int = MAX_CONTENT_LENGTH) -> str:
    """
    本文を最大 limit 文字に切り詰める

    str のスライスはコードポイント単位なので、マルチバイト文字の途中で切れることはない
    """
    return content[:limit]


def format_date(value) -> str:
    """ISO8601 の日時を YYYY-MM-DD に変換（解析できなければそのまま返す）"""
    if isinstance(value, datetime):
        return value.date().isoformat()
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        return str(value)


def parse_entries(payload: Any) -> List[JournalEntry]:
    """
    リクエストボディの entries 配列を JournalEntry に変換

    Args:
        payload: entries フィールドの値

    Returns:
        JournalEntry のリスト

    Raises:
        ValidationError: 配列でない、または本文が空のエントリがある場合
    """
    if not isinstance(payload, list):
        raise ValidationError(
            ValidationError.MISSING_ENTRIES, "Missing or invalid entries array"
        )

    entries = []
    for item in payload:
        if not isinstance(item, dict):
            raise ValidationError(
                ValidationError.EMPTY_CONTENT, "All entries must be objects with content"
            )
        content = item.get("content")
        if not isinstance(content, str) or not content.strip():
            raise ValidationError(
                ValidationError.EMPTY_CONTENT, "All entries must have content"
            )
        word_count = item.get("word_count")
        entries.append(
            JournalEntry(
                date=item.get("date", ""),
                title=item.get("title") or "",
                content=content,
                word_count=word_count if isinstance(word_count, int) else len(content.split()),
                mood=item.get("mood"),
            )
        )
    return entries


class EntryFormatter:
    """エントリ数と本文長を検証・制限するフォーマッタ"""

    def __init__(
        self,
        min_entries: int = MIN_ENTRIES,
        max_entries: int = MAX_ENTRIES,
        max_content_length: int = MAX_CONTENT_LENGTH,
    ):
        self.min_entries = min_entries
        self.max_entries = max_entries
        self.max_content_length = max_content_length

    def validate_count(self, entries: Sequence[JournalEntry]) -> None:
        """エントリ数を検証"""
        if len(entries) < self.min_entries:
            raise ValidationError(
                ValidationError.TOO_FEW_ENTRIES,
                f"Need at least {self.min_entries} entry",
            )
        if len(entries) > self.max_entries:
            raise ValidationError(
                ValidationError.TOO_MANY_ENTRIES,
                f"Maximum {self.max_entries} entries allowed",
            )

    def format_entry(self, entry: JournalEntry) -> FormattedEntry:
        return FormattedEntry(
            date=format_date(entry.date),
            title=entry.title or "Untitled",
            content=truncate_content(entry.content, self.max_content_length),
            word_count=entry.word_count,
            mood=entry.mood or "neutral",
        )

    def format_entries(self, entries: Sequence[JournalEntry]) -> List[FormattedEntry]:
        """
        エントリを検証して整形する（順序は入力のまま）

        Args:
            entries: JournalEntry のシーケンス

        Returns:
            FormattedEntry のリスト

        Raises:
            ValidationError: エントリ数が範囲外の場合
        """
        self.validate_count(entries)
        return [self.format_entry(entry) for entry in entries]
