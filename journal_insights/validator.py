"""
LLM 応答の検証

モデルの出力は信頼できないため、InsightResult のスキーマを満たさない限り
結果として扱わない（デフォルト値での補完はしない）
"""
import json
import logging
import re
from datetime import datetime
from typing import Any, List

from .errors import InvalidResponse
from .models import InsightResult, SourceEntry, Theme

logger = logging.getLogger(__name__)

MIN_THEMES = 4
MAX_THEMES = 5
THEME_FIELDS = ("name", "icon", "explanation", "frequency")

_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def extract_json_object(raw_text: str) -> Any:
    """
    応答テキストから JSON を取り出す

    コードブロックや前後の文章が付いている場合は最も外側の {...} を取り出す
    """
    text = raw_text.strip()
    fenced = _CODE_FENCE.match(text)
    if fenced:
        text = fenced.group(1)

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise InvalidResponse("Invalid JSON response from AI")
    try:
        return json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise InvalidResponse("Invalid JSON response from AI") from e


def _require_string(data: dict, field: str, where: str) -> str:
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        raise InvalidResponse(f"Invalid response structure from AI: {where}.{field}")
    return value.strip()


def _validate_source_entries(value: Any, where: str) -> List[SourceEntry]:
    if not isinstance(value, list):
        raise InvalidResponse(f"Invalid response structure from AI: {where}.source_entries")
    sources = []
    for i, item in enumerate(value):
        if not isinstance(item, dict):
            raise InvalidResponse(
                f"Invalid response structure from AI: {where}.source_entries[{i}]"
            )
        sources.append(SourceEntry(
            date=_require_string(item, "date", f"{where}.source_entries[{i}]"),
            title=_require_string(item, "title", f"{where}.source_entries[{i}]"),
        ))
    return sources


def _validate_theme(data: Any, index: int) -> Theme:
    where = f"themes[{index}]"
    if not isinstance(data, dict):
        raise InvalidResponse(f"Invalid response structure from AI: {where}")
    fields = {name: _require_string(data, name, where) for name in THEME_FIELDS}
    return Theme(
        source_entries=_validate_source_entries(data.get("source_entries"), where),
        **fields,
    )


class ResponseValidator:
    """LLM 応答を InsightResult に変換する検証器"""

    def __init__(self, min_themes: int = MIN_THEMES, max_themes: int = MAX_THEMES):
        self.min_themes = min_themes
        self.max_themes = max_themes

    def validate(self, raw_text: str, entries_analyzed: int, generated_at: datetime) -> InsightResult:
        """
        応答を検証して InsightResult を生成

        Args:
            raw_text: LLM の生出力
            entries_analyzed: 分析したエントリ数
            generated_at: 生成日時

        Returns:
            fromCache = False の InsightResult

        Raises:
            InvalidResponse: 必須フィールドの欠落・型違い・テーマ数が範囲外の場合
        """
        payload = extract_json_object(raw_text)
        if not isinstance(payload, dict):
            raise InvalidResponse("Invalid response structure from AI: not an object")

        summary = _require_string(payload, "summary", "insight")
        description = _require_string(payload, "description", "insight")

        themes = payload.get("themes")
        if not isinstance(themes, list):
            raise InvalidResponse("Invalid response structure from AI: insight.themes")
        if not self.min_themes <= len(themes) <= self.max_themes:
            logger.warning(
                "Expected %d-%d themes, got %d", self.min_themes, self.max_themes, len(themes)
            )
            raise InvalidResponse(
                f"Expected {self.min_themes}-{self.max_themes} themes, got {len(themes)}"
            )

        return InsightResult(
            summary=summary,
            description=description,
            themes=[_validate_theme(theme, i) for i, theme in enumerate(themes)],
            entries_analyzed=entries_analyzed,
            generated_at=generated_at,
            from_cache=False,
        )
