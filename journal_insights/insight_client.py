"""
Bedrock を使用したインサイト生成

日記エントリからテーマ分析の JSON を生成する。タイムアウトや一時的な
サービスエラーは同じリクエストで 1 回だけ再試行する
"""
import json
import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from .cost import CostEstimator, TokenUsage
from .errors import InvalidResponse, UpstreamError
from .models import FormattedEntry

logger = logging.getLogger(__name__)

MAX_TOKENS = 800
TEMPERATURE = 0.7
RETRY_AFTER_SECONDS = 60

TRANSIENT_ERRORS = (ReadTimeoutError, ConnectTimeoutError, EndpointConnectionError, ConnectionClosedError)
TRANSIENT_ERROR_CODES = {
    "ThrottlingException",
    "ServiceUnavailableException",
    "InternalServerException",
    "ModelNotReadyException",
    "ModelTimeoutException",
}
THROTTLING_CODES = {"ThrottlingException", "TooManyRequestsException"}

SYSTEM_PROMPT = """You are a journaling companion who helps users see emotional patterns. Write warmly and directly. Skip clinical or therapy jargon and avoid hedging.

Core principles:
- Reference concrete details from journal entries (dates, activities, emotions)
- Acknowledge struggles and growth, but avoid toxic positivity
- Use active voice and avoid "it seems," "perhaps," or "it's important to note"
- Write in second person ("you"), as if talking to a friend
- Never diagnose, prescribe, or give therapeutic advice

Output structure:
- Return valid JSON only
- No markdown, code blocks, or extra text
- Follow the provided schema exactly
- Stay under 800 tokens for the whole response"""

OUTPUT_SCHEMA = """{
  "summary": "One sentence capturing main emotional themes (max 140 characters)",
  "description": "A 150-180 word paragraph describing the user's emotional landscape, recurring themes, and signs of growth or tension. Speak directly to the user. Reference specific entry titles or dates to ground observations in their actual writing.",
  "themes": [
    {
      "name": "2-4 word theme name (be specific, not generic)",
      "icon": "single emoji",
      "explanation": "One sentence (max 60 words) explaining why this theme matters",
      "frequency": "Use format: 'X times this week/month' with actual numbers",
      "source_entries": [
        {"date": "YYYY-MM-DD", "title": "exact entry title"}
      ]
    }
  ]
}"""


def build_user_prompt(entries: Sequence[FormattedEntry]) -> str:
    """エントリを埋め込んだユーザープロンプトを生成"""
    entries_data = json.dumps(
        {"entries": [entry.to_dict() for entry in entries]}, ensure_ascii=False
    )
    return f"""Generate an insight from these journal entries using this exact JSON structure:

{OUTPUT_SCHEMA}

Critical requirements:
1. Identify exactly 4-5 themes (not fewer, not more)
2. Themes must be SPECIFIC: "Presentation performance anxiety" not "work stress"
3. source_entries must be an array of objects with BOTH date and title, never a plain string array
4. Description must reference at least 2 entry titles by name to show you read them
5. Frequency must include actual numbers ("3 times" not "multiple times")

Tone guidelines:
- Write like a perceptive friend, not a therapist
- Acknowledge difficulty without dramatizing ("you've been processing" not "you're suffering")
- Note growth without cheerleading ("you recognized" not "you're doing amazing!")

Journal entries to analyze:
{entries_data}"""


@dataclass(frozen=True)
class GenerationResult:
    """LLM の生出力と使用量"""
    text: str
    usage: TokenUsage
    model_id: str
    generation_time_ms: int


def is_transient(error: Exception) -> bool:
    """再試行すべき一時的なエラーか判定"""
    if isinstance(error, TRANSIENT_ERRORS):
        return True
    if isinstance(error, ClientError):
        code = error.response.get("Error", {}).get("Code", "")
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        return code in TRANSIENT_ERROR_CODES or code in THROTTLING_CODES or status >= 500 or status in (408, 429)
    return False


def is_throttling(error: Exception) -> bool:
    if isinstance(error, ClientError):
        code = error.response.get("Error", {}).get("Code", "")
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        return code in THROTTLING_CODES or status == 429
    return False


class InsightClient:
    """Bedrock（Anthropic messages API）でインサイトを生成するクライアント"""

    def __init__(
        self,
        model_id: str,
        client=None,
        cost_estimator: Optional[CostEstimator] = None,
        timeout_seconds: int = 30,
        region_name: Optional[str] = None,
        max_attempts: int = 2,
    ):
        """
        Args:
            model_id: Bedrock モデル ID
            client: bedrock-runtime クライアント（テスト用に差し替え可能）
            cost_estimator: コスト計算（ログ出力のみ）
            timeout_seconds: 1 回の呼び出しの読み込みタイムアウト
            region_name: AWS リージョン
            max_attempts: 最大試行回数（初回 + 再試行 1 回）
        """
        self.model_id = model_id
        self.cost_estimator = cost_estimator
        self.max_attempts = max_attempts
        if client is None:
            # botocore 側のリトライは無効化し、再試行回数はこのクラスで管理する
            config = Config(
                connect_timeout=5,
                read_timeout=timeout_seconds,
                retries={"total_max_attempts": 1, "mode": "standard"},
            )
            client = boto3.client("bedrock-runtime", region_name=region_name, config=config)
        self.client = client

    def build_request_body(self, entries: Sequence[FormattedEntry]) -> str:
        return json.dumps({
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": MAX_TOKENS,
            "temperature": TEMPERATURE,
            "system": SYSTEM_PROMPT,
            "messages": [
                {
                    "role": "user",
                    "content": build_user_prompt(entries),
                }
            ],
        })

    def generate(self, entries: Sequence[FormattedEntry]) -> GenerationResult:
        """
        インサイトを生成

        Args:
            entries: 整形済みエントリ

        Returns:
            GenerationResult

        Raises:
            UpstreamError: Bedrock 呼び出しに失敗した場合
            InvalidResponse: 応答が空、または解析できない場合
        """
        body = self.build_request_body(entries)
        logger.info("Calling Bedrock (%s) with %d entries", self.model_id, len(entries))

        started = time.monotonic()
        raw = self._invoke_with_retry(body)
        elapsed_ms = int((time.monotonic() - started) * 1000)

        text, usage = self._parse_response(raw)
        logger.info("Bedrock response received in %dms", elapsed_ms)
        self._record_cost(usage)

        return GenerationResult(
            text=text,
            usage=usage,
            model_id=self.model_id,
            generation_time_ms=elapsed_ms,
        )

    def _invoke_with_retry(self, body: str) -> bytes:
        """invoke_model と本文の読み込みを 1 回の試行として扱い、生の応答本文を返す"""
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = self.client.invoke_model(
                    modelId=self.model_id,
                    contentType="application/json",
                    accept="application/json",
                    body=body,
                )
                # 本文はストリームなので、読み込み中のタイムアウトもここで再試行対象になる
                return response["body"].read()
            except KeyError as e:
                raise InvalidResponse("Unreadable response from AI service") from e
            except (BotoCoreError, ClientError) as e:
                if not is_transient(e):
                    logger.error("Bedrock request rejected: %s", e)
                    raise UpstreamError("AI service rejected the request.") from e
                last_error = e
                logger.warning(
                    "Bedrock attempt %d/%d failed: %s", attempt, self.max_attempts, e
                )

        if is_throttling(last_error):
            raise UpstreamError(
                "Too many requests. Please try again in a few minutes.",
                retryable=True,
                rate_limited=True,
                retry_after=RETRY_AFTER_SECONDS,
            ) from last_error
        raise UpstreamError(
            "AI service temporarily unavailable. Please try again.",
            retryable=True,
        ) from last_error

    @staticmethod
    def _parse_response(raw: bytes):
        try:
            result = json.loads(raw)
        except ValueError as e:
            raise InvalidResponse("Unreadable response from AI service") from e
        if not isinstance(result, dict):
            raise InvalidResponse("Unreadable response from AI service")

        content: List[dict] = result.get("content") or []
        text = "".join(
            block.get("text", "") for block in content if block.get("type", "text") == "text"
        ).strip()
        if not text:
            logger.error("Empty Bedrock response (stop_reason=%s)", result.get("stop_reason"))
            raise InvalidResponse("Empty response from AI service")

        raw_usage = result.get("usage") or {}
        if "input_tokens" in raw_usage or "output_tokens" in raw_usage:
            usage = TokenUsage(
                input_tokens=int(raw_usage.get("input_tokens", 0)),
                output_tokens=int(raw_usage.get("output_tokens", 0)),
            )
        else:
            # 合計のみ返すモデル向け
            usage = TokenUsage.from_total(int(raw_usage.get("total_tokens", 0)))
        return text, usage

    def _record_cost(self, usage: TokenUsage) -> None:
        if self.cost_estimator is None:
            return
        try:
            self.cost_estimator.record(usage, self.model_id)
        except Exception:
            # コスト計算の失敗は生成結果に影響させない
            logger.exception("Cost estimation failed")
