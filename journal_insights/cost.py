"""
LLM 呼び出しの概算コスト計算（ログ出力のみ、処理結果には影響しない）
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)

# USD / 1M tokens (input, output)
MODEL_PRICES: Dict[str, Tuple[float, float]] = {
    "anthropic.claude-3-haiku-20240307-v1:0": (0.25, 1.25),
    "anthropic.claude-3-sonnet-20240229-v1:0": (3.00, 15.00),
    "anthropic.claude-3-5-sonnet-20240620-v1:0": (3.00, 15.00),
}
DEFAULT_PRICE = (0.25, 1.25)

# 入力/出力の内訳が不明な場合の按分
INPUT_SHARE = 0.6


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @classmethod
    def from_total(cls, total_tokens: int) -> "TokenUsage":
        """合計トークン数のみ分かる場合は 60% 入力 / 40% 出力として扱う"""
        input_tokens = int(round(total_tokens * INPUT_SHARE))
        return cls(input_tokens, total_tokens - input_tokens)


@dataclass(frozen=True)
class CostEstimate:
    model_id: str
    usage: TokenUsage
    cost_usd: float

    def formatted(self) -> str:
        return f"~${self.cost_usd:.6f}"


class CostEstimator:
    """トークン数 × 単価で概算コストを計算"""

    def __init__(self, prices: Optional[Dict[str, Tuple[float, float]]] = None,
                 default_price: Tuple[float, float] = DEFAULT_PRICE):
        self.prices = dict(MODEL_PRICES if prices is None else prices)
        self.default_price = default_price

    def estimate(self, usage: TokenUsage, model_id: str) -> CostEstimate:
        input_price, output_price = self.prices.get(model_id, self.default_price)
        cost = (
            usage.input_tokens / 1_000_000 * input_price
            + usage.output_tokens / 1_000_000 * output_price
        )
        return CostEstimate(model_id=model_id, usage=usage, cost_usd=cost)

    def record(self, usage: TokenUsage, model_id: str) -> CostEstimate:
        """概算コストを計算してログに出力"""
        estimate = self.estimate(usage, model_id)
        logger.info(
            "LLM usage: %d tokens (%d in / %d out), cost %s",
            usage.total_tokens, usage.input_tokens, usage.output_tokens,
            estimate.formatted(),
        )
        return estimate
