"""
Pricing calculations for AI operations.

Image and analysis operations are billed a flat fee per call; text
generation is billed per 1K tokens when the provider reports usage.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_UP
from typing import Dict, Optional

COST_QUANTUM = Decimal("0.0001")


@dataclass(frozen=True)
class TokenUsage:
    """Token counts reported by a text generation provider."""
    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class OperationPricing:
    """Cost model for one operation."""
    flat_fee: Decimal = Decimal("0")
    cost_per_1k_tokens: Decimal = Decimal("0")


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table for supported operations."""
    prices: Dict[str, OperationPricing]

    def get_pricing(self, operation: str) -> OperationPricing:
        """Get pricing for an operation.

        Raises:
            ValueError: If the operation is not priced
        """
        if operation not in self.prices:
            raise ValueError(f"Unsupported operation: {operation}")
        return self.prices[operation]


# Fixed pricing table - no dynamic fetching, no defaults
PRICING_TABLE = PricingTable({
    "avatar": OperationPricing(flat_fee=Decimal("0.0001")),
    "cover-art": OperationPricing(flat_fee=Decimal("0.04")),
    "consistency": OperationPricing(flat_fee=Decimal("0.01")),
    "narrative-analysis": OperationPricing(flat_fee=Decimal("0.0002")),
    "summary": OperationPricing(cost_per_1k_tokens=Decimal("0.003")),
    "style-transfer": OperationPricing(cost_per_1k_tokens=Decimal("0.002")),
    "enhance": OperationPricing(cost_per_1k_tokens=Decimal("0.002")),
    "twist": OperationPricing(cost_per_1k_tokens=Decimal("0.002")),
    "continuation": OperationPricing(cost_per_1k_tokens=Decimal("0.002")),
})


def calculate_cost(operation: str, usage: Optional[TokenUsage] = None) -> Decimal:
    """Calculate the cost of one call with conservative rounding.

    Args:
        operation: Operation name
        usage: Token usage reported by the provider, if any

    Returns:
        Cost rounded UP to COST_QUANTUM

    Raises:
        ValueError: If the operation is not priced
    """
    pricing = PRICING_TABLE.get_pricing(operation)
    total = pricing.flat_fee
    if usage is not None:
        total += (Decimal(usage.total_tokens) / Decimal("1000")) * pricing.cost_per_1k_tokens
    return total.quantize(COST_QUANTUM, rounding=ROUND_UP)
