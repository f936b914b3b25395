from parley.llm.client import (
    MODEL_PRICING,
    AnthropicModelClient,
    CompletionUsage,
    LLMResponse,
    ModelClient,
    estimate_cost,
)

__all__ = [
    "AnthropicModelClient",
    "CompletionUsage",
    "LLMResponse",
    "MODEL_PRICING",
    "ModelClient",
    "estimate_cost",
]
