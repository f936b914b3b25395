from parley.delivery.adapter import DeliveryAdapter, DeliveryTarget, ProgressiveRender, Recipient
from parley.delivery.controls import (
    DISMISS_ACTION,
    REFINE_ACTION,
    REFINE_INPUT_ACTION,
    REFINE_INPUT_BLOCK,
    SEND_ACTION,
    Control,
    Presentation,
    build_controls,
    context_line,
)

__all__ = [
    "Control",
    "DISMISS_ACTION",
    "DeliveryAdapter",
    "DeliveryTarget",
    "Presentation",
    "ProgressiveRender",
    "REFINE_ACTION",
    "REFINE_INPUT_ACTION",
    "REFINE_INPUT_BLOCK",
    "Recipient",
    "SEND_ACTION",
    "build_controls",
    "context_line",
]
