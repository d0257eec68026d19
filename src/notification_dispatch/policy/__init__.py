from .evaluator import (
    Allow,
    Block,
    Defer,
    PolicyDecision,
    count_recent,
    evaluate,
    evaluation_time,
)

__all__ = [
    "Allow",
    "Block",
    "Defer",
    "PolicyDecision",
    "count_recent",
    "evaluate",
    "evaluation_time",
]
