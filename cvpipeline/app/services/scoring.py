"""
Step confidence scoring. A completeness proxy, not a correctness measure.
Any callable matching ConfidenceScorer can be handed to CVExtractor instead.
"""
from typing import Any, Callable, Mapping

ConfidenceScorer = Callable[[Mapping[str, Any]], float]


def completeness_confidence(data: Mapping[str, Any]) -> float:
    """0.1 for an empty payload; otherwise 0.5 plus 0.1 per filled field, capped at 1.0."""
    if not data:
        return 0.1
    score = 0.5
    for value in data.values():
        if isinstance(value, str):
            if len(value.strip()) > 5:
                score += 0.1
        elif isinstance(value, (list, tuple, dict)) and value:
            score += 0.1
    return round(min(score, 1.0), 2)
