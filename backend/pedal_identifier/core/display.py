from typing import Optional

from pedal_identifier.schemas.identify import Advice

HIGH_CONFIDENCE = 0.8
MEDIUM_CONFIDENCE = 0.5


def confidence_label(score: Optional[float]) -> str:
    if score is None:
        return "Confidence Unknown"
    if score >= HIGH_CONFIDENCE:
        return "High Confidence"
    if score >= MEDIUM_CONFIDENCE:
        return "Medium Confidence"
    return "Low Confidence"


def confidence_percent(score: Optional[float]) -> str:
    if score is None:
        return ""
    return f"{score * 100:.0f}%"


def confidence_tone(score: Optional[float]) -> str:
    """CSS modifier for the confidence badge."""
    if score is None:
        return "secondary"
    if score >= HIGH_CONFIDENCE:
        return "primary"
    if score >= MEDIUM_CONFIDENCE:
        return "outline"
    return "destructive"


_ADVICE_TONES = {
    Advice.KEEP: "primary",
    Advice.SELL: "destructive",
    Advice.BUY_IF_CHEAP: "secondary",
    Advice.CONSIDER_SELLING: "warning",
}


def advice_tone(advice: Optional[Advice]) -> str:
    return _ADVICE_TONES.get(advice, "secondary")


def advice_label(advice: Optional[Advice]) -> str:
    return advice.value if advice is not None else "N/A"


def pluralize(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"
