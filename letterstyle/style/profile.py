"""Learned style preferences for one clinician in one subspecialty."""

import datetime
import math
from dataclasses import dataclass, field, fields, replace
from typing import Any, NamedTuple

VERBOSITY_LEVELS = ("brief", "normal", "detailed")
FORMALITY_LEVELS = ("very-formal", "formal", "neutral", "casual")
STYLE_CATEGORIES = ("formal", "casual", "mixed")
PARAGRAPH_STRUCTURES = ("long", "short", "mixed")
TERMINOLOGY_LEVELS = ("specialist", "lay", "mixed")

# One confidence score per preference category
CONFIDENCE_CATEGORIES = (
    "section_order",
    "section_inclusion",
    "section_verbosity",
    "phrasing_preferences",
    "avoided_phrases",
    "vocabulary_map",
    "terminology_level",
    "greeting_style",
    "closing_style",
    "signoff_template",
    "formality_level",
    "paragraph_structure",
)

# Fields holding a single preferred value, keyed by their confidence category
SINGLE_VALUED_FIELDS = (
    "section_order",
    "terminology_level",
    "greeting_style",
    "closing_style",
    "signoff_template",
    "formality_level",
    "paragraph_structure",
)


class Preference(NamedTuple):
    value: Any
    confidence: float


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    value = float(value)
    if math.isnan(value):
        return low
    return max(low, min(high, value))


def empty_confidence() -> dict[str, float]:
    return {c: 0.0 for c in CONFIDENCE_CATEGORIES}


def normalize_confidence(scores: dict | None) -> dict[str, float]:
    """All twelve categories present, each clamped to [0, 1]."""
    scores = scores or {}
    return {c: clamp(scores.get(c) or 0.0) for c in CONFIDENCE_CATEGORIES}


@dataclass
class StyleProfile:
    clinician_id: str
    subspecialty: str

    section_order: list[str] = field(default_factory=list)
    section_inclusion: dict[str, float] = field(default_factory=dict)
    section_verbosity: dict[str, str] = field(default_factory=dict)

    phrasing_preferences: dict[str, list[str]] = field(default_factory=dict)
    avoided_phrases: dict[str, list[str]] = field(default_factory=dict)
    vocabulary_map: dict[str, str] = field(default_factory=dict)

    terminology_level: str | None = None
    greeting_style: str | None = None
    closing_style: str | None = None
    signoff_template: str | None = None
    formality_level: str | None = None
    paragraph_structure: str | None = None

    confidence: dict[str, float] = field(default_factory=empty_confidence)
    learning_strength: float = 1.0
    total_edits_analyzed: int = 0
    last_analyzed_at: datetime.datetime | None = None

    id: int | None = None

    def preference(self, name: str) -> Preference:
        return Preference(getattr(self, name), clamp(self.confidence.get(name) or 0.0))

    def overall_confidence(self) -> float:
        values = [v for v in self.confidence.values() if isinstance(v, (int, float))]
        return sum(values) / len(values) if values else 0.0

    def copy(self, **changes) -> "StyleProfile":
        """Deep-enough copy: containers are duplicated so callers can mutate them."""
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, dict):
                value = {k: list(v) if isinstance(v, list) else v for k, v in value.items()}
            elif isinstance(value, list):
                value = list(value)
            data[f.name] = value
        data.update(changes)
        return replace(self, **data)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "clinician_id": self.clinician_id,
            "subspecialty": self.subspecialty,
            "section_order": self.section_order,
            "section_inclusion": self.section_inclusion,
            "section_verbosity": self.section_verbosity,
            "phrasing_preferences": self.phrasing_preferences,
            "avoided_phrases": self.avoided_phrases,
            "vocabulary_map": self.vocabulary_map,
            "terminology_level": self.terminology_level,
            "greeting_style": self.greeting_style,
            "closing_style": self.closing_style,
            "signoff_template": self.signoff_template,
            "formality_level": self.formality_level,
            "paragraph_structure": self.paragraph_structure,
            "confidence": self.confidence,
            "learning_strength": self.learning_strength,
            "total_edits_analyzed": self.total_edits_analyzed,
            "last_analyzed_at": self.last_analyzed_at.isoformat() if self.last_analyzed_at else None,
        }


@dataclass
class AnalysisResult:
    """Validated output of one analyzer run over a batch of edits."""
    clinician_id: str
    subspecialty: str

    section_order: list[str] | None = None
    section_inclusion: dict[str, float] = field(default_factory=dict)
    section_verbosity: dict[str, str] = field(default_factory=dict)
    phrasing_preferences: dict[str, list[str]] = field(default_factory=dict)
    avoided_phrases: dict[str, list[str]] = field(default_factory=dict)
    vocabulary_map: dict[str, str] = field(default_factory=dict)
    terminology_level: str | None = None
    greeting_style: str | None = None
    closing_style: str | None = None
    signoff_template: str | None = None
    formality_level: str | None = None
    paragraph_structure: str | None = None

    confidence: dict[str, float] = field(default_factory=empty_confidence)

    phrase_patterns: list[dict] = field(default_factory=list)
    section_order_patterns: list[dict] = field(default_factory=list)
    insights: list[str] = field(default_factory=list)

    edits_analyzed: int = 0
    model_used: str = ""
    analyzed_at: datetime.datetime = field(default_factory=datetime.datetime.utcnow)

    def preference(self, name: str) -> Preference:
        return Preference(getattr(self, name), clamp(self.confidence.get(name) or 0.0))
