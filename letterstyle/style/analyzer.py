"""Boundary with the external style analyzer (a hosted language model).

The analyzer itself is injected. This module builds its prompts and turns its
loosely structured reply into a validated ``AnalysisResult``, with an explicit
``Parsed | SchemaError`` step in between.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from letterstyle.style.errors import AnalysisError
from letterstyle.style.profile import (
    CONFIDENCE_CATEGORIES,
    FORMALITY_LEVELS,
    PARAGRAPH_STRUCTURES,
    STYLE_CATEGORIES,
    TERMINOLOGY_LEVELS,
    VERBOSITY_LEVELS,
    AnalysisResult,
    clamp,
)
from letterstyle.style.sections import SECTION_TYPES

logger = logging.getLogger(__name__)

MAX_EXAMPLES_PER_SECTION = 10
MAX_EDIT_CHARS = 500
MAX_SEED_LETTER_CHARS = 2000

_JSON_BLOCK_RE = re.compile(r"```json\s*([\s\S]*?)\s*```")


@dataclass
class AnalyzerResponse:
    content: str
    model_id: str = "unknown"


@runtime_checkable
class StyleAnalyzer(Protocol):
    """Anything that can answer an analysis prompt.

    Implementations own their own timeout and retry policy.
    """

    def analyze(self, prompt: str, system_prompt: str) -> AnalyzerResponse:
        ...


@dataclass
class EditSample:
    before_text: str
    after_text: str
    section_type: str | None
    edit_type: str


# ── Prompts ───────────────────────────────────────────────────────────────

EDIT_ANALYSIS_SYSTEM_PROMPT = """You are an expert medical writing analyst specializing in identifying physician writing style preferences for specific medical subspecialties.

Your role is to analyze edits made by physicians to AI-generated medical letters and identify consistent patterns in their writing style specific to their subspecialty.

Focus on:
- Concrete, observable patterns (not subjective interpretations)
- Consistency across multiple examples
- Section-level preferences (ordering, inclusion, verbosity)
- Phrase-level preferences (preferred phrases, avoided phrases)
- Word-level preferences (vocabulary substitutions)

Be conservative with confidence scores: only assign high confidence when patterns are clearly consistent across multiple examples."""

SEED_ANALYSIS_SYSTEM_PROMPT = """You are an expert medical writing analyst specializing in identifying physician writing style preferences from their historical letters.

Your role is to analyze complete medical letters written by a physician to identify their consistent writing style patterns: section structure and ordering, recurring phrases and vocabulary, sign-off and formality conventions.

Be conservative with confidence scores since you are inferring from examples rather than seeing explicit editing preferences."""

_RESPONSE_FORMAT = """Provide your analysis in the following JSON format:

```json
{
  "detectedSectionOrder": ["greeting", "history", "examination", "impression", "plan", "closing", "signoff"],
  "detectedSectionInclusion": {"history": 0.95, "medications": 0.7, "family_history": 0.3},
  "detectedSectionVerbosity": {"history": "detailed", "plan": "brief", "impression": "normal"},
  "detectedPhrasing": {"plan": ["will arrange", "recommend proceeding with"]},
  "detectedAvoidedPhrases": {"impression": ["It is felt that"]},
  "detectedVocabulary": {"utilize": "use", "commence": "start"},
  "detectedTerminologyLevel": "specialist" | "lay" | "mixed" | null,
  "detectedGreetingStyle": "formal" | "casual" | "mixed" | null,
  "detectedClosingStyle": "formal" | "casual" | "mixed" | null,
  "detectedSignoff": "Yours sincerely," | null,
  "detectedFormalityLevel": "very-formal" | "formal" | "neutral" | "casual" | null,
  "detectedParagraphStructure": "long" | "short" | "mixed" | null,
  "confidence": {
    "sectionOrder": 0.0-1.0,
    "sectionInclusion": 0.0-1.0,
    "sectionVerbosity": 0.0-1.0,
    "phrasingPreferences": 0.0-1.0,
    "avoidedPhrases": 0.0-1.0,
    "vocabularyMap": 0.0-1.0,
    "terminologyLevel": 0.0-1.0,
    "greetingStyle": 0.0-1.0,
    "closingStyle": 0.0-1.0,
    "signoffTemplate": 0.0-1.0,
    "formalityLevel": 0.0-1.0,
    "paragraphStructure": 0.0-1.0
  },
  "phrasePatterns": [{"phrase": "recommend proceeding with", "sectionType": "plan", "frequency": 5, "action": "preferred"}],
  "sectionOrderPatterns": [{"order": ["history", "examination", "impression", "plan"], "frequency": 8}],
  "insights": ["Consistently uses brief plan sections"]
}
```

Guidelines for confidence scores:
- 0.9-1.0: Very consistent pattern across all edits
- 0.7-0.9: Consistent pattern with minor variations
- 0.5-0.7: Moderate pattern, some variation
- 0.3-0.5: Weak pattern, significant variation
- 0.0-0.3: No clear pattern detected

Use null for fields with no clear preference, and empty [] or {} when no patterns were detected.
"""


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit - 3] + "..."


def build_edit_analysis_prompt(edits: list[EditSample], subspecialty: str, signals: dict | None = None) -> str:
    by_section: dict[str, list[EditSample]] = {}
    for edit in edits:
        by_section.setdefault(edit.section_type or "other", []).append(edit)

    lines = [
        f"Analyze these physician edits for {subspecialty} letters to learn their writing style preferences.",
        "",
        f"Below are {len(edits)} examples of text edits the physician made to AI-generated medical letters "
        f"for {subspecialty}. Each edit shows the BEFORE (AI-generated) and AFTER (physician-edited) versions.",
        "",
        "# EDIT EXAMPLES",
        "",
    ]
    for section, samples in by_section.items():
        lines.append(f"## {section.upper()} SECTION")
        lines.append("")
        for i, edit in enumerate(samples[:MAX_EXAMPLES_PER_SECTION], 1):
            lines.append(f"### Edit {i} ({edit.edit_type})")
            lines.append(f"BEFORE:\n{truncate(edit.before_text, MAX_EDIT_CHARS)}\n")
            lines.append(f"AFTER:\n{truncate(edit.after_text, MAX_EDIT_CHARS)}\n")
            lines.append("---\n")

    if signals and any(signals.values()):
        lines.append("# OBSERVED SIGNALS")
        lines.append("")
        for (section, phrase), count in signals.get("added", []):
            lines.append(f"- added in {section} ({count}x): \"{phrase}\"")
        for (section, phrase), count in signals.get("removed", []):
            lines.append(f"- removed from {section} ({count}x): \"{phrase}\"")
        for (original, replacement), count in signals.get("substitutions", []):
            lines.append(f"- replaced \"{original}\" with \"{replacement}\" ({count}x)")
        lines.append("")

    lines.append("# YOUR ANALYSIS")
    lines.append("")
    lines.append(_RESPONSE_FORMAT)
    return "\n".join(lines)


def build_seed_analysis_prompt(letters: list[str], subspecialty: str) -> str:
    lines = [
        f"Analyze these {subspecialty} medical letters to learn the physician's writing style.",
        "",
        f"Below are {len(letters)} complete medical letters written by this physician for {subspecialty}.",
        "",
        "# SAMPLE LETTERS",
        "",
    ]
    for i, letter in enumerate(letters, 1):
        lines.append(f"## Letter {i}\n\n{truncate(letter, MAX_SEED_LETTER_CHARS)}\n\n---\n")
    lines.append("# YOUR ANALYSIS")
    lines.append("")
    lines.append(_RESPONSE_FORMAT)
    lines.append(
        "Since these are complete letters (not before/after edits), confidence scores should be "
        "lower than for edit-based analysis."
    )
    return "\n".join(lines)


# ── Response schema ───────────────────────────────────────────────────────

def _known_sections(value) -> dict:
    if not isinstance(value, dict):
        return {}
    return {k: v for k, v in value.items() if k in SECTION_TYPES}


def _enum_or_none(value, allowed):
    return value if isinstance(value, str) and value in allowed else None


class ConfidencePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    section_order: float = Field(0.0, alias="sectionOrder")
    section_inclusion: float = Field(0.0, alias="sectionInclusion")
    section_verbosity: float = Field(0.0, alias="sectionVerbosity")
    phrasing_preferences: float = Field(0.0, alias="phrasingPreferences")
    avoided_phrases: float = Field(0.0, alias="avoidedPhrases")
    vocabulary_map: float = Field(0.0, alias="vocabularyMap")
    terminology_level: float = Field(0.0, alias="terminologyLevel")
    greeting_style: float = Field(0.0, alias="greetingStyle")
    closing_style: float = Field(0.0, alias="closingStyle")
    signoff_template: float = Field(0.0, alias="signoffTemplate")
    formality_level: float = Field(0.0, alias="formalityLevel")
    paragraph_structure: float = Field(0.0, alias="paragraphStructure")

    @field_validator("*", mode="before")
    @classmethod
    def _clamp(cls, v):
        if v is None:
            return 0.0
        return clamp(v)


class PhrasePatternPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    phrase: str
    section_type: str = Field("other", alias="sectionType")
    frequency: int = 0
    action: str = "preferred"


class SectionOrderPatternPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    order: list[str]
    frequency: int = 0


class AnalysisPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    section_order: list[str] | None = Field(None, alias="detectedSectionOrder")
    section_inclusion: dict[str, float] = Field(default_factory=dict, alias="detectedSectionInclusion")
    section_verbosity: dict[str, str] = Field(default_factory=dict, alias="detectedSectionVerbosity")
    phrasing: dict[str, list[str]] = Field(default_factory=dict, alias="detectedPhrasing")
    avoided_phrases: dict[str, list[str]] = Field(default_factory=dict, alias="detectedAvoidedPhrases")
    vocabulary: dict[str, str] = Field(default_factory=dict, alias="detectedVocabulary")
    terminology_level: str | None = Field(None, alias="detectedTerminologyLevel")
    greeting_style: str | None = Field(None, alias="detectedGreetingStyle")
    closing_style: str | None = Field(None, alias="detectedClosingStyle")
    signoff: str | None = Field(None, alias="detectedSignoff")
    formality_level: str | None = Field(None, alias="detectedFormalityLevel")
    paragraph_structure: str | None = Field(None, alias="detectedParagraphStructure")
    confidence: ConfidencePayload = Field(default_factory=ConfidencePayload)
    phrase_patterns: list[PhrasePatternPayload] = Field(default_factory=list, alias="phrasePatterns")
    section_order_patterns: list[SectionOrderPatternPayload] = Field(default_factory=list, alias="sectionOrderPatterns")
    insights: list[str] = Field(default_factory=list)

    @field_validator("section_order", mode="before")
    @classmethod
    def _order(cls, v):
        if not isinstance(v, list):
            return None
        return [s for s in v if s in SECTION_TYPES] or None

    @field_validator("section_inclusion", mode="before")
    @classmethod
    def _inclusion(cls, v):
        return {k: clamp(p) for k, p in _known_sections(v).items() if isinstance(p, (int, float))}

    @field_validator("section_verbosity", mode="before")
    @classmethod
    def _verbosity(cls, v):
        return {k: lvl for k, lvl in _known_sections(v).items() if lvl in VERBOSITY_LEVELS}

    @field_validator("phrasing", "avoided_phrases", mode="before")
    @classmethod
    def _phrases(cls, v):
        return {
            k: [p for p in items if isinstance(p, str) and p.strip()]
            for k, items in _known_sections(v).items()
            if isinstance(items, list)
        }

    @field_validator("vocabulary", mode="before")
    @classmethod
    def _vocabulary(cls, v):
        if not isinstance(v, dict):
            return {}
        return {k: t for k, t in v.items() if isinstance(k, str) and isinstance(t, str) and k and t}

    @field_validator("terminology_level", mode="before")
    @classmethod
    def _terminology(cls, v):
        return _enum_or_none(v, TERMINOLOGY_LEVELS)

    @field_validator("greeting_style", "closing_style", mode="before")
    @classmethod
    def _style(cls, v):
        return _enum_or_none(v, STYLE_CATEGORIES)

    @field_validator("formality_level", mode="before")
    @classmethod
    def _formality(cls, v):
        return _enum_or_none(v, FORMALITY_LEVELS)

    @field_validator("paragraph_structure", mode="before")
    @classmethod
    def _paragraphs(cls, v):
        return _enum_or_none(v, PARAGRAPH_STRUCTURES)

    @field_validator("signoff", mode="before")
    @classmethod
    def _signoff(cls, v):
        return v.strip() if isinstance(v, str) and v.strip() else None

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v):
        return v if isinstance(v, dict) else {}

    @field_validator("phrase_patterns", mode="before")
    @classmethod
    def _phrase_patterns(cls, v):
        if not isinstance(v, list):
            return []
        return [p for p in v if isinstance(p, dict) and isinstance(p.get("phrase"), str)]

    @field_validator("section_order_patterns", mode="before")
    @classmethod
    def _order_patterns(cls, v):
        if not isinstance(v, list):
            return []
        return [p for p in v if isinstance(p, dict) and isinstance(p.get("order"), list)]

    @field_validator("insights", mode="before")
    @classmethod
    def _insights(cls, v):
        return [s for s in v if isinstance(s, str)] if isinstance(v, list) else []


@dataclass
class Parsed:
    payload: AnalysisPayload


@dataclass
class SchemaError:
    message: str


def parse_analysis_response(content: str) -> Parsed | SchemaError:
    """Extract and validate the fenced JSON document from an analyzer reply."""
    if not content:
        return SchemaError("Empty analyzer response")
    m = _JSON_BLOCK_RE.search(content)
    if not m:
        return SchemaError("No JSON block found in analyzer response")
    try:
        data = json.loads(m.group(1))
    except json.JSONDecodeError as e:
        return SchemaError(f"Malformed JSON in analyzer response: {e}")
    if not isinstance(data, dict):
        return SchemaError("Analyzer JSON is not an object")
    try:
        return Parsed(AnalysisPayload.model_validate(data))
    except PydanticValidationError as e:
        return SchemaError(f"Analyzer JSON does not match schema: {e.error_count()} error(s)")


def to_analysis_result(
    outcome: Parsed | SchemaError,
    clinician_id: str,
    subspecialty: str,
    edits_analyzed: int,
    model_used: str,
) -> AnalysisResult:
    if isinstance(outcome, SchemaError):
        raise AnalysisError(outcome.message)

    p = outcome.payload
    confidence = p.confidence.model_dump()
    return AnalysisResult(
        clinician_id=clinician_id,
        subspecialty=subspecialty,
        section_order=p.section_order,
        section_inclusion=p.section_inclusion,
        section_verbosity=p.section_verbosity,
        phrasing_preferences=p.phrasing,
        avoided_phrases=p.avoided_phrases,
        vocabulary_map=p.vocabulary,
        terminology_level=p.terminology_level,
        greeting_style=p.greeting_style,
        closing_style=p.closing_style,
        signoff_template=p.signoff,
        formality_level=p.formality_level,
        paragraph_structure=p.paragraph_structure,
        confidence={c: confidence[c] for c in CONFIDENCE_CATEGORIES},
        phrase_patterns=[pp.model_dump() for pp in p.phrase_patterns],
        section_order_patterns=[sp.model_dump() for sp in p.section_order_patterns],
        insights=p.insights,
        edits_analyzed=edits_analyzed,
        model_used=model_used,
    )


def run_analyzer(
    analyzer: StyleAnalyzer,
    prompt: str,
    system_prompt: str,
    clinician_id: str,
    subspecialty: str,
    edits_analyzed: int,
) -> AnalysisResult:
    """Call the analyzer and validate its reply. Any failure is an AnalysisError."""
    try:
        response = analyzer.analyze(prompt, system_prompt)
    except AnalysisError:
        raise
    except Exception as e:
        raise AnalysisError(f"Analyzer call failed: {e}") from e

    outcome = parse_analysis_response(response.content)
    if isinstance(outcome, SchemaError):
        logger.warning("Rejected analyzer response for %s/%s: %s", clinician_id, subspecialty, outcome.message)
    result = to_analysis_result(outcome, clinician_id, subspecialty, edits_analyzed, response.model_id)
    logger.info(
        "Analysis parsed for %s/%s: %d phrase pattern(s), %d insight(s)",
        clinician_id, subspecialty, len(result.phrase_patterns), len(result.insights),
    )
    return result
