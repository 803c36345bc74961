"""
Regex-based PHI scrubber for de-identified analytics.

Every candidate phrase is scrubbed before it can reach an aggregate. A phrase
that still carries a redaction marker after scrubbing is discarded rather than
stored partially redacted.
"""

import re
from dataclasses import dataclass, field

REDACTED = "[REDACTED]"

_MONTHS = r"(?:January|February|March|April|May|June|July|August|September|October|November|December)"

_PHI_PATTERNS: list[tuple[str, re.Pattern]] = [
    # Titled names: "Mr Smith", "Dr. Jane Doe"
    ("name", re.compile(r"\b(?:Mr|Mrs|Ms|Miss|Dr|Prof)\.?\s+[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*")),
    # Dates: 01/02/2024, 1-2-24
    ("date", re.compile(r"\b\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4}\b")),
    # Dates: "1st January 2024"
    ("date", re.compile(r"\b\d{1,2}(?:st|nd|rd|th)?\s+" + _MONTHS + r"\s+\d{2,4}\b", re.IGNORECASE)),
    # Medicare / health identifiers (10-11 digits)
    ("health_id", re.compile(r"\b\d{10,11}\b")),
    # Australian mobile: 0412 345 678
    ("phone", re.compile(r"\b04\d{2}[-.\s]?\d{3}[-.\s]?\d{3}\b")),
    # Australian landline: (02) 9876 5432
    ("phone", re.compile(r"\(?0[2-9]\)?\s?\d{4}[-.\s]?\d{4}\b")),
    # International +61
    ("phone", re.compile(r"\+61\s?\d{1,3}[-.\s]?\d{3}[-.\s]?\d{3}[-.\s]?\d{0,3}\b")),
    # US / general
    ("phone", re.compile(r"(?<!\d)(?:\+?\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b")),
    ("email", re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")),
    # Street addresses: "12 Smith Street"
    ("address", re.compile(
        r"\b\d+\s+[A-Z][a-z]+\s+(?:Street|St|Avenue|Ave|Road|Rd|Drive|Dr|Court|Ct|Lane|Ln|Boulevard|Blvd)\b",
        re.IGNORECASE,
    )),
    # Facility names: "Hospital Westmead", "Clinic North Shore"
    ("facility", re.compile(
        r"\b(?:Hospital|Clinic|Medical Centre|Medical Center|Surgery)\s+[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*",
    )),
    # Facility names: "Westmead Hospital"
    ("facility", re.compile(r"\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*\s+(?:Hospital|Clinic|Medical Centre|Medical Center)\b")),
    # URN / MRN / ID numbers
    ("record_id", re.compile(r"\b(?:URN|MRN|ID)\s*[:#]?\s*\d+\b", re.IGNORECASE)),
]

_COLLAPSE_RE = re.compile(r"(?:" + re.escape(REDACTED) + r"\s*)+")
_WS_RE = re.compile(r"\s+")

MIN_PHRASE_CHARS = 5


@dataclass
class ScrubResult:
    scrubbed_text: str
    phi_found: list[str] = field(default_factory=list)
    redaction_count: int = 0


def scrub(text: str) -> ScrubResult:
    result = text
    found: list[str] = []
    count = 0
    for name, pattern in _PHI_PATTERNS:
        result, n = pattern.subn(REDACTED, result)
        if n:
            count += n
            if name not in found:
                found.append(name)
    if count:
        result = _COLLAPSE_RE.sub(REDACTED + " ", result)
    return ScrubResult(scrubbed_text=result.strip(), phi_found=found, redaction_count=count)


def strip_phi(text: str) -> str:
    return scrub(text).scrubbed_text


def contains_phi(text: str) -> bool:
    return any(pattern.search(text) for _, pattern in _PHI_PATTERNS)


def sanitize_phrase(phrase: str) -> str | None:
    """Scrubbed, whitespace-normalized phrase, or None if it must be dropped."""
    trimmed = phrase.strip()
    if len(trimmed) < MIN_PHRASE_CHARS:
        return None
    stripped = strip_phi(trimmed)
    if REDACTED in stripped:
        return None
    normalized = _WS_RE.sub(" ", stripped).strip()
    if len(normalized) < MIN_PHRASE_CHARS:
        return None
    return normalized
