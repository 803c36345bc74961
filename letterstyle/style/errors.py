"""Exceptions raised by the style-learning subsystem.

Parsing never fails: malformed letters degrade to a single ``other`` section,
so there is no parse error here.
"""


class StyleLearningError(Exception):
    """Base class for style-learning failures."""


class AnalysisError(StyleLearningError):
    """The external analyzer failed or returned unusable content."""


class ValidationError(StyleLearningError, ValueError):
    """A caller-supplied value is out of range (e.g. learning strength)."""


class InsufficientDataError(StyleLearningError):
    """Too few edits for a direct, non-forced analysis run."""


class AnonymityThresholdError(StyleLearningError):
    """Cohort too small to publish a de-identified aggregate."""


class ProfileNotFoundError(StyleLearningError, LookupError):
    pass


class StaleProfileError(StyleLearningError):
    """The profile changed underneath a merge; the merge result was discarded."""
