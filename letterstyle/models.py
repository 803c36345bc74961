import datetime

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class GlobalSetting(Base):
    __tablename__ = "global_settings"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=True)
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())


class StyleEdit(Base):
    """One changed section between an AI draft and the approved letter. Append-only."""
    __tablename__ = "style_edits"

    id = Column(Integer, primary_key=True, autoincrement=True)
    clinician_id = Column(String, nullable=False)
    letter_id = Column(String, nullable=False)
    subspecialty = Column(String, nullable=False)

    before_text = Column(Text, nullable=False, default="")
    after_text = Column(Text, nullable=False, default="")
    edit_type = Column(String, nullable=False)  # added / removed / modified
    section_type = Column(String, nullable=True)
    character_changes = Column(Integer, nullable=False, default=0)
    word_changes = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=datetime.datetime.utcnow)

    __table_args__ = (
        Index("ix_style_edits_clinician_subspecialty", "clinician_id", "subspecialty", "created_at"),
        Index("ix_style_edits_subspecialty_created", "subspecialty", "created_at"),
    )


class StyleProfileRow(Base):
    __tablename__ = "style_profiles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    clinician_id = Column(String, nullable=False)
    subspecialty = Column(String, nullable=False)

    # Section-level preferences
    section_order = Column(JSON, nullable=False, default=list)
    section_inclusion = Column(JSON, nullable=False, default=dict)
    section_verbosity = Column(JSON, nullable=False, default=dict)

    # Phrase-level preferences
    phrasing_preferences = Column(JSON, nullable=False, default=dict)
    avoided_phrases = Column(JSON, nullable=False, default=dict)
    vocabulary_map = Column(JSON, nullable=False, default=dict)

    # Style indicators
    terminology_level = Column(String, nullable=True)
    greeting_style = Column(String, nullable=True)
    closing_style = Column(String, nullable=True)
    signoff_template = Column(Text, nullable=True)
    formality_level = Column(String, nullable=True)
    paragraph_structure = Column(String, nullable=True)

    confidence = Column(JSON, nullable=False, default=dict)
    learning_strength = Column(Float, nullable=False, default=1.0)
    total_edits_analyzed = Column(Integer, nullable=False, default=0)
    last_analyzed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("clinician_id", "subspecialty", name="uq_style_profile_clinician_subspecialty"),
    )


class StyleSeedLetter(Base):
    __tablename__ = "style_seed_letters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    clinician_id = Column(String, nullable=False)
    subspecialty = Column(String, nullable=False)
    letter_text = Column(Text, nullable=False)
    analyzed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.datetime.utcnow)

    __table_args__ = (
        Index("ix_seed_letters_clinician_subspecialty", "clinician_id", "subspecialty"),
    )


class StyleAnalyticsAggregateRow(Base):
    """De-identified cross-clinician patterns. Never holds clinician or letter ids."""
    __tablename__ = "style_analytics_aggregates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subspecialty = Column(String, nullable=False)
    period = Column(String, nullable=False)  # ISO week, e.g. "2024-W01"

    common_additions = Column(JSON, nullable=False, default=list)
    common_deletions = Column(JSON, nullable=False, default=list)
    section_order_patterns = Column(JSON, nullable=False, default=list)
    phrasing_patterns = Column(JSON, nullable=False, default=list)
    sample_size = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=datetime.datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("subspecialty", "period", name="uq_style_analytics_subspecialty_period"),
    )


class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    clinician_id = Column(String, nullable=True)
    action = Column(String, nullable=False)
    resource_type = Column(String, nullable=False)
    resource_id = Column(String, nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.datetime.utcnow)

    __table_args__ = (
        Index("ix_audit_log_action_created", "action", "created_at"),
    )
