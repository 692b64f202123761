"""
Newsletter Feedback Learning - Datenmodelle (SQLAlchemy + dataclasses)

Detection-Werttypen: EmailHeader, EmailPayload, Email, DetectionScore, DetectionResult
Persistenz: FeedbackItem, VerificationRequest, DetectionSnapshot, ReputationEntry,
            FeatureWeight, Category, CategoryAssignment, UserCategoryPreference
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base


Base = declarative_base()

GLOBAL_SCOPE = "__global__"


class DetectionMethod(str, Enum):
    """Signal-Analyzer Typen"""

    HEADER_ANALYSIS = "header_analysis"
    CONTENT_STRUCTURE = "content_structure"
    SENDER_REPUTATION = "sender_reputation"
    USER_FEEDBACK = "user_feedback"


class FeedbackType(str, Enum):
    """Art des User-Feedbacks zu einer Newsletter-Entscheidung"""

    CONFIRM = "confirm"
    REJECT = "reject"
    VERIFY = "verify"
    UNCERTAIN = "uncertain"
    IGNORE = "ignore"


class FeedbackPriority(str, Enum):
    """Lern-Priorität eines Feedback-Items"""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class VerificationStatus(str, Enum):
    """Status einer Verifikations-Anfrage (nur vorwärts)"""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELED = "canceled"


TERMINAL_STATUSES = frozenset(
    {
        VerificationStatus.CONFIRMED,
        VerificationStatus.REJECTED,
        VerificationStatus.EXPIRED,
        VerificationStatus.CANCELED,
    }
)


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return str(uuid.uuid4())


class UTCDateTime(TypeDecorator):
    """DateTime, das naive UTC speichert und timezone-aware zurückliefert.

    SQLite verliert tzinfo beim Speichern, Vergleiche mit datetime.now(UTC)
    würden sonst mit TypeError scheitern.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(UTC).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


# ============================================================================
# Detection-Werttypen (nicht persistiert)
# ============================================================================


@dataclass
class EmailHeader:
    name: str
    value: str


@dataclass
class EmailPayload:
    """MIME-Teil einer Email: Header, Typ, base64url-Body und Unterteile"""

    headers: List[EmailHeader] = field(default_factory=list)
    mime_type: Optional[str] = None
    body_data: Optional[str] = None
    parts: List["EmailPayload"] = field(default_factory=list)


@dataclass
class Email:
    """Email wie vom Mail-Provider geliefert (nur die Form, die Analyzer lesen)"""

    id: str
    payload: Optional[EmailPayload]
    user_id: Optional[str] = None
    message_id: Optional[str] = None
    subject: Optional[str] = None

    def header(self, name: str) -> Optional[str]:
        """Case-insensitiver Header-Lookup (erster Treffer)"""
        if self.payload is None:
            return None
        wanted = name.lower()
        for header in self.payload.headers:
            if header.name.lower() == wanted:
                return header.value
        return None

    def header_map(self) -> Dict[str, str]:
        """Header als Dict mit lower-case Keys"""
        if self.payload is None:
            return {}
        return {h.name.lower(): h.value for h in self.payload.headers}


@dataclass
class DetectionScore:
    method: DetectionMethod
    score: float
    confidence: float
    reason: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DetectionResult:
    combined_score: float
    is_newsletter: bool
    needs_verification: bool
    scores: List[DetectionScore] = field(default_factory=list)

    def features(self) -> Dict[str, float]:
        """Snapshot Signal -> Score, wird im FeedbackItem gespeichert"""
        return {s.method.value: s.score for s in self.scores}

    def score_for(self, method: DetectionMethod) -> Optional[DetectionScore]:
        for score in self.scores:
            if score.method == method:
                return score
        return None


@dataclass
class NewsletterContent:
    """Extrahierter Newsletter-Inhalt für die Kategorisierung"""

    newsletter_id: str
    title: str = ""
    text: str = ""
    topics: List[str] = field(default_factory=list)


# ============================================================================
# Feedback & Verifikation
# ============================================================================


class FeedbackItem(Base):
    """Ein User-Feedback zu einer Newsletter-Entscheidung.

    Nach dem Speichern unveränderlich, bis auf processed/processed_at.
    """

    __tablename__ = "feedback_items"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(100), nullable=False, index=True)
    email_id = Column(String(255), nullable=False, index=True)
    message_id = Column(String(255), nullable=True)
    sender = Column(String(320), nullable=False, default="")
    sender_domain = Column(String(255), nullable=False, default="", index=True)
    subject = Column(Text, nullable=True)

    type = Column(String(20), nullable=False)
    priority = Column(String(10), nullable=False)

    # Was das System zum Zeitpunkt der Erkennung entschieden hatte
    detection_result = Column(Boolean, nullable=False, default=False)
    confidence = Column(Float, nullable=False, default=0.0)
    features = Column(JSON, nullable=False, default=dict)

    comment = Column(Text, nullable=True)
    timestamp = Column(UTCDateTime, nullable=False, default=utcnow)
    processed = Column(Boolean, nullable=False, default=False, index=True)
    processed_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (Index("ix_feedback_user_email", "user_id", "email_id"),)

    def __repr__(self):
        return f"<FeedbackItem(id={self.id}, type={self.type}, priority={self.priority})>"


class VerificationRequest(Base):
    """Human-in-the-loop Anfrage für eine unsichere Erkennung"""

    __tablename__ = "verification_requests"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(100), nullable=False, index=True)
    email_id = Column(String(255), nullable=False)
    message_id = Column(String(255), nullable=True)
    sender = Column(String(320), nullable=False, default="")
    sender_domain = Column(String(255), nullable=False, default="")
    subject = Column(Text, nullable=True)
    confidence = Column(Float, nullable=False, default=0.5)

    status = Column(String(20), nullable=False, default=VerificationStatus.PENDING.value, index=True)
    token = Column(String(128), nullable=False, unique=True)

    generated_at = Column(UTCDateTime, nullable=False, default=utcnow)
    expires_at = Column(UTCDateTime, nullable=False)
    last_sent_at = Column(UTCDateTime, nullable=True)
    request_sent_count = Column(Integer, nullable=False, default=1)
    responded_at = Column(UTCDateTime, nullable=True)
    user_response = Column(String(20), nullable=True)

    __table_args__ = (Index("ix_verification_user_email", "user_id", "email_id"),)

    @property
    def is_terminal(self) -> bool:
        return VerificationStatus(self.status) in TERMINAL_STATUSES

    def __repr__(self):
        return f"<VerificationRequest(id={self.id}, email={self.email_id}, status={self.status})>"


class DetectionSnapshot(Base):
    """Ergebnis der letzten Erkennung pro (User, Email)"""

    __tablename__ = "detection_snapshots"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(100), nullable=False)
    email_id = Column(String(255), nullable=False)
    message_id = Column(String(255), nullable=True)
    sender = Column(String(320), nullable=False, default="")
    sender_domain = Column(String(255), nullable=False, default="")
    subject = Column(Text, nullable=True)
    is_newsletter = Column(Boolean, nullable=False, default=False)
    needs_verification = Column(Boolean, nullable=False, default=False)
    combined_score = Column(Float, nullable=False, default=0.0)
    features = Column(JSON, nullable=False, default=dict)
    detected_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "email_id", name="uq_snapshot_user_email"),
    )


# ============================================================================
# Lern-Zustand
# ============================================================================


class ReputationEntry(Base):
    """Reputation eines Senders oder einer Domain (gewichtete Zähler)"""

    __tablename__ = "reputation_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String(10), nullable=False)  # "sender" | "domain"
    entity = Column(String(320), nullable=False)
    newsletter_weight = Column(Float, nullable=False, default=0.0)
    non_newsletter_weight = Column(Float, nullable=False, default=0.0)
    feedback_count = Column(Integer, nullable=False, default=0)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("entity_type", "entity", name="uq_reputation_entity"),
    )

    @property
    def total(self) -> float:
        return (self.newsletter_weight or 0.0) + (self.non_newsletter_weight or 0.0)

    @property
    def score(self) -> float:
        total = self.total
        if total <= 0:
            return 0.5
        return self.newsletter_weight / total


class FeatureWeight(Base):
    """Gewicht eines Analyzers, global (GLOBAL_SCOPE) oder pro User"""

    __tablename__ = "feature_weights"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(100), nullable=False, default=GLOBAL_SCOPE)
    method = Column(String(50), nullable=False)
    weight = Column(Float, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "method", name="uq_feature_weight_user_method"),
    )


# ============================================================================
# Kategorien
# ============================================================================


class Category(Base):
    """Kategorie-Baum: parent_id und children müssen konsistent bleiben"""

    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    parent_id = Column(String(36), nullable=True, index=True)
    children = Column(JSON, nullable=False, default=list)
    keywords = Column(JSON, nullable=False, default=list)
    icon = Column(String(50), nullable=True)
    color = Column(String(20), nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Category(id={self.id}, name='{self.name}')>"


class CategoryAssignment(Base):
    __tablename__ = "category_assignments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    newsletter_id = Column(String(255), nullable=False, index=True)
    category_id = Column(String(36), nullable=False, index=True)
    confidence = Column(Float, nullable=False)
    is_manual = Column(Boolean, nullable=False, default=False)
    assigned_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("newsletter_id", "category_id", name="uq_assignment_newsletter_category"),
    )


class UserCategoryPreference(Base):
    __tablename__ = "user_category_preferences"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(100), nullable=False, index=True)
    category_id = Column(String(36), nullable=False)
    score = Column(Float, nullable=False, default=0.0)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "category_id", name="uq_preference_user_category"),
    )
