"""Curriculum-related Data Transfer Objects.

The curriculum is a four-level tree: Subject → Section → Topic → Subtopic.
Units are read from any data source into these frozen dataclasses; derived
``percent``/``status`` values live only in the *Progress result objects and
are never persisted.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from core.errors import ValidationError


class Status(Enum):
    """Human-facing status of a curriculum unit, session or word set."""

    BLOCKED = "blocked"
    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"


class DetailLevel(Enum):
    """How deep a learner wants to go into a subject.

    Levels are ordered: a learner at DESIRABLE sees MANDATORY and DESIRABLE
    subtopics, a learner at OPTIONAL sees everything.
    """

    MANDATORY = "MANDATORY"
    DESIRABLE = "DESIRABLE"
    OPTIONAL = "OPTIONAL"

    @property
    def rank(self) -> int:
        return _DETAIL_RANK[self]

    def includes(self, other: "DetailLevel") -> bool:
        """Whether a learner at this level sees units tagged ``other``."""
        return other.rank <= self.rank

    @classmethod
    def from_string(cls, value: str) -> "DetailLevel":
        valid = ", ".join(level.value for level in cls)
        if not isinstance(value, str):
            raise ValidationError(f"Detail level must be one of {valid}, got {value!r}")
        try:
            return cls(value.strip().upper())
        except ValueError:
            raise ValidationError(f"Unknown detail level '{value}'. Valid: {valid}") from None


_DETAIL_RANK = {
    DetailLevel.MANDATORY: 0,
    DetailLevel.DESIRABLE: 1,
    DetailLevel.OPTIONAL: 2,
}


class UnitKind(Enum):
    """Kinds of learning unit that can be blocked."""

    SECTION = "section"
    TOPIC = "topic"
    SUBTOPIC = "subtopic"


@dataclass(frozen=True)
class Subject:
    """Root of a curriculum tree."""

    id: int
    name: str


@dataclass(frozen=True)
class Section:
    """A section of a subject.

    Attributes:
        id: Unique identifier
        subject_id: Owning subject
        name: Display name
        blocked: Whether the section is locked
        position: Ordering within the subject
    """

    id: int
    subject_id: int
    name: str
    blocked: bool = False
    position: int = 0


@dataclass(frozen=True)
class Topic:
    """A topic inside a section."""

    id: int
    section_id: int
    subject_id: int
    name: str
    blocked: bool = False
    position: int = 0


@dataclass(frozen=True)
class Subtopic:
    """Leaf learning unit.

    Carries denormalized section and subject references for query convenience.

    Attributes:
        id: Unique identifier
        topic_id: Owning topic
        section_id: Section of the owning topic
        subject_id: Subject of the owning topic
        name: Display name, unique within a topic
        importance: Non-negative weight used for selection and forecasting
        blocked: Whether the subtopic is locked
        detail_level: Lowest learner detail level that sees this subtopic
    """

    id: int
    topic_id: int
    section_id: int
    subject_id: int
    name: str
    importance: int = 0
    blocked: bool = False
    detail_level: DetailLevel = DetailLevel.MANDATORY


@dataclass(frozen=True)
class SubtopicProgress:
    """Derived mastery of one subtopic for one learner."""

    subtopic: Subtopic
    percent: int
    status: Status


@dataclass(frozen=True)
class TopicProgress:
    """Derived roll-up of a topic.

    Attributes:
        topic: The topic
        percent: Mean percent of active subtopics (or stored percent when
            the topic has no subtopics)
        status: Rolled-up status
        subtopics: Per-subtopic progress, in curriculum order
        breakdown: Share of each status among subtopics, in percent
    """

    topic: Topic
    percent: int
    status: Status
    subtopics: List[SubtopicProgress] = field(default_factory=list)
    breakdown: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class SectionProgress:
    """Derived roll-up of a section from its topics."""

    section: Section
    percent: int
    status: Status
    topics: List[TopicProgress] = field(default_factory=list)
    breakdown: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class SubjectProgress:
    """Derived roll-up of a whole subject for one learner."""

    subject: Subject
    learner_id: str
    threshold: int
    percent: int
    status: Status
    sections: List[SectionProgress] = field(default_factory=list)
    breakdown: Dict[str, int] = field(default_factory=dict)

    def find_topic(self, topic_id: int) -> Optional[TopicProgress]:
        for section in self.sections:
            for topic in section.topics:
                if topic.topic.id == topic_id:
                    return topic
        return None
