"""Progress-related Data Transfer Objects.

DTOs for weekly progress statistics and completion forecasts.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import List, Optional


class DeltaStatus(Enum):
    """Direction of week-over-week change."""

    UP = "up"  # delta >= 0
    DOWN = "down"
    MIXED = "mixed"  # children moved in both directions


@dataclass(frozen=True)
class WeekWindow:
    """A Monday 00:00 to Sunday 23:59:59.999999 window.

    Attributes:
        start: Monday at midnight
        end: Last microsecond of Sunday
        offset: 0 for the current week, -1 for the previous one, and so on
    """

    start: datetime
    end: datetime
    offset: int = 0


@dataclass
class UnitDelta:
    """Week-over-week change of one curriculum unit.

    Attributes:
        unit_id: Identifier of the section, topic or subtopic
        name: Display name
        percent: Percent at the end of the window
        delta: Change against the end of the previous week
        delta_status: Direction of the change
        children: Deltas of child units (empty for subtopics)
    """

    unit_id: int
    name: str
    percent: int
    delta: float
    delta_status: DeltaStatus
    children: List["UnitDelta"] = field(default_factory=list)


@dataclass
class WeeklyReport:
    """Learner statistics for one subject and one week.

    Attributes:
        learner_id: Learner identifier
        subject_id: Subject identifier
        window: The reported week
        threshold: Threshold used to count closed units and solved sessions
        sections: Per-section deltas, with topic and subtopic detail
        solved_sessions: Finished top-level sessions in the window
        solved_sessions_completed: Those that reached the threshold
        closed_subtopics: Net subtopics that reached the threshold this week
        closed_topics: Net topics whose subtopics all reached the threshold
        forecast: Estimated date to reach the threshold subject-wide, or None
            when there is no progress to extrapolate (current week only)
    """

    learner_id: str
    subject_id: int
    window: WeekWindow
    threshold: int
    sections: List[UnitDelta] = field(default_factory=list)
    solved_sessions: int = 0
    solved_sessions_completed: int = 0
    closed_subtopics: int = 0
    closed_topics: int = 0
    forecast: Optional[date] = None

    @property
    def forecast_label(self) -> str:
        """Forecast as dd.mm.yyyy, or "Infinity" when none is available."""
        if self.forecast is None:
            return "Infinity"
        return self.forecast.strftime("%d.%m.%Y")
