"""
StudyTrack Core - learner progress and adaptive selection library.

Main components:
- MasteryCalculator: Smoothed mastery from repeated observations
- StatusClassifier: Threshold-based status of a unit
- HierarchyAggregator: Curriculum roll-up and block cascade
- SubtopicSelector: Weak subtopics for the next generated exercise
- VocabularyRanker: Word ordering for review and generation
"""

from core.errors import NotFound, ProgressError, StateConflict, ValidationError
from core.mastery import MasteryCalculator
from core.mastery_aggregator import HierarchyAggregator
from core.status import StatusClassifier
from core.subtopic_selector import SubtopicSelector
from core.vocabulary_ranker import VocabularyRanker

__all__ = [
    "MasteryCalculator",
    "StatusClassifier",
    "HierarchyAggregator",
    "SubtopicSelector",
    "VocabularyRanker",
    # Errors
    "ProgressError",
    "NotFound",
    "ValidationError",
    "StateConflict",
]
