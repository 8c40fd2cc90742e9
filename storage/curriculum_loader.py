"""
Curriculum seed loader.

Reads a YAML document describing one subject and writes it to the database
in a single transaction. Example:

    subject: Spanish
    learner:
      id: alice
      threshold: 60
      detail_level: DESIRABLE
    sections:
      - name: Grammar
        topics:
          - name: Verbs
            subtopics:
              - {name: present tense, importance: 3}
              - {name: past tense, importance: 5, detail_level: DESIRABLE}
            words: [[hablar, 12], [comer, 7]]
    words: [[casa, 20]]
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from core.dto.curriculum import DetailLevel
from core.errors import StateConflict, ValidationError
from core.service import ProgressService
from storage.database import Database

logger = logging.getLogger(__name__)


class CurriculumLoader:
    """Populates a Database from a curriculum document."""

    def __init__(self, db: Database, service: Optional[ProgressService] = None):
        self.db = db
        self.service = service or ProgressService(db)

    def load_file(self, path: Path, learner_id: Optional[str] = None) -> Dict[str, Any]:
        """Load a YAML curriculum file.

        Raises:
            ValidationError: If the file is not valid YAML or has the wrong shape
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValidationError(f"Failed to parse curriculum YAML: {e}") from e
        return self.load(data, learner_id)

    @staticmethod
    def _require_list(data: Dict[str, Any], key: str, where: str) -> list:
        value = data.get(key) or []
        if not isinstance(value, list):
            raise ValidationError(f"'{key}' in {where} must be a list")
        return value

    @staticmethod
    def _require_name(data: Any, where: str) -> str:
        if not isinstance(data, dict) or not isinstance(data.get("name"), str):
            raise ValidationError(f"Every {where} needs a 'name'")
        return data["name"].strip()

    def load(self, data: Any, learner_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Load a curriculum document.

        Args:
            data: Parsed document
            learner_id: Learner owning the words; overrides ``learner.id``

        Returns:
            Dict with subject_id and created counts

        Raises:
            ValidationError: Malformed document
            StateConflict: Subject already exists
        """
        if not isinstance(data, dict) or not isinstance(data.get("subject"), str):
            raise ValidationError("Curriculum document needs a 'subject' name")

        learner = data.get("learner") or {}
        if not isinstance(learner, dict):
            raise ValidationError("'learner' must be a mapping")
        learner_id = learner_id or learner.get("id")

        stats = {"sections": 0, "topics": 0, "subtopics": 0, "words": 0}
        with self.db.transaction():
            if self.db.get_subject_by_name(data["subject"]) is not None:
                raise StateConflict(f"Subject already exists: {data['subject']}")
            subject_id = self.db.add_subject(data["subject"])

            for s_pos, section in enumerate(self._require_list(data, "sections", "subject")):
                section_id = self.db.add_section(
                    subject_id,
                    self._require_name(section, "section"),
                    position=s_pos,
                    blocked=bool(section.get("blocked", False)),
                )
                stats["sections"] += 1

                for t_pos, topic in enumerate(self._require_list(section, "topics", "section")):
                    topic_id = self.db.add_topic(
                        section_id,
                        self._require_name(topic, "topic"),
                        position=t_pos,
                        blocked=bool(topic.get("blocked", False)),
                    )
                    stats["topics"] += 1

                    for subtopic in self._require_list(topic, "subtopics", "topic"):
                        self._add_subtopic(topic_id, subtopic)
                        stats["subtopics"] += 1

                    topic_words = self._require_list(topic, "words", "topic")
                    if topic_words:
                        stats["words"] += self._add_words(
                            learner_id, subject_id, topic_words, topic_id
                        )

            subject_words = self._require_list(data, "words", "subject")
            if subject_words:
                stats["words"] += self._add_words(learner_id, subject_id, subject_words)

            if learner_id and ("threshold" in learner or "detail_level" in learner):
                detail = learner.get("detail_level")
                level = DetailLevel.from_string(detail) if detail is not None else None
                self.service.set_preference(
                    learner_id, subject_id, threshold=learner.get("threshold"), detail_level=level
                )

        logger.info(
            f"Loaded subject '{data['subject']}': {stats['sections']} sections, "
            f"{stats['topics']} topics, {stats['subtopics']} subtopics, {stats['words']} words"
        )
        return {"subject_id": subject_id, **stats}

    def _add_subtopic(self, topic_id: int, subtopic: Any) -> int:
        name = self._require_name(subtopic, "subtopic")
        importance = subtopic.get("importance", 0)
        if isinstance(importance, bool) or not isinstance(importance, int) or importance < 0:
            raise ValidationError(f"Subtopic '{name}' importance must be a non-negative integer")
        level = DetailLevel.from_string(subtopic.get("detail_level", "MANDATORY"))
        return self.db.add_subtopic(
            topic_id,
            name,
            importance=importance,
            detail_level=level,
            blocked=bool(subtopic.get("blocked", False)),
        )

    def _add_words(
        self, learner_id: Optional[str], subject_id: int, pairs: list, topic_id: Optional[int] = None
    ) -> int:
        if not learner_id:
            raise ValidationError("Words need a learner: set 'learner.id' or pass a learner")
        return self.service.add_words(learner_id, subject_id, pairs, topic_id)["created"]
