"""
Database management for StudyTrack.
Handles SQLite operations and schema management.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from config import Config
from core.dto.curriculum import DetailLevel, Section, Subject, Subtopic, Topic, UnitKind
from core.dto.practice import (
    LearnerPreference,
    MasteryObservation,
    PracticeSession,
    VocabularyItem,
)

logger = logging.getLogger(__name__)

SESSION_UPDATABLE_FIELDS = {
    "percent",
    "percent_audio",
    "percent_words",
    "finished",
    "answered",
    "user_option_index",
}


def _to_db_time(value: datetime) -> str:
    """Store timestamps as UTC ISO strings so they sort lexically."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_db_time(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class Database:
    """Manages SQLite database operations for StudyTrack.

    Implements core.ports.ProgressRepository. Single statements autocommit;
    multi-row writes go through ``transaction()``.
    """

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file. Uses Config.DB_PATH if not provided.
        """
        self.db_path = db_path or Config.DB_PATH
        self.conn: Optional[sqlite3.Connection] = None
        self._tx_depth = 0

    def connect(self):
        """Establish database connection."""
        # Autocommit mode: transaction() issues BEGIN/COMMIT explicitly
        self.conn = sqlite3.connect(str(self.db_path), isolation_level=None)
        self.conn.row_factory = sqlite3.Row  # Enable dict-like access
        self.conn.execute("PRAGMA foreign_keys = ON")

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            self._tx_depth = 0

    def __enter__(self):
        """Context manager entry."""
        if not self.conn:
            self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        if self.conn:
            if self.conn.in_transaction:
                if exc_type is None:
                    self.conn.commit()
                else:
                    self.conn.rollback()
            self.close()

    @contextmanager
    def transaction(self):
        """Run a block atomically.

        The outermost block takes the write lock up front (BEGIN IMMEDIATE) so
        concurrent writers serialize; nested blocks become savepoints.
        """
        if not self.conn:
            self.connect()

        depth = self._tx_depth
        savepoint = f"sp_{depth}"
        if depth == 0:
            self.conn.execute("BEGIN IMMEDIATE")
        else:
            self.conn.execute(f"SAVEPOINT {savepoint}")
        self._tx_depth += 1

        try:
            yield
        except BaseException:
            self._tx_depth = depth
            if depth == 0:
                self.conn.execute("ROLLBACK")
            else:
                self.conn.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
                self.conn.execute(f"RELEASE SAVEPOINT {savepoint}")
            raise
        else:
            self._tx_depth = depth
            if depth == 0:
                self.conn.execute("COMMIT")
            else:
                self.conn.execute(f"RELEASE SAVEPOINT {savepoint}")

    def initialize(self):
        """Create all tables and indexes."""
        if not self.conn:
            self.connect()

        self._create_tables()
        self._run_migrations()
        self._create_indexes()

    def _run_migrations(self):
        """Run database migrations for schema updates."""
        cursor = self.conn.execute("PRAGMA table_info(words)")
        columns = [row[1] for row in cursor.fetchall()]

        if "streak_correct_count" not in columns:
            logger.info("Running migration: Adding streak_correct_count column to words table")
            self.conn.execute("""
                ALTER TABLE words
                ADD COLUMN streak_correct_count INTEGER DEFAULT 0
            """)

        cursor = self.conn.execute("PRAGMA table_info(subtopics)")
        columns = [row[1] for row in cursor.fetchall()]

        if "detail_level" not in columns:
            logger.info("Running migration: Adding detail_level column to subtopics table")
            self.conn.execute("""
                ALTER TABLE subtopics
                ADD COLUMN detail_level TEXT DEFAULT 'MANDATORY'
            """)

    def _create_tables(self):
        """Create all database tables."""
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS subjects (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS sections (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                subject_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                blocked BOOLEAN DEFAULT 0,
                position INTEGER DEFAULT 0,
                FOREIGN KEY (subject_id) REFERENCES subjects(id) ON DELETE CASCADE
            )
        """)

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS topics (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                section_id INTEGER NOT NULL,
                subject_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                blocked BOOLEAN DEFAULT 0,
                position INTEGER DEFAULT 0,
                FOREIGN KEY (section_id) REFERENCES sections(id) ON DELETE CASCADE,
                FOREIGN KEY (subject_id) REFERENCES subjects(id) ON DELETE CASCADE
            )
        """)

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS subtopics (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                topic_id INTEGER NOT NULL,
                section_id INTEGER NOT NULL,
                subject_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                importance INTEGER DEFAULT 0 CHECK (importance >= 0),
                blocked BOOLEAN DEFAULT 0,
                detail_level TEXT DEFAULT 'MANDATORY',
                FOREIGN KEY (topic_id) REFERENCES topics(id) ON DELETE CASCADE,
                UNIQUE(topic_id, name)
            )
        """)

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS learner_subjects (
                learner_id TEXT NOT NULL,
                subject_id INTEGER NOT NULL,
                threshold INTEGER DEFAULT 50 CHECK (threshold BETWEEN 0 AND 100),
                detail_level TEXT DEFAULT 'MANDATORY',
                PRIMARY KEY (learner_id, subject_id),
                FOREIGN KEY (subject_id) REFERENCES subjects(id) ON DELETE CASCADE
            )
        """)

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS learner_topics (
                learner_id TEXT NOT NULL,
                topic_id INTEGER NOT NULL,
                percent INTEGER DEFAULT 0,
                updated_at TIMESTAMP,
                PRIMARY KEY (learner_id, topic_id),
                FOREIGN KEY (topic_id) REFERENCES topics(id) ON DELETE CASCADE
            )
        """)

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS practice_sessions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                learner_id TEXT NOT NULL,
                topic_id INTEGER NOT NULL,
                order_index INTEGER NOT NULL,
                percent INTEGER DEFAULT 0,
                percent_audio INTEGER DEFAULT 0,
                percent_words INTEGER DEFAULT 0,
                finished BOOLEAN DEFAULT 0,
                answered BOOLEAN DEFAULT 0,
                parent_session_id INTEGER,
                correct_option_index INTEGER,
                user_option_index INTEGER,
                created_at TIMESTAMP,
                updated_at TIMESTAMP,
                FOREIGN KEY (topic_id) REFERENCES topics(id) ON DELETE CASCADE,
                FOREIGN KEY (parent_session_id) REFERENCES practice_sessions(id)
                    ON DELETE CASCADE
            )
        """)

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS session_subtopics (
                session_id INTEGER NOT NULL,
                subtopic_id INTEGER NOT NULL,
                PRIMARY KEY (session_id, subtopic_id),
                FOREIGN KEY (session_id) REFERENCES practice_sessions(id) ON DELETE CASCADE,
                FOREIGN KEY (subtopic_id) REFERENCES subtopics(id) ON DELETE CASCADE
            )
        """)

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS mastery_observations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                learner_id TEXT NOT NULL,
                subtopic_id INTEGER NOT NULL,
                session_id INTEGER NOT NULL,
                percent REAL NOT NULL,
                recorded_at TIMESTAMP NOT NULL,
                FOREIGN KEY (subtopic_id) REFERENCES subtopics(id) ON DELETE CASCADE,
                FOREIGN KEY (session_id) REFERENCES practice_sessions(id) ON DELETE CASCADE
            )
        """)

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS words (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                learner_id TEXT NOT NULL,
                subject_id INTEGER NOT NULL,
                topic_id INTEGER,
                text TEXT NOT NULL,
                frequency INTEGER DEFAULT 0,
                total_attempt_count INTEGER DEFAULT 0,
                total_correct_count INTEGER DEFAULT 0,
                streak_correct_count INTEGER DEFAULT 0,
                finished BOOLEAN DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (subject_id) REFERENCES subjects(id) ON DELETE CASCADE,
                FOREIGN KEY (topic_id) REFERENCES topics(id) ON DELETE SET NULL,
                UNIQUE(learner_id, subject_id, text)
            )
        """)

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS session_words (
                session_id INTEGER NOT NULL,
                word_id INTEGER NOT NULL,
                PRIMARY KEY (session_id, word_id),
                FOREIGN KEY (session_id) REFERENCES practice_sessions(id) ON DELETE CASCADE,
                FOREIGN KEY (word_id) REFERENCES words(id) ON DELETE CASCADE
            )
        """)

    def _create_indexes(self):
        """Create database indexes for performance."""
        indexes = [
            "CREATE INDEX IF NOT EXISTS idx_sections_subject ON sections(subject_id)",
            "CREATE INDEX IF NOT EXISTS idx_topics_section ON topics(section_id)",
            "CREATE INDEX IF NOT EXISTS idx_subtopics_topic ON subtopics(topic_id)",
            "CREATE INDEX IF NOT EXISTS idx_sessions_learner_topic "
            "ON practice_sessions(learner_id, topic_id)",
            "CREATE INDEX IF NOT EXISTS idx_sessions_parent ON practice_sessions(parent_session_id)",
            "CREATE INDEX IF NOT EXISTS idx_observations_learner_subtopic "
            "ON mastery_observations(learner_id, subtopic_id, recorded_at)",
            "CREATE INDEX IF NOT EXISTS idx_words_learner_subject ON words(learner_id, subject_id)",
        ]
        for statement in indexes:
            self.conn.execute(statement)

    # ==================== Row conversion ====================

    @staticmethod
    def _row_to_section(row) -> Section:
        return Section(
            id=row["id"],
            subject_id=row["subject_id"],
            name=row["name"],
            blocked=bool(row["blocked"]),
            position=row["position"],
        )

    @staticmethod
    def _row_to_topic(row) -> Topic:
        return Topic(
            id=row["id"],
            section_id=row["section_id"],
            subject_id=row["subject_id"],
            name=row["name"],
            blocked=bool(row["blocked"]),
            position=row["position"],
        )

    @staticmethod
    def _row_to_subtopic(row) -> Subtopic:
        return Subtopic(
            id=row["id"],
            topic_id=row["topic_id"],
            section_id=row["section_id"],
            subject_id=row["subject_id"],
            name=row["name"],
            importance=row["importance"],
            blocked=bool(row["blocked"]),
            detail_level=DetailLevel.from_string(row["detail_level"] or "MANDATORY"),
        )

    @staticmethod
    def _row_to_session(row) -> PracticeSession:
        return PracticeSession(
            id=row["id"],
            learner_id=row["learner_id"],
            topic_id=row["topic_id"],
            order=row["order_index"],
            percent=row["percent"],
            percent_audio=row["percent_audio"],
            percent_words=row["percent_words"],
            finished=bool(row["finished"]),
            answered=bool(row["answered"]),
            parent_session_id=row["parent_session_id"],
            correct_option_index=row["correct_option_index"],
            user_option_index=row["user_option_index"],
            created_at=_from_db_time(row["created_at"]),
            updated_at=_from_db_time(row["updated_at"]),
        )

    @staticmethod
    def _row_to_word(row) -> VocabularyItem:
        return VocabularyItem(
            id=row["id"],
            learner_id=row["learner_id"],
            subject_id=row["subject_id"],
            text=row["text"],
            frequency=row["frequency"],
            total_attempt_count=row["total_attempt_count"],
            total_correct_count=row["total_correct_count"],
            streak_correct_count=row["streak_correct_count"],
            finished=bool(row["finished"]),
            topic_id=row["topic_id"],
            session_count=row["session_count"],
        )

    # ==================== Curriculum ====================

    def add_subject(self, name: str) -> int:
        cursor = self.conn.execute("INSERT INTO subjects (name) VALUES (?)", (name,))
        return cursor.lastrowid

    def get_subject(self, subject_id: int) -> Optional[Subject]:
        row = self.conn.execute(
            "SELECT id, name FROM subjects WHERE id = ?", (subject_id,)
        ).fetchone()
        return Subject(id=row["id"], name=row["name"]) if row else None

    def get_subject_by_name(self, name: str) -> Optional[Subject]:
        row = self.conn.execute("SELECT id, name FROM subjects WHERE name = ?", (name,)).fetchone()
        return Subject(id=row["id"], name=row["name"]) if row else None

    def get_all_subjects(self) -> List[Subject]:
        rows = self.conn.execute("SELECT id, name FROM subjects ORDER BY id").fetchall()
        return [Subject(id=row["id"], name=row["name"]) for row in rows]

    def add_section(
        self, subject_id: int, name: str, position: int = 0, blocked: bool = False
    ) -> int:
        cursor = self.conn.execute(
            "INSERT INTO sections (subject_id, name, position, blocked) VALUES (?, ?, ?, ?)",
            (subject_id, name, position, blocked),
        )
        return cursor.lastrowid

    def add_topic(self, section_id: int, name: str, position: int = 0, blocked: bool = False) -> int:
        cursor = self.conn.execute(
            """
            INSERT INTO topics (section_id, subject_id, name, position, blocked)
            SELECT id, subject_id, ?, ?, ? FROM sections WHERE id = ?
        """,
            (name, position, blocked, section_id),
        )
        if cursor.rowcount == 0:
            raise sqlite3.IntegrityError(f"Section {section_id} does not exist")
        return cursor.lastrowid

    def add_subtopic(
        self,
        topic_id: int,
        name: str,
        importance: int = 0,
        detail_level: DetailLevel = DetailLevel.MANDATORY,
        blocked: bool = False,
    ) -> int:
        cursor = self.conn.execute(
            """
            INSERT INTO subtopics
                (topic_id, section_id, subject_id, name, importance, detail_level, blocked)
            SELECT id, section_id, subject_id, ?, ?, ?, ? FROM topics WHERE id = ?
        """,
            (name, importance, detail_level.value, blocked, topic_id),
        )
        if cursor.rowcount == 0:
            raise sqlite3.IntegrityError(f"Topic {topic_id} does not exist")
        return cursor.lastrowid

    def get_section(self, section_id: int) -> Optional[Section]:
        row = self.conn.execute("SELECT * FROM sections WHERE id = ?", (section_id,)).fetchone()
        return self._row_to_section(row) if row else None

    def get_topic(self, topic_id: int) -> Optional[Topic]:
        row = self.conn.execute("SELECT * FROM topics WHERE id = ?", (topic_id,)).fetchone()
        return self._row_to_topic(row) if row else None

    def get_subtopic(self, subtopic_id: int) -> Optional[Subtopic]:
        row = self.conn.execute("SELECT * FROM subtopics WHERE id = ?", (subtopic_id,)).fetchone()
        return self._row_to_subtopic(row) if row else None

    def get_sections(self, subject_id: int) -> List[Section]:
        rows = self.conn.execute(
            "SELECT * FROM sections WHERE subject_id = ? ORDER BY position, id", (subject_id,)
        ).fetchall()
        return [self._row_to_section(row) for row in rows]

    def get_topics(self, section_id: int) -> List[Topic]:
        rows = self.conn.execute(
            "SELECT * FROM topics WHERE section_id = ? ORDER BY position, id", (section_id,)
        ).fetchall()
        return [self._row_to_topic(row) for row in rows]

    def get_topics_by_subject(self, subject_id: int) -> List[Topic]:
        rows = self.conn.execute(
            """
            SELECT t.* FROM topics t
            JOIN sections s ON s.id = t.section_id
            WHERE t.subject_id = ?
            ORDER BY s.position, s.id, t.position, t.id
        """,
            (subject_id,),
        ).fetchall()
        return [self._row_to_topic(row) for row in rows]

    def get_subtopics(self, topic_id: int) -> List[Subtopic]:
        rows = self.conn.execute(
            "SELECT * FROM subtopics WHERE topic_id = ? ORDER BY id", (topic_id,)
        ).fetchall()
        return [self._row_to_subtopic(row) for row in rows]

    def get_subtopics_by_subject(self, subject_id: int) -> List[Subtopic]:
        rows = self.conn.execute(
            "SELECT * FROM subtopics WHERE subject_id = ? ORDER BY topic_id, id", (subject_id,)
        ).fetchall()
        return [self._row_to_subtopic(row) for row in rows]

    def set_blocked(self, kind: UnitKind, unit_id: int, blocked: bool) -> None:
        table = {
            UnitKind.SECTION: "sections",
            UnitKind.TOPIC: "topics",
            UnitKind.SUBTOPIC: "subtopics",
        }[kind]
        self.conn.execute(f"UPDATE {table} SET blocked = ? WHERE id = ?", (blocked, unit_id))

    def set_descendants_blocked(self, kind: UnitKind, unit_id: int, blocked: bool) -> int:
        """Overwrite the blocked flag of every topic/subtopic below a unit."""
        touched = 0
        if kind == UnitKind.SECTION:
            touched += self.conn.execute(
                "UPDATE topics SET blocked = ? WHERE section_id = ?", (blocked, unit_id)
            ).rowcount
            touched += self.conn.execute(
                "UPDATE subtopics SET blocked = ? WHERE section_id = ?", (blocked, unit_id)
            ).rowcount
        elif kind == UnitKind.TOPIC:
            touched += self.conn.execute(
                "UPDATE subtopics SET blocked = ? WHERE topic_id = ?", (blocked, unit_id)
            ).rowcount
        return touched

    # ==================== Learner state ====================

    def get_learner_preference(
        self, learner_id: str, subject_id: int
    ) -> Optional[LearnerPreference]:
        row = self.conn.execute(
            "SELECT * FROM learner_subjects WHERE learner_id = ? AND subject_id = ?",
            (learner_id, subject_id),
        ).fetchone()
        if not row:
            return None
        return LearnerPreference(
            learner_id=row["learner_id"],
            subject_id=row["subject_id"],
            threshold=row["threshold"],
            detail_level=DetailLevel.from_string(row["detail_level"] or "MANDATORY"),
        )

    def save_learner_preference(self, preference: LearnerPreference) -> None:
        self.conn.execute(
            """
            INSERT INTO learner_subjects (learner_id, subject_id, threshold, detail_level)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(learner_id, subject_id) DO UPDATE SET
                threshold = excluded.threshold,
                detail_level = excluded.detail_level
        """,
            (
                preference.learner_id,
                preference.subject_id,
                preference.threshold,
                preference.detail_level.value,
            ),
        )

    def get_observations(
        self,
        learner_id: str,
        subtopic_ids: Iterable[int],
        until: Optional[datetime] = None,
    ) -> Dict[int, List[MasteryObservation]]:
        """Observations of finished sessions, grouped by subtopic, oldest first."""
        ids = list(dict.fromkeys(subtopic_ids))
        result: Dict[int, List[MasteryObservation]] = {sid: [] for sid in ids}
        if not ids:
            return result

        placeholders = ",".join("?" * len(ids))
        query = f"""
            SELECT o.id, o.subtopic_id, o.session_id, o.percent, o.recorded_at
            FROM mastery_observations o
            JOIN practice_sessions s ON s.id = o.session_id
            WHERE o.learner_id = ? AND s.finished = 1 AND o.subtopic_id IN ({placeholders})
        """
        params: List[Any] = [learner_id, *ids]
        if until is not None:
            query += " AND o.recorded_at <= ?"
            params.append(_to_db_time(until))
        query += " ORDER BY o.recorded_at, o.id"

        for row in self.conn.execute(query, params).fetchall():
            result[row["subtopic_id"]].append(
                MasteryObservation(
                    subtopic_id=row["subtopic_id"],
                    session_id=row["session_id"],
                    percent=row["percent"],
                    recorded_at=_from_db_time(row["recorded_at"]),
                    sequence=row["id"],
                )
            )
        return result

    def add_observation(
        self,
        learner_id: str,
        subtopic_id: int,
        session_id: int,
        percent: float,
        recorded_at: datetime,
    ) -> int:
        cursor = self.conn.execute(
            """
            INSERT INTO mastery_observations
                (learner_id, subtopic_id, session_id, percent, recorded_at)
            VALUES (?, ?, ?, ?, ?)
        """,
            (learner_id, subtopic_id, session_id, percent, _to_db_time(recorded_at)),
        )
        return cursor.lastrowid

    def get_topic_percent(self, learner_id: str, topic_id: int) -> int:
        row = self.conn.execute(
            "SELECT percent FROM learner_topics WHERE learner_id = ? AND topic_id = ?",
            (learner_id, topic_id),
        ).fetchone()
        return row["percent"] if row else 0

    def set_topic_percent(self, learner_id: str, topic_id: int, percent: int) -> None:
        self.conn.execute(
            """
            INSERT INTO learner_topics (learner_id, topic_id, percent, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(learner_id, topic_id) DO UPDATE SET
                percent = excluded.percent,
                updated_at = excluded.updated_at
        """,
            (learner_id, topic_id, percent, _to_db_time(datetime.now(timezone.utc))),
        )

    # ==================== Practice sessions ====================

    def get_session(self, session_id: int) -> Optional[PracticeSession]:
        row = self.conn.execute(
            "SELECT * FROM practice_sessions WHERE id = ?", (session_id,)
        ).fetchone()
        return self._row_to_session(row) if row else None

    def get_sessions(
        self, learner_id: str, topic_id: int, top_level_only: bool = True
    ) -> List[PracticeSession]:
        query = "SELECT * FROM practice_sessions WHERE learner_id = ? AND topic_id = ?"
        if top_level_only:
            query += " AND parent_session_id IS NULL"
        query += " ORDER BY order_index, id"
        rows = self.conn.execute(query, (learner_id, topic_id)).fetchall()
        return [self._row_to_session(row) for row in rows]

    def get_child_sessions(self, parent_session_id: int) -> List[PracticeSession]:
        rows = self.conn.execute(
            """
            SELECT * FROM practice_sessions
            WHERE parent_session_id = ?
            ORDER BY order_index, id
        """,
            (parent_session_id,),
        ).fetchall()
        return [self._row_to_session(row) for row in rows]

    def next_session_order(self, learner_id: str, topic_id: int) -> int:
        row = self.conn.execute(
            """
            SELECT MAX(order_index) AS last_order FROM practice_sessions
            WHERE learner_id = ? AND topic_id = ?
        """,
            (learner_id, topic_id),
        ).fetchone()
        return (row["last_order"] or 0) + 1

    def add_session(
        self,
        learner_id: str,
        topic_id: int,
        order: int,
        created_at: datetime,
        parent_session_id: Optional[int] = None,
        correct_option_index: Optional[int] = None,
    ) -> int:
        stamp = _to_db_time(created_at)
        cursor = self.conn.execute(
            """
            INSERT INTO practice_sessions
                (learner_id, topic_id, order_index, parent_session_id,
                 correct_option_index, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
            (learner_id, topic_id, order, parent_session_id, correct_option_index, stamp, stamp),
        )
        return cursor.lastrowid

    def update_session(self, session_id: int, updated_at: datetime, **fields) -> None:
        unknown = set(fields) - SESSION_UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update session fields: {', '.join(sorted(unknown))}")

        assignments = [f"{name} = ?" for name in fields] + ["updated_at = ?"]
        params = list(fields.values()) + [_to_db_time(updated_at), session_id]
        self.conn.execute(
            f"UPDATE practice_sessions SET {', '.join(assignments)} WHERE id = ?", params
        )

    def delete_session(self, session_id: int) -> None:
        # Parts, links and observations go with it through ON DELETE CASCADE
        self.conn.execute("DELETE FROM practice_sessions WHERE id = ?", (session_id,))

    def link_session_subtopics(self, session_id: int, subtopic_ids: Iterable[int]) -> None:
        self.conn.executemany(
            "INSERT OR IGNORE INTO session_subtopics (session_id, subtopic_id) VALUES (?, ?)",
            [(session_id, sid) for sid in subtopic_ids],
        )

    def get_session_subtopics(self, session_id: int) -> List[Subtopic]:
        rows = self.conn.execute(
            """
            SELECT st.* FROM subtopics st
            JOIN session_subtopics ss ON ss.subtopic_id = st.id
            WHERE ss.session_id = ?
            ORDER BY st.id
        """,
            (session_id,),
        ).fetchall()
        return [self._row_to_subtopic(row) for row in rows]

    def count_finished_sessions(
        self,
        learner_id: str,
        subject_id: int,
        start: datetime,
        end: datetime,
        min_percent: Optional[int] = None,
    ) -> int:
        query = """
            SELECT COUNT(*) AS total FROM practice_sessions s
            JOIN topics t ON t.id = s.topic_id
            WHERE s.learner_id = ? AND t.subject_id = ?
              AND s.finished = 1 AND s.parent_session_id IS NULL
              AND s.updated_at >= ? AND s.updated_at <= ?
        """
        params: List[Any] = [learner_id, subject_id, _to_db_time(start), _to_db_time(end)]
        if min_percent is not None:
            query += " AND s.percent >= ?"
            params.append(min_percent)
        return self.conn.execute(query, params).fetchone()["total"]

    # ==================== Vocabulary ====================

    _WORD_SELECT = """
        SELECT w.*,
               (SELECT COUNT(*) FROM session_words sw WHERE sw.word_id = w.id) AS session_count
        FROM words w
    """

    def get_word(self, word_id: int) -> Optional[VocabularyItem]:
        row = self.conn.execute(self._WORD_SELECT + " WHERE w.id = ?", (word_id,)).fetchone()
        return self._row_to_word(row) if row else None

    def find_word(self, learner_id: str, subject_id: int, text: str) -> Optional[VocabularyItem]:
        row = self.conn.execute(
            self._WORD_SELECT + " WHERE w.learner_id = ? AND w.subject_id = ? AND w.text = ?",
            (learner_id, subject_id, text),
        ).fetchone()
        return self._row_to_word(row) if row else None

    def get_words(
        self, learner_id: str, subject_id: int, topic_id: Optional[int] = None
    ) -> List[VocabularyItem]:
        query = self._WORD_SELECT + " WHERE w.learner_id = ? AND w.subject_id = ?"
        params: List[Any] = [learner_id, subject_id]
        if topic_id is not None:
            query += " AND w.topic_id = ?"
            params.append(topic_id)
        query += " ORDER BY w.id"
        return [self._row_to_word(row) for row in self.conn.execute(query, params).fetchall()]

    def add_word(
        self,
        learner_id: str,
        subject_id: int,
        text: str,
        frequency: int,
        topic_id: Optional[int] = None,
    ) -> int:
        cursor = self.conn.execute(
            """
            INSERT INTO words (learner_id, subject_id, topic_id, text, frequency)
            VALUES (?, ?, ?, ?, ?)
        """,
            (learner_id, subject_id, topic_id, text, frequency),
        )
        return cursor.lastrowid

    def update_word_counters(
        self,
        word_id: int,
        total_attempt_count: int,
        total_correct_count: int,
        streak_correct_count: int,
        finished: bool,
    ) -> None:
        self.conn.execute(
            """
            UPDATE words
            SET total_attempt_count = ?, total_correct_count = ?,
                streak_correct_count = ?, finished = ?
            WHERE id = ?
        """,
            (total_attempt_count, total_correct_count, streak_correct_count, finished, word_id),
        )

    def link_session_words(self, session_id: int, word_ids: Iterable[int]) -> None:
        self.conn.executemany(
            "INSERT OR IGNORE INTO session_words (session_id, word_id) VALUES (?, ?)",
            [(session_id, wid) for wid in word_ids],
        )

    def get_session_words(self, session_id: int) -> List[VocabularyItem]:
        rows = self.conn.execute(
            self._WORD_SELECT
            + """
            JOIN session_words link ON link.word_id = w.id
            WHERE link.session_id = ?
            ORDER BY w.id
        """,
            (session_id,),
        ).fetchall()
        return [self._row_to_word(row) for row in rows]

    def delete_word(self, word_id: int) -> None:
        self.conn.execute("DELETE FROM words WHERE id = ?", (word_id,))

    def delete_topic_words(self, learner_id: str, topic_id: int) -> int:
        cursor = self.conn.execute(
            "DELETE FROM words WHERE learner_id = ? AND topic_id = ?", (learner_id, topic_id)
        )
        return cursor.rowcount
