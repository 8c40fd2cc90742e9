"""
Tests for ProgressAnalytics: week windows, deltas between weeks,
closed-unit counts, solved sessions and the completion forecast.
"""

import sys
import os
from datetime import date, datetime, timedelta, timezone

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from conftest import LEARNER, NOW, score
from core.analytics import ProgressAnalytics
from core.dto.progress import DeltaStatus, UnitDelta
from core.errors import NotFound

LAST_WEEK = NOW - timedelta(days=7)


# ============================================================================
# Week windows
# ============================================================================


class TestWeekBounds:
    def test_current_week_of_a_wednesday(self):
        window = ProgressAnalytics.week_bounds(NOW)
        assert window.start == datetime(2026, 3, 9, tzinfo=timezone.utc)
        assert window.end == datetime(2026, 3, 15, 23, 59, 59, 999999, tzinfo=timezone.utc)
        assert window.offset == 0

    def test_previous_week(self):
        window = ProgressAnalytics.week_bounds(NOW, -1)
        assert window.start == datetime(2026, 3, 2, tzinfo=timezone.utc)
        assert window.end.date() == date(2026, 3, 8)

    def test_monday_midnight_belongs_to_its_own_week(self):
        monday = datetime(2026, 3, 9, tzinfo=timezone.utc)
        assert ProgressAnalytics.week_bounds(monday).start == monday

    def test_future_offset_is_current_week(self):
        window = ProgressAnalytics.week_bounds(NOW, 2)
        assert window.offset == 0
        assert window.start == datetime(2026, 3, 9, tzinfo=timezone.utc)

    def test_naive_time_is_utc(self):
        window = ProgressAnalytics.week_bounds(datetime(2026, 3, 11, 12, 0))
        assert window.start.tzinfo == timezone.utc


# ============================================================================
# Pure helpers
# ============================================================================


def _delta(value):
    return UnitDelta(
        unit_id=1,
        name="x",
        percent=0,
        delta=value,
        delta_status=ProgressAnalytics.delta_status(value),
    )


def test_zero_delta_counts_as_up():
    assert ProgressAnalytics.delta_status(0) == DeltaStatus.UP
    assert ProgressAnalytics.delta_status(-1) == DeltaStatus.DOWN


def test_mean_ignores_units_that_did_not_move():
    assert ProgressAnalytics.mean_nonzero([0, 10, 0, 30]) == 20
    assert ProgressAnalytics.mean_nonzero([0, 0]) == 0


def test_combine_statuses():
    assert ProgressAnalytics.combine_statuses([_delta(5), _delta(0)]) == DeltaStatus.UP
    assert ProgressAnalytics.combine_statuses([_delta(-5), _delta(-1)]) == DeltaStatus.DOWN
    assert ProgressAnalytics.combine_statuses([_delta(5), _delta(-1)]) == DeltaStatus.MIXED


# ============================================================================
# Weekly report
# ============================================================================


@pytest.fixture
def two_weeks(service, curriculum):
    """Present tense scored last week, past tense this week, both at 50."""
    score(service, curriculum["verbs"], [["present tense", 50]], now=LAST_WEEK)
    score(service, curriculum["verbs"], [["past tense", 50]], now=NOW)
    return curriculum


class TestWeeklyReport:
    def test_deltas_against_previous_week(self, db, two_weeks):
        report = ProgressAnalytics(db).weekly_report(LEARNER, two_weeks["subject"], now=NOW)

        grammar, reading = report.sections
        verbs, nouns = grammar.children
        assert [c.delta for c in verbs.children] == [0, 50]
        assert verbs.delta == 50
        assert verbs.delta_status == DeltaStatus.UP
        assert nouns.delta == 0
        assert grammar.delta == 50
        assert grammar.delta_status == DeltaStatus.UP
        assert reading.delta == 0
        print("✓ test_deltas_against_previous_week passed")

    def test_closed_units_and_solved_sessions(self, db, two_weeks):
        report = ProgressAnalytics(db).weekly_report(LEARNER, two_weeks["subject"], now=NOW)

        assert report.closed_subtopics == 1
        assert report.closed_topics == 1
        assert report.solved_sessions == 1
        assert report.solved_sessions_completed == 1

    def test_forecast_extrapolates_gain(self, db, two_weeks):
        """Target 7 of 14 importance, 4 gained over 9 days -> 15.75 days left."""
        report = ProgressAnalytics(db).weekly_report(LEARNER, two_weeks["subject"], now=NOW)

        assert report.forecast == date(2026, 3, 27)
        assert report.forecast_label == "27.03.2026"

    def test_previous_week_has_no_forecast(self, db, two_weeks):
        report = ProgressAnalytics(db).weekly_report(
            LEARNER, two_weeks["subject"], week_offset=-1, now=NOW
        )

        assert report.window.offset == -1
        assert report.solved_sessions == 1
        assert report.closed_subtopics == 1
        assert report.forecast is None
        assert report.forecast_label == "Infinity"

    def test_no_activity(self, db, curriculum):
        report = ProgressAnalytics(db).weekly_report(LEARNER, curriculum["subject"], now=NOW)

        assert report.solved_sessions == 0
        assert report.closed_subtopics == 0
        assert report.forecast is None
        assert all(s.delta_status == DeltaStatus.UP for s in report.sections)

    def test_mixed_section(self, db, service, curriculum):
        score(service, curriculum["verbs"], [["present tense", 100]], now=LAST_WEEK)
        score(service, curriculum["verbs"], [["present tense", 0]], now=NOW)
        score(service, curriculum["nouns"], [["gender", 60]], now=NOW)

        report = ProgressAnalytics(db).weekly_report(LEARNER, curriculum["subject"], now=NOW)

        grammar = report.sections[0]
        verbs, nouns = grammar.children
        assert verbs.delta < 0
        assert verbs.delta_status == DeltaStatus.DOWN
        assert nouns.delta_status == DeltaStatus.UP
        assert grammar.delta_status == DeltaStatus.MIXED
        assert report.solved_sessions == 2
        assert report.solved_sessions_completed == 1

    def test_topic_without_subtopics_uses_session_percents(self, db, service, curriculum):
        session = service.create_session(LEARNER, curriculum["stories"], now=NOW)
        service.record_session_percent(LEARNER, session.id, 70, now=NOW)

        report = ProgressAnalytics(db).weekly_report(LEARNER, curriculum["subject"], now=NOW)

        reading = report.sections[1]
        assert reading.children[0].delta == 70
        assert reading.children[0].children == []
        assert reading.delta == 70

    def test_threshold_from_preference(self, db, service, two_weeks):
        service.set_preference(LEARNER, two_weeks["subject"], threshold=60)

        report = ProgressAnalytics(db).weekly_report(LEARNER, two_weeks["subject"], now=NOW)

        assert report.threshold == 60
        assert report.closed_subtopics == 0
        assert report.solved_sessions_completed == 0

    def test_unknown_subject(self, db):
        with pytest.raises(NotFound):
            ProgressAnalytics(db).weekly_report(LEARNER, 999, now=NOW)
