#!/usr/bin/env python3
"""
StudyTrack - learner progress tracking.
CLI interface for seeding curricula, inspecting progress and choosing what to practice next.
"""

import json
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from config import Config
from core.dto.curriculum import DetailLevel, Status, UnitKind
from core.errors import ProgressError
from core.analytics import ProgressAnalytics
from core.mastery_aggregator import HierarchyAggregator
from core.service import ProgressService
from storage.curriculum_loader import CurriculumLoader
from storage.database import Database

console = Console()

STATUS_STYLES = {
    Status.BLOCKED: "dim",
    Status.STARTED: "white",
    Status.PROGRESS: "yellow",
    Status.COMPLETED: "green",
}


def _status(status: Status) -> str:
    style = STATUS_STYLES[status]
    return f"[{style}]{status.value}[/{style}]"


def _open_db(ctx) -> Database:
    db = Database(ctx.obj["db_path"])
    db.connect()
    db.initialize()
    return db


def _fail(e: Exception):
    console.print(f"\n[bold red]Error:[/bold red] {e}\n")
    raise click.Abort()


@click.group()
@click.version_option(version="0.1.0", prog_name="StudyTrack")
@click.option(
    "--db",
    "db_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="SQLite database file (defaults to STUDYTRACK_DB_PATH)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, db_path, verbose):
    """StudyTrack - mastery tracking and adaptive practice selection."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else Config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db_path or Config.DB_PATH


@cli.command()
@click.pass_context
def init(ctx):
    """Initialize the StudyTrack database."""
    console.print("\n[bold cyan]Initializing StudyTrack...[/bold cyan]\n")

    try:
        if ctx.obj["db_path"] == Config.DB_PATH:
            Config.ensure_dirs()
        with Database(ctx.obj["db_path"]) as db:
            db.initialize()

        console.print("[bold green]✨ StudyTrack initialized successfully![/bold green]\n")
        console.print(f"Database: {ctx.obj['db_path']}\n")
        console.print("Next steps:")
        console.print("  • studytrack seed <FILE.yaml> - Load a curriculum")
        console.print("  • studytrack --help - See all commands\n")

    except OSError as e:
        _fail(e)


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--learner", "-l", default=None, help="Learner owning the seeded words")
@click.pass_context
def seed(ctx, file, learner):
    """Load a curriculum (and optional vocabulary) from a YAML file."""
    try:
        with _open_db(ctx) as db:
            stats = CurriculumLoader(db, ProgressService.from_config(db)).load_file(file, learner)

        console.print(
            f"\n[green]✓[/green] Loaded subject #{stats['subject_id']}: "
            f"{stats['sections']} sections, {stats['topics']} topics, "
            f"{stats['subtopics']} subtopics, {stats['words']} words\n"
        )
    except ProgressError as e:
        _fail(e)


@cli.command()
@click.pass_context
def subjects(ctx):
    """List all subjects."""
    with _open_db(ctx) as db:
        all_subjects = db.get_all_subjects()

    if not all_subjects:
        console.print("\n[yellow]No subjects found. Run 'studytrack seed' first.[/yellow]\n")
        return

    table = Table(title="\n📚 Subjects")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    for subject in all_subjects:
        table.add_row(str(subject.id), subject.name)
    console.print(table)


@cli.command()
@click.option("--learner", "-l", required=True, help="Learner identifier")
@click.option("--subject", "-s", "subject_id", required=True, type=int, help="Subject ID")
@click.pass_context
def progress(ctx, learner, subject_id):
    """Show a learner's progress tree for a subject."""
    try:
        with _open_db(ctx) as db:
            service = ProgressService.from_config(db)
            result = service.subject_progress(learner, subject_id)
            words = service.words_summary(learner, subject_id)

        table = Table(title=f"\n📊 {result.subject.name} - {learner} (threshold {result.threshold}%)")
        table.add_column("Unit", style="white")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Percent", justify="right")
        table.add_column("Status")

        for section in result.sections:
            table.add_row(
                f"[bold]{section.section.name}[/bold]",
                str(section.section.id),
                f"{section.percent}%",
                _status(section.status),
            )
            for topic in section.topics:
                table.add_row(
                    f"  {topic.topic.name}",
                    str(topic.topic.id),
                    f"{topic.percent}%",
                    _status(topic.status),
                )
                for sub in topic.subtopics:
                    table.add_row(
                        f"    [dim]{sub.subtopic.name}[/dim]",
                        str(sub.subtopic.id),
                        f"{sub.percent}%",
                        _status(sub.status),
                    )

        console.print(table)
        console.print(f"\nOverall: {result.percent}% {_status(result.status)}")
        shares = ", ".join(f"{key} {value}%" for key, value in result.breakdown.items())
        console.print(f"Breakdown: {shares}")
        console.print(f"Vocabulary: {words.total} words, {words.percent}% {_status(words.status)}\n")

    except ProgressError as e:
        _fail(e)


@cli.command()
@click.option("--subject", "-s", "subject_id", required=True, type=int, help="Subject ID")
@click.option("--section", "section_id", type=int, default=None, help="Section ID")
@click.option("--topic", "topic_id", type=int, default=None, help="Topic ID")
@click.option("--subtopic", "subtopic_id", type=int, default=None, help="Subtopic ID")
@click.pass_context
def block(ctx, subject_id, section_id, topic_id, subtopic_id):
    """Toggle the block flag of a unit and everything below it."""
    targets = [
        (UnitKind.SECTION, section_id),
        (UnitKind.TOPIC, topic_id),
        (UnitKind.SUBTOPIC, subtopic_id),
    ]
    chosen = [(kind, unit_id) for kind, unit_id in targets if unit_id is not None]
    if len(chosen) != 1:
        raise click.UsageError("Pass exactly one of --section, --topic or --subtopic")
    kind, unit_id = chosen[0]

    try:
        with _open_db(ctx) as db:
            blocked = HierarchyAggregator(db).toggle_block(subject_id, kind, unit_id)

        state = "blocked" if blocked else "unblocked"
        console.print(f"\n[green]✓[/green] {kind.value.title()} {unit_id} {state}\n")
    except ProgressError as e:
        _fail(e)


@cli.command()
@click.option("--learner", "-l", required=True, help="Learner identifier")
@click.option("--topic", "-t", "topic_id", required=True, type=int, help="Topic ID")
@click.option("--session", "session_id", type=int, default=None, help="Only subtopics of this session")
@click.option("--json", "as_json", is_flag=True, help="Print the generation payload as JSON")
@click.pass_context
def weak(ctx, learner, topic_id, session_id, as_json):
    """Show the subtopics to emphasize in the next exercise."""
    try:
        with _open_db(ctx) as db:
            selection = ProgressService.from_config(db).select_subtopics(
                learner, topic_id, session_id
            )
    except ProgressError as e:
        _fail(e)

    if as_json:
        click.echo(json.dumps([w.as_payload() for w in selection], ensure_ascii=False))
        return

    if not selection:
        console.print("\n[yellow]No subtopic-level guidance available for this topic.[/yellow]\n")
        return

    table = Table(title="\n🎯 Subtopics to practice")
    table.add_column("Subtopic", style="white")
    table.add_column("Percent", justify="right")
    table.add_column("Importance", justify="right", style="magenta")
    for weight in selection:
        table.add_row(weight.name, f"{weight.percent}%", str(weight.importance))
    console.print(table)


@cli.command()
@click.option("--learner", "-l", required=True, help="Learner identifier")
@click.option("--subject", "-s", "subject_id", required=True, type=int, help="Subject ID")
@click.option("--topic", "-t", "topic_id", type=int, default=None, help="Topic ID")
@click.option("--for-generation", is_flag=True, help="Only words eligible for a new exercise")
@click.option("--limit", type=int, default=None, help="Maximum number of words")
@click.pass_context
def words(ctx, learner, subject_id, topic_id, for_generation, limit):
    """List a learner's words in review or generation order."""
    try:
        with _open_db(ctx) as db:
            service = ProgressService.from_config(db)
            if for_generation:
                texts = service.generation_words(learner, subject_id, topic_id, limit)
            else:
                items = service.review_words(learner, subject_id, topic_id)
    except ProgressError as e:
        _fail(e)

    if for_generation:
        console.print("\n" + (", ".join(texts) if texts else "[yellow]No words.[/yellow]") + "\n")
        return

    table = Table(title="\n🔤 Words")
    table.add_column("Word", style="white")
    table.add_column("Frequency", justify="right")
    table.add_column("Correct / Attempts", justify="right")
    table.add_column("Streak", justify="right")
    for item in items[:limit] if limit else items:
        table.add_row(
            item.text,
            str(item.frequency),
            f"{item.total_correct_count}/{item.total_attempt_count}",
            str(item.streak_correct_count),
        )
    console.print(table)


@cli.command()
@click.option("--learner", "-l", required=True, help="Learner identifier")
@click.option("--topic", "-t", "topic_id", required=True, type=int, help="Topic ID")
@click.option("--subtopic", "subtopics", multiple=True, help="Subtopic name covered (repeatable)")
@click.option("--word", "word_ids", type=int, multiple=True, help="Word ID used (repeatable)")
@click.pass_context
def practice(ctx, learner, topic_id, subtopics, word_ids):
    """Create a practice session for a topic."""
    try:
        with _open_db(ctx) as db:
            session = ProgressService.from_config(db).create_session(
                learner, topic_id, list(subtopics), word_ids=list(word_ids)
            )
        console.print(f"\n[green]✓[/green] Session #{session.id} created (order {session.order})\n")
    except ProgressError as e:
        _fail(e)


def _parse_result(ctx, param, values):
    results = []
    for value in values:
        name, sep, percent = value.rpartition("=")
        if not sep or not name:
            raise click.BadParameter(f"expected NAME=PERCENT, got '{value}'")
        try:
            results.append([name, float(percent)])
        except ValueError:
            raise click.BadParameter(f"'{percent}' is not a number") from None
    return results


@cli.command()
@click.option("--learner", "-l", required=True, help="Learner identifier")
@click.option("--session", "session_id", required=True, type=int, help="Session ID")
@click.option(
    "--result",
    "results",
    multiple=True,
    callback=_parse_result,
    help="Subtopic result as NAME=PERCENT (repeatable)",
)
@click.option("--wrong", "wrong_words", multiple=True, help="Word the learner got wrong (repeatable)")
@click.option("--words", "word_round", is_flag=True, help="Record a word round for the session's words")
@click.pass_context
def score(ctx, learner, session_id, results, wrong_words, word_round):
    """Record the results of a practice session.

    The session's words are only counted when --words or --wrong is given.
    """
    word_round = word_round or bool(wrong_words)
    if not results and not word_round:
        raise click.UsageError("Nothing to record: pass --result, --words or --wrong")
    try:
        with _open_db(ctx) as db:
            service = ProgressService.from_config(db)
            with db.transaction():
                if results:
                    session = service.record_subtopic_results(learner, session_id, results)
                    console.print(f"\n[green]✓[/green] Session scored: {session.percent}%")
                if word_round:
                    updated = service.record_word_round(learner, session_id, wrong_words)
                    correct = sum(1 for w in updated if w.finished)
                    console.print(f"[green]✓[/green] Words: {correct}/{len(updated)} correct")
        console.print()
    except ProgressError as e:
        _fail(e)


@cli.command()
@click.option("--learner", "-l", required=True, help="Learner identifier")
@click.option("--subject", "-s", "subject_id", required=True, type=int, help="Subject ID")
@click.option("--week-offset", type=int, default=0, help="0 = this week, -1 = last week, ...")
@click.pass_context
def stats(ctx, learner, subject_id, week_offset):
    """Show weekly statistics and a completion forecast."""
    try:
        with _open_db(ctx) as db:
            service = ProgressService.from_config(db)
            report = ProgressAnalytics(db, service.aggregator).weekly_report(
                learner, subject_id, week_offset
            )
    except ProgressError as e:
        _fail(e)

    start = report.window.start.strftime("%d.%m")
    end = report.window.end.strftime("%d.%m")
    table = Table(title=f"\n📈 Week {start} - {end}")
    table.add_column("Section", style="white")
    table.add_column("Percent", justify="right")
    table.add_column("Delta", justify="right")
    for section in report.sections:
        color = "green" if section.delta >= 0 else "red"
        table.add_row(
            section.name, f"{section.percent}%", f"[{color}]{section.delta:+.1f}[/{color}]"
        )
    console.print(table)

    console.print(
        f"\nSessions solved: {report.solved_sessions} "
        f"({report.solved_sessions_completed} at or above {report.threshold}%)"
    )
    console.print(f"Subtopics closed: {report.closed_subtopics}")
    console.print(f"Topics closed: {report.closed_topics}")
    if report.window.offset == 0:
        console.print(f"Forecast: {report.forecast_label}")
    console.print()


@cli.command()
@click.option("--learner", "-l", required=True, help="Learner identifier")
@click.option("--subject", "-s", "subject_id", required=True, type=int, help="Subject ID")
@click.option("--threshold", type=click.IntRange(0, 100), default=None, help="Completion threshold")
@click.option(
    "--detail-level",
    type=click.Choice([level.value for level in DetailLevel], case_sensitive=False),
    default=None,
    help="Which subtopics to include",
)
@click.pass_context
def preference(ctx, learner, subject_id, threshold, detail_level):
    """Show or update a learner's threshold and detail level."""
    try:
        with _open_db(ctx) as db:
            service = ProgressService.from_config(db)
            if threshold is None and detail_level is None:
                pref = service.get_preference(learner, subject_id)
            else:
                pref = service.set_preference(
                    learner,
                    subject_id,
                    threshold=threshold,
                    detail_level=DetailLevel.from_string(detail_level) if detail_level else None,
                )
    except ProgressError as e:
        _fail(e)

    console.print(
        f"\n{learner} in subject {subject_id}: threshold {pref.threshold}%, "
        f"detail level {pref.detail_level.value}\n"
    )


if __name__ == "__main__":
    cli()
