"""CLI commands for learning runs.

Commands:
- init-db / import-curriculum: prepare the store
- start / start-auto / retry: create runs
- status / next / submit / stop / transcript / failed / runs: drive and inspect runs
- autopilot: let the provider answer a run's questions
- serve: run the Web API
"""

from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from learnrun.config.app_config import load_app_config
from learnrun.core.autopilot import AutopilotJob, JobProgress
from learnrun.core.curriculum_loader import import_curriculum as do_import_curriculum
from learnrun.core.errors import LearnRunError, ProviderUnavailableError
from learnrun.core.run_lifecycle import GeneratedAnswer, RunLifecycleManager, SubmissionResult
from learnrun.db.database import get_db_path, init_db
from learnrun.db.runs_repository import RunRecord
from learnrun.llm.client import LLMClient, LLMError, build_client

app = typer.Typer(
    name="learnrun",
    help="Automated learning runs with strict literal grading and bounded retries.",
    no_args_is_help=True,
)

console = Console()


def _exit_with_error(error: Exception) -> NoReturn:
    """Print an error in red and exit with code 1."""
    message = error.message if isinstance(error, LearnRunError) else str(error)
    console.print(f"[red]✗ {message}[/red]")
    if isinstance(error, ProviderUnavailableError):
        console.print("  Check that the provider is running (LM Studio: localhost:1234)")
    raise typer.Exit(code=1)


def _get_manager(client: LLMClient | None = None) -> RunLifecycleManager:
    """Initialize the store and build a manager from config."""
    try:
        init_db()
    except LearnRunError as e:
        _exit_with_error(e)
    return RunLifecycleManager.from_config(load_app_config(), client=client)


def _print_run_started(run: RunRecord) -> None:
    console.print(f"[green]✓ Run started ({run.mode})[/green]")
    console.print(f"  [dim]run_id:[/dim] {run.run_id}")
    console.print(f"\n[cyan]Next step:[/cyan] learnrun next {run.run_id}")


def _print_submission(result: SubmissionResult) -> None:
    if result.correct:
        console.print(f"[green]✓ Correct[/green] (attempt {result.attempt_number}/{result.max_attempts})")
    else:
        console.print(
            f"[red]✗ {result.error_type}[/red] [dim]severity {result.severity}, "
            f"attempt {result.attempt_number}/{result.max_attempts}[/dim]"
        )
    console.print(Panel(result.feedback, title="Teacher", expand=False))
    if result.run_state != "running":
        console.print(f"[yellow]Run {result.run_state}[/yellow]")


# =============================================================================
# STORE
# =============================================================================


@app.command(name="init-db")
def init_db_command(
    db: str | None = typer.Option(None, "--db", help="Database file (overrides config)"),
) -> None:
    """Create the database schema."""
    try:
        init_db(Path(db) if db else None)
    except LearnRunError as e:
        _exit_with_error(e)
    console.print(f"[green]✓ Database ready:[/green] {get_db_path()}")


@app.command(name="import-curriculum")
def import_curriculum(
    file: str = typer.Argument(..., help="Curriculum YAML file"),
    skip_existing: bool = typer.Option(
        False, "--skip-existing", help="Skip levels already stored instead of failing"
    ),
) -> None:
    """Import levels and questions from a YAML curriculum."""
    try:
        init_db()
        result = do_import_curriculum(Path(file).expanduser(), skip_existing=skip_existing)
    except LearnRunError as e:
        _exit_with_error(e)

    console.print(f"[green]✓ Curriculum imported[/green]")
    console.print(f"  [dim]levels:[/dim]    {result.levels_created}")
    console.print(f"  [dim]questions:[/dim] {result.questions_created}")
    for skipped in result.skipped_levels:
        console.print(f"  [yellow]⚠ skipped existing level {skipped}[/yellow]")


# =============================================================================
# RUN CREATION
# =============================================================================


@app.command()
def start(
    domain: str = typer.Argument(..., help="Curriculum domain"),
    level: int = typer.Argument(..., help="Level number"),
) -> None:
    """Start a run on one level."""
    manager = _get_manager()
    try:
        run = manager.start_run(domain, level)
    except LearnRunError as e:
        _exit_with_error(e)
    _print_run_started(run)


@app.command(name="start-auto")
def start_auto(
    start_level: int = typer.Argument(..., help="First level number"),
    end_level: int = typer.Argument(..., help="Last level number"),
) -> None:
    """Start an auto-mode run over a range of levels."""
    manager = _get_manager()
    try:
        run = manager.start_run_auto_mode(start_level, end_level)
    except LearnRunError as e:
        _exit_with_error(e)
    _print_run_started(run)


@app.command()
def retry(
    question_ids: list[str] | None = typer.Argument(None, help="Question ids to retry"),
    from_run: str | None = typer.Option(
        None, "--from-run", "-r", help="Retry the unresolved questions of this run"
    ),
) -> None:
    """Start a retry-set run."""
    manager = _get_manager()
    try:
        ids = list(question_ids or [])
        if from_run:
            ids += [q.question_id for q in manager.get_failed_questions(from_run)]
        run = manager.start_retry_set(ids, source_run_id=from_run)
    except LearnRunError as e:
        _exit_with_error(e)
    _print_run_started(run)


# =============================================================================
# RUN PROGRESS
# =============================================================================


@app.command()
def status(
    run_id: str = typer.Argument(..., help="Run ID"),
) -> None:
    """Show run state and counters."""
    manager = _get_manager()
    try:
        run_status = manager.get_run_status(run_id)
    except LearnRunError as e:
        _exit_with_error(e)

    data = run_status.to_dict()
    table = Table(show_header=False, box=None)
    for key in (
        "run_id",
        "mode",
        "state",
        "domain",
        "level_number",
        "current_level",
        "start_level",
        "end_level",
        "cursor",
        "questions_completed",
        "questions_failed",
        "attempt_count",
        "message_count",
    ):
        if data[key] is not None:
            table.add_row(f"[dim]{key}[/dim]", str(data[key]))
    console.print(table)


@app.command(name="next")
def next_question(
    run_id: str = typer.Argument(..., help="Run ID"),
    pair: bool = typer.Option(False, "--pair", help="Show the two-question lookahead"),
) -> None:
    """Show the question the run is on."""
    manager = _get_manager()
    try:
        if pair:
            sequenced = manager.get_next_two_questions(run_id)
            entries = list(zip(sequenced.questions, sequenced.indices))
        else:
            single = manager.get_next_question(run_id)
            entries = [(single.question, single.index)]
    except LearnRunError as e:
        _exit_with_error(e)

    for question, index in entries:
        console.print(f"[bold]#{index}[/bold] [dim]{question.question_id}[/dim]")
        console.print(f"  {question.prompt}")
        if question.expected_category:
            console.print(f"  [dim]category:[/dim] {question.expected_category}")


@app.command()
def submit(
    run_id: str = typer.Argument(..., help="Run ID"),
    question_id: str = typer.Argument(..., help="Question ID"),
    answer: str = typer.Argument(..., help="Answer text"),
) -> None:
    """Submit an answer."""
    manager = _get_manager()
    try:
        result = manager.submit_answer(run_id, question_id, answer)
    except LearnRunError as e:
        _exit_with_error(e)
    _print_submission(result)


@app.command()
def stop(
    run_id: str = typer.Argument(..., help="Run ID"),
) -> None:
    """Stop a running run."""
    manager = _get_manager()
    try:
        run = manager.stop_run(run_id)
    except LearnRunError as e:
        _exit_with_error(e)
    console.print(f"[green]✓ Run stopped[/green] [dim]({run.state})[/dim]")


@app.command()
def transcript(
    run_id: str = typer.Argument(..., help="Run ID"),
) -> None:
    """Print a run's transcript."""
    manager = _get_manager()
    try:
        messages = manager.get_transcript(run_id)
    except LearnRunError as e:
        _exit_with_error(e)

    colors = {"system": "blue", "agent": "magenta", "teacher": "green"}
    for m in messages:
        color = colors.get(m.role, "white")
        console.print(f"[dim]{m.sequence_number:>3}[/dim] [{color}]{m.role}[/{color}]: {m.content}")


@app.command()
def failed(
    run_id: str = typer.Argument(..., help="Run ID"),
) -> None:
    """List questions failed in a run and never passed."""
    manager = _get_manager()
    try:
        questions = manager.get_failed_questions(run_id)
    except LearnRunError as e:
        _exit_with_error(e)

    if not questions:
        console.print("[green]✓ No unresolved questions[/green]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Question")
    table.add_column("Prompt")
    table.add_column("Expected")
    for q in questions:
        table.add_row(q.question_id, q.prompt, q.expected_value)
    console.print(table)
    console.print(f"\n[cyan]Retry them:[/cyan] learnrun retry --from-run {run_id}")


@app.command()
def runs(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of runs to show"),
) -> None:
    """List recent runs."""
    manager = _get_manager()
    try:
        records = manager.list_runs(limit=limit)
    except LearnRunError as e:
        _exit_with_error(e)

    table = Table(show_header=True, header_style="bold")
    table.add_column("Run")
    table.add_column("Mode")
    table.add_column("State")
    table.add_column("Done", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Created")
    for run in records:
        table.add_row(
            run.run_id,
            run.mode,
            run.state,
            str(run.questions_completed),
            str(run.questions_failed),
            run.created_at[:19],
        )
    console.print(table)


# =============================================================================
# PROVIDER
# =============================================================================


@app.command()
def autopilot(
    run_id: str = typer.Argument(..., help="Run ID"),
    steps: int = typer.Option(10, "--steps", "-s", help="Maximum answers to submit"),
    provider: str | None = typer.Option(
        None, "--provider", "-p", help="LLM provider: lmstudio, openai, anthropic"
    ),
    model: str | None = typer.Option(None, "--model", "-m", help="Model name (overrides config)"),
) -> None:
    """Let the provider answer a run's questions.

    Requires LLM server (LM Studio by default) to be running.
    """
    try:
        client = build_client(provider=provider, model=model)
    except LLMError as e:
        _exit_with_error(e)

    if not client.is_available():
        _exit_with_error(
            ProviderUnavailableError(
                f"Could not connect to LLM server ({client.config.provider})",
                {"provider": client.config.provider},
            )
        )

    manager = _get_manager(client)

    def on_step(generated: GeneratedAnswer, progress: JobProgress) -> None:
        result = generated.submission
        mark = "[green]✓[/green]" if result and result.correct else "[red]✗[/red]"
        console.print(
            f"{mark} [dim]{progress.steps_done}/{progress.total_steps}[/dim] "
            f"{generated.question_id}: {generated.answer_text}"
        )

    job = AutopilotJob(manager, on_step=on_step)
    console.print(f"[blue]Autopilot on {run_id} ({client.config.provider}/{client.config.model})...[/blue]")

    try:
        progress = job.run(run_id, max_steps=steps)
    except KeyboardInterrupt:
        job.pause()
        console.print("[yellow]⚠ Interrupted[/yellow]")
        progress = job.progress
    except LearnRunError as e:
        _exit_with_error(e)

    if progress is not None:
        summary = progress.status()
        console.print(
            f"\n[bold]{summary['steps_done']}[/bold] answers: "
            f"[green]{summary['passed']} passed[/green], [red]{summary['failed']} failed[/red] "
            f"[dim]({summary['stop_reason']})[/dim]"
        )


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", help="Port"),
) -> None:
    """Run the Web API with uvicorn."""
    import uvicorn

    uvicorn.run("learnrun.web.api:app", host=host, port=port)
