"""Command-line interface using Typer."""

from typing import Optional
from uuid import UUID

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ugc_engine import __version__
from ugc_engine.logging import setup_logging

# Setup logging
setup_logging()

app = typer.Typer(
    name="ugc-engine",
    help="UGC Video Engine - operator CLI",
    add_completion=False,
)

# Subcommand groups
users_app = typer.Typer(help="User commands")
credits_app = typer.Typer(help="Credit ledger commands")
videos_app = typer.Typer(help="Video commands")
jobs_app = typer.Typer(help="Render job commands")
maintenance_app = typer.Typer(help="Maintenance commands")
app.add_typer(users_app, name="users")
app.add_typer(credits_app, name="credits")
app.add_typer(videos_app, name="videos")
app.add_typer(jobs_app, name="jobs")
app.add_typer(maintenance_app, name="maintenance")

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"UGC Video Engine v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """UGC Video Engine - product videos paid for with credits."""
    pass


def _parse_uuid(value: str, label: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        console.print(f"[bold red]Invalid {label}: {value}[/bold red]")
        raise typer.Exit(code=1)


def _fmt(value: object) -> str:
    if value is None:
        return "-"
    strftime = getattr(value, "strftime", None)
    if strftime is not None:
        return strftime("%Y-%m-%d %H:%M")
    return str(value)


@app.command()
def health() -> None:
    """Check the health of all services."""
    import httpx

    from ugc_engine.config import settings

    url = f"http://{settings.api_host}:{settings.api_port}/health/ready"

    try:
        response = httpx.get(url, timeout=10)
        data = response.json()

        table = Table(title="Service Health")
        table.add_column("Component", style="cyan")
        table.add_column("Status")

        table.add_row("Database", "✓" if data.get("database") else "✗")
        table.add_row("Redis", "✓" if data.get("redis") else "✗")

        for component, healthy in (data.get("components") or {}).items():
            table.add_row(component, "✓" if healthy else "✗")

        console.print(table)

        if data.get("ready"):
            console.print("[bold green]All services healthy![/bold green]")
        else:
            console.print("[bold yellow]Some services unhealthy[/bold yellow]")
            raise typer.Exit(code=1)

    except httpx.RequestError as e:
        console.print(f"[bold red]Cannot connect to API: {e}[/bold red]")
        console.print("[dim]Is the API server running?[/dim]")
        raise typer.Exit(code=1)


@app.command()
def worker() -> None:
    """Start a Celery worker on the render and maintenance queues (for development)."""
    console.print("[bold blue]Starting Celery worker...[/bold blue]")

    import subprocess
    import sys

    subprocess.run(
        [
            sys.executable,
            "-m",
            "celery",
            "-A",
            "ugc_engine.worker",
            "worker",
            "-Q",
            "render,maintenance",
            "--loglevel=info",
        ],
        check=True,
    )


# =============================================================================
# USERS COMMANDS
# =============================================================================


@users_app.command("create")
def users_create(
    email: str = typer.Option(..., "--email", "-e", help="User email"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Display name"),
    credits: Optional[int] = typer.Option(
        None, "--credits", "-c", help="Signup credits (defaults to the configured bonus)"
    ),
) -> None:
    """Register a user and grant the signup bonus."""
    from ugc_engine.db.session import get_session_context
    from ugc_engine.services.credits import CreditLedger
    from ugc_engine.services.users import UserExistsError, create_user

    try:
        with get_session_context() as session:
            user = create_user(session, CreditLedger(), email, name=name, signup_credits=credits)
            user_id, balance = user.id, user.credit_balance
    except UserExistsError as e:
        console.print(f"[bold red]{e.message}[/bold red]")
        raise typer.Exit(code=1)

    console.print("[bold green]User created successfully![/bold green]")
    console.print(f"[cyan]ID:[/cyan] {user_id}")
    console.print(f"[cyan]Email:[/cyan] {email.lower()}")
    console.print(f"[cyan]Balance:[/cyan] {balance}")


# =============================================================================
# CREDITS COMMANDS
# =============================================================================


@credits_app.command("balance")
def credits_balance(
    user_id: str = typer.Argument(..., help="User ID (UUID)"),
) -> None:
    """Show a user's credit balance."""
    from ugc_engine.exceptions import UserNotFoundError
    from ugc_engine.services.credits import CreditLedger

    try:
        balance = CreditLedger().get_balance(_parse_uuid(user_id, "user ID"))
    except UserNotFoundError as e:
        console.print(f"[bold red]{e.message}[/bold red]")
        raise typer.Exit(code=1)

    console.print(f"[cyan]Balance:[/cyan] {balance}")


@credits_app.command("grant")
def credits_grant(
    user_id: str = typer.Argument(..., help="User ID (UUID)"),
    amount: int = typer.Option(..., "--amount", "-a", min=1, help="Credits to grant"),
    transaction_type: str = typer.Option(
        "BONUS", "--type", "-t", help="PURCHASE, BONUS, SUBSCRIPTION_CREDIT, ..."
    ),
    reason: str = typer.Option("Manual grant", "--reason", "-r", help="Ledger description"),
    key: Optional[str] = typer.Option(None, "--key", "-k", help="Idempotency key"),
) -> None:
    """Grant credits to a user."""
    from ugc_engine.domain.enums import TransactionType
    from ugc_engine.exceptions import UserNotFoundError
    from ugc_engine.services.credits import CreditLedger

    try:
        tx_type = TransactionType(transaction_type.upper())
    except ValueError:
        available = ", ".join(t.value for t in TransactionType)
        console.print(f"[bold red]Unknown transaction type: {transaction_type}[/bold red]")
        console.print(f"[dim]Available types: {available}[/dim]")
        raise typer.Exit(code=1)

    try:
        entry = CreditLedger().grant(
            _parse_uuid(user_id, "user ID"), amount, tx_type, reason, idempotency_key=key
        )
    except (UserNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1)

    if entry.replayed:
        console.print("[yellow]Already granted under this key; nothing changed.[/yellow]")
    else:
        console.print(f"[bold green]Granted {amount} credits.[/bold green]")
    console.print(f"[cyan]Balance:[/cyan] {entry.new_balance}")


@credits_app.command("history")
def credits_history(
    user_id: str = typer.Argument(..., help="User ID (UUID)"),
    page: int = typer.Option(1, "--page", "-p", min=1),
    limit: int = typer.Option(20, "--limit", "-l", min=1, max=100),
) -> None:
    """Show a user's ledger history, newest first."""
    from ugc_engine.services.credits import CreditLedger

    rows, total = CreditLedger().get_history(_parse_uuid(user_id, "user ID"), page, limit)
    if not rows:
        console.print("[dim]No transactions found.[/dim]")
        return

    table = Table(title=f"Credit History ({total} total)")
    table.add_column("When", style="dim")
    table.add_column("Type", style="cyan")
    table.add_column("Status")
    table.add_column("Amount", justify="right")
    table.add_column("Balance", justify="right")
    table.add_column("Description")

    for row in rows:
        style = "green" if row.amount > 0 else "red"
        table.add_row(
            _fmt(row.created_at),
            row.type,
            row.status,
            f"[{style}]{row.amount:+d}[/{style}]",
            str(row.balance_after),
            row.description or "-",
        )

    console.print(table)


@credits_app.command("audit")
def credits_audit(
    user_id: str = typer.Argument(..., help="User ID (UUID)"),
) -> None:
    """Compare a user's balance with the sum of their ledger."""
    from ugc_engine.services.credits import CreditLedger

    audit = CreditLedger().audit(_parse_uuid(user_id, "user ID"))
    console.print(f"[cyan]Stored balance:[/cyan] {audit.balance}")
    console.print(f"[cyan]Ledger total:[/cyan] {audit.ledger_total}")
    if audit.consistent:
        console.print("[bold green]Ledger is consistent.[/bold green]")
    else:
        console.print("[bold red]Ledger mismatch![/bold red]")
        raise typer.Exit(code=1)


# =============================================================================
# VIDEOS COMMANDS
# =============================================================================


@videos_app.command("list")
def videos_list(
    user_id: str = typer.Argument(..., help="User ID (UUID)"),
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Filter by status"),
    limit: int = typer.Option(20, "--limit", "-l", min=1, max=100),
) -> None:
    """List a user's videos."""
    from ugc_engine.domain.enums import VideoStatus
    from ugc_engine.services.video_store import VideoStore

    status_filter = VideoStatus(status.upper()) if status else None
    videos, total = VideoStore().list_for_user(
        _parse_uuid(user_id, "user ID"), limit=limit, status=status_filter
    )
    if not videos:
        console.print("[dim]No videos found.[/dim]")
        return

    table = Table(title=f"Videos ({total} total)")
    table.add_column("ID", style="dim")
    table.add_column("Status", style="cyan")
    table.add_column("Style")
    table.add_column("Product")
    table.add_column("Attempt", justify="right")
    table.add_column("Created")

    for video in videos:
        table.add_row(
            str(video.id),
            video.status,
            video.video_style,
            video.product_title[:40],
            str(video.retry_count),
            _fmt(video.created_at),
        )

    console.print(table)


@videos_app.command("show")
def videos_show(
    video_id: str = typer.Argument(..., help="Video ID (UUID)"),
) -> None:
    """Show details of a video."""
    from ugc_engine.services.video_store import VideoStore

    video = VideoStore().get(_parse_uuid(video_id, "video ID"))
    if video is None:
        console.print(f"[bold red]Video not found: {video_id}[/bold red]")
        raise typer.Exit(code=1)

    console.print(Panel.fit(
        f"[bold]{video.product_title}[/bold]\n\n"
        f"[cyan]ID:[/cyan] {video.id}\n"
        f"[cyan]User:[/cyan] {video.user_id}\n"
        f"[cyan]Status:[/cyan] {video.status}\n"
        f"[cyan]Style:[/cyan] {video.video_style}\n"
        f"[cyan]Attempt:[/cyan] {video.retry_count}\n"
        f"[cyan]Credits used:[/cyan] {video.credits_used}\n"
        f"[cyan]Render job:[/cyan] {video.sora_job_id or 'N/A'}\n"
        f"[cyan]Download:[/cyan] {video.download_url or 'N/A'}\n"
        f"[cyan]Expires:[/cyan] {_fmt(video.download_expires_at)}\n"
        f"[cyan]Error:[/cyan] {video.error_message or 'N/A'}\n"
        f"[cyan]Created:[/cyan] {_fmt(video.created_at)}\n"
        f"[cyan]Completed:[/cyan] {_fmt(video.completed_at)}",
        title="Video Details",
        border_style="blue",
    ))


# =============================================================================
# JOBS COMMANDS
# =============================================================================


@jobs_app.command("show")
def jobs_show(
    video_id: str = typer.Argument(..., help="Video ID (UUID)"),
    attempt: Optional[int] = typer.Option(
        None, "--attempt", "-a", help="Attempt number (defaults to the current one)"
    ),
) -> None:
    """Show the queue record of a video's render job."""
    from celery.result import AsyncResult

    from ugc_engine.domain.models import job_id_for
    from ugc_engine.jobs.tasks import get_generation_queue
    from ugc_engine.services.video_store import VideoStore
    from ugc_engine.worker import celery_app

    video_uuid = _parse_uuid(video_id, "video ID")
    if attempt is None:
        video = VideoStore().get(video_uuid)
        if video is None:
            console.print(f"[bold red]Video not found: {video_id}[/bold red]")
            raise typer.Exit(code=1)
        attempt = video.retry_count

    job_id = job_id_for(video_uuid, attempt)
    result = AsyncResult(job_id, app=celery_app)
    marker = get_generation_queue().get_job(job_id)

    table = Table(title="Render Job")
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    table.add_row("Job ID", job_id)
    table.add_row("Task state", result.state)
    if result.state == "PROGRESS" and isinstance(result.info, dict):
        table.add_row("Progress", f"{result.info.get('progress', 0)}%")
    elif result.state == "SUCCESS":
        table.add_row("Result", str(result.result)[:200])
    elif result.state == "FAILURE":
        table.add_row("Error", str(result.result))
    table.add_row("Queue record", str(marker)[:200] if marker else "-")

    console.print(table)


# =============================================================================
# MAINTENANCE COMMANDS
# =============================================================================


@maintenance_app.command("expire-downloads")
def maintenance_expire_downloads() -> None:
    """Move COMPLETED videos with lapsed download links to EXPIRED and delete their assets."""
    from ugc_engine.jobs.maintenance import expire_downloads
    from ugc_engine.utils import run_async

    expired = run_async(expire_downloads())
    console.print(f"[bold green]Expired {expired} video(s).[/bold green]")


@maintenance_app.command("reap-stale")
def maintenance_reap_stale() -> None:
    """Fail and refund renders abandoned by a crashed worker."""
    from ugc_engine.jobs.maintenance import reap_stale_renders
    from ugc_engine.jobs.tasks import build_orchestrator

    counts = reap_stale_renders(build_orchestrator())
    console.print(
        f"[bold green]Reaped {counts['running']} running and {counts['queued']} queued "
        "attempt(s).[/bold green]"
    )


if __name__ == "__main__":
    app()
