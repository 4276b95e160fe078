"""Click-based CLI interface for B.Keeper."""

import logging
import sys
from datetime import date, timedelta
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from bkeeper.core.config import BKeeperConfig
from bkeeper.core.errors import BKeeperError
from bkeeper.core.metrics import format_queen_age, queen_age_days
from bkeeper.core.models import ResourceType, TaskPriority, utcnow
from bkeeper.core.session import AppSession, SessionMode, login as session_login, logout as session_logout
from bkeeper.core.sharing import format_invite_message
from bkeeper.utils.config import Config
from bkeeper.utils.logger import setup_logger

console = Console()

ERROR_TITLES = {
    "validation": "Ogiltiga uppgifter",
    "storage_failure": "Lagringsfel",
    "authorization_denied": "Behörighet saknas",
    "network_failure": "Nätverksfel",
    "not_found": "Hittades inte",
    "expired": "Koden har gått ut",
    "exhausted": "Koden är förbrukad",
    "already_member": "Redan medlem",
}

STATUS_COLORS = {
    "new": "dim",
    "excellent": "green",
    "good": "cyan",
    "warning": "yellow",
    "critical": "red",
}

PRIORITY_CHOICES = ["low", "medium", "high", "låg", "medel", "hög"]
DATE_TYPE = click.DateTime(formats=["%Y-%m-%d"])


def fail(error: BKeeperError) -> None:
    """Print a per-kind error message and exit with status 1."""
    title = ERROR_TITLES.get(error.kind, "Fel")
    console.print(f"[red]{title}: {error.message}[/red]")
    sys.exit(1)


def open_session(ctx) -> AppSession:
    if "session" not in ctx.obj:
        try:
            ctx.obj["session"] = AppSession.open(ctx.obj["config"], ctx.obj.get("backend"))
        except BKeeperError as e:
            fail(e)
    return ctx.obj["session"]


def parse_id(session: AppSession, raw: Optional[str]):
    if raw is None:
        return None
    try:
        return session.parse_id(raw)
    except BKeeperError as e:
        fail(e)


def colored_status(status: str) -> str:
    color = STATUS_COLORS.get(status, "white")
    return f"[{color}]{status}[/{color}]"


def _as_date(value) -> Optional[date]:
    return value.date() if value is not None else None


@click.group()
@click.option(
    "--data-dir",
    type=click.Path(path_type=Path),
    default=Config.DEFAULT_DATA_DIR,
    help="Data directory for B.Keeper",
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.pass_context
def cli(ctx, data_dir: Path, verbose: bool):
    """B.Keeper - Keep track of hives, inspections and shared apiaries."""
    ctx.ensure_object(dict)
    setup_logger(
        "bkeeper",
        logging.DEBUG if verbose else logging.WARNING,
        log_file=data_dir / Config.LOG_FILE_NAME,
    )
    ctx.obj["data_dir"] = data_dir
    ctx.obj["config"] = BKeeperConfig(data_dir)


# --- Account ---


@cli.command()
@click.argument("email")
@click.password_option("--password", "-p", confirmation_prompt=False)
@click.pass_context
def login(ctx, email: str, password: str):
    """Sign in to the collaborative backend."""
    try:
        session_login(ctx.obj["config"], email, password)
    except BKeeperError as e:
        fail(e)
    console.print(f"[green]✓[/green] Inloggad som [bold]{email}[/bold]")


@cli.command()
@click.pass_context
def logout(ctx):
    """Forget the saved login and use the local store."""
    session_logout(ctx.obj["config"])
    console.print("[green]✓[/green] Utloggad")


@cli.command()
@click.pass_context
def status(ctx):
    """Show the active mode and apiary."""
    session = open_session(ctx)
    console.print(f"\n[bold]Läge:[/bold] {session.mode.value}")
    if session.mode is SessionMode.COLLABORATIVE:
        console.print(f"  Profil: [cyan]{session.profile.email or session.profile.id}[/cyan]")
        try:
            apiary = session.active_apiary()
        except BKeeperError as e:
            fail(e)
        console.print(f"  Bigård: {apiary.name if apiary else '[dim]ingen[/dim]'}")
    else:
        console.print(f"  Data: [dim]{session.local_dir}[/dim]")


# --- Hives ---


@cli.group()
def hive():
    """Manage hives."""
    pass


@hive.command("add")
@click.argument("name")
@click.option("--location", "-l", required=True, help="Where the hive stands")
@click.option("--frames", "-f", type=int, default=20, help="Total frames (default: 20)")
@click.option("--nucleus/--no-nucleus", default=None, help="Mark as a nucleus (required for 10 frames or fewer)")
@click.option("--notes", "-n", default="", help="Free-text notes")
@click.pass_context
def hive_add(ctx, name: str, location: str, frames: int, nucleus: Optional[bool], notes: str):
    """Create a new hive."""
    session = open_session(ctx)
    try:
        created = session.hives().create_hive(name, location, frames, nucleus, notes)
    except BKeeperError as e:
        fail(e)
    console.print(f"[green]✓[/green] Skapade kupa: [bold]{created.name}[/bold]")
    console.print(f"  ID: [cyan]{created.id}[/cyan]")


@hive.command("list")
@click.pass_context
def hive_list(ctx):
    """List hives in the active store."""
    session = open_session(ctx)
    try:
        hives = session.hives().list_hives()
    except BKeeperError as e:
        fail(e)

    if not hives:
        console.print("[dim]Inga kupor hittades.[/dim]")
        return

    table = Table(title="Kupor")
    table.add_column("ID", style="cyan")
    table.add_column("Namn")
    table.add_column("Plats", style="dim")
    table.add_column("Status")
    table.add_column("Styrka")
    table.add_column("Varroa")
    table.add_column("Ramar")
    table.add_column("Senast inspekterad")

    for h in hives:
        name = f"{h.name} [magenta](delad)[/magenta]" if h.is_shared else h.name
        table.add_row(
            str(h.id),
            name,
            h.location,
            colored_status(h.status),
            h.population or "-",
            h.varroa or "-",
            h.frames,
            h.last_inspection.isoformat() if h.last_inspection else "-",
        )

    console.print(table)


@hive.command("show")
@click.argument("hive_id")
@click.pass_context
def hive_show(ctx, hive_id: str):
    """Show details and recent inspections of a hive."""
    session = open_session(ctx)
    hive_id = parse_id(session, hive_id)
    try:
        service = session.hives()
        h = service.get_hive(hive_id)
        inspections = service.list_inspections(hive_id)
    except BKeeperError as e:
        fail(e)

    console.print(f"\n[bold]Kupa: {h.name}[/bold]")
    console.print(f"  ID: [cyan]{h.id}[/cyan]")
    console.print(f"  Plats: {h.location}")
    console.print(f"  Status: {colored_status(h.status)}")
    console.print(f"  Ramar: {h.frames}")
    if h.population:
        console.print(f"  Styrka: {h.population}")
    if h.varroa:
        console.print(f"  Varroa: {h.varroa}")
    if h.honey:
        console.print(f"  Honung: {h.honey}")
    if h.is_nucleus:
        console.print("  [yellow]Avläggare[/yellow]")
    if h.is_wintered:
        console.print("  [blue]Invintrad[/blue]")

    queen = h.queen
    if queen.has_queen is not None:
        console.print(f"  Drottning: {'Ja' if queen.has_queen else 'Nej'}")
        if queen.mark_color:
            console.print(f"    Märkt: {queen.mark_color}")
        age = format_queen_age(queen_age_days(queen.added_date))
        if age:
            console.print(f"    Ålder: {age}")
    if h.notes:
        console.print(f"\n[bold]Anteckningar:[/bold]\n  {h.notes}")

    if inspections:
        console.print("\n[bold]Senaste inspektioner:[/bold]")
        for i in inspections[:5]:
            rating = "★" * i.rating if i.rating else ""
            console.print(
                f"  {i.date.isoformat()}  ramar {i.brood_frames}/{i.total_frames}"
                f"  varroa {i.varroa_level or '-'}  [yellow]{rating}[/yellow]"
            )


@hive.command("rename")
@click.argument("hive_id")
@click.argument("new_name")
@click.pass_context
def hive_rename(ctx, hive_id: str, new_name: str):
    """Rename a hive; its inspections follow it."""
    session = open_session(ctx)
    hive_id = parse_id(session, hive_id)
    try:
        renamed = session.hives().rename_hive(hive_id, new_name)
    except BKeeperError as e:
        fail(e)
    console.print(f"[green]✓[/green] Bytte namn till [bold]{renamed.name}[/bold]")


@hive.command("delete")
@click.argument("hive_id")
@click.option("--force", "-f", is_flag=True, help="Delete without confirmation")
@click.pass_context
def hive_delete(ctx, hive_id: str, force: bool):
    """Delete a hive with its inspections and harvests."""
    session = open_session(ctx)
    hive_id = parse_id(session, hive_id)
    try:
        service = session.hives()
        h = service.get_hive(hive_id)
        if not force and not click.confirm(f"Ta bort kupan '{h.name}' och alla dess inspektioner?"):
            console.print("Avbrutet.")
            return
        service.delete_hive(hive_id)
    except BKeeperError as e:
        fail(e)
    console.print(f"[green]✓[/green] Tog bort [bold]{h.name}[/bold]")


# --- Inspections ---


@cli.group()
def inspect():
    """Record and list inspections."""
    pass


@inspect.command("add")
@click.argument("hive_id")
@click.option("--brood", "-b", type=int, required=True, help="Frames with brood")
@click.option("--total", "-t", type=int, required=True, help="Total frames")
@click.option("--queen-seen/--no-queen-seen", default=None, help="Was the queen seen (omit if unsure)")
@click.option("--temperament", type=click.Choice(["Lugn", "Normal", "Aggressiv"]), help="Colony temperament")
@click.option("--mites", type=float, help="Mites counted on the board")
@click.option("--days", type=float, help="Days the board was in")
@click.option("--weather", help="Weather at the time of inspection")
@click.option("--temperature", type=float, help="Temperature in °C")
@click.option("--observation", "-o", "observations", multiple=True, help="Observation id (repeatable)")
@click.option("--notes", "-n", default="", help="Free-text notes")
@click.option("--wintering", is_flag=True, help="Hive was wintered")
@click.option("--winter-feed", type=float, help="Winter feed in kg")
@click.option("--treatment", help="Varroa treatment given")
@click.option("--new-queen", is_flag=True, help="A new queen was added")
@click.option("--queen-marked/--queen-unmarked", default=None, help="Is the new queen marked")
@click.option("--queen-color", help="Marking color of the new queen")
@click.option("--queen-clipped/--queen-unclipped", default=None, help="Is the new queen wing clipped")
@click.option("--date", "-d", "inspection_date", type=DATE_TYPE, help="Inspection date (default: today)")
@click.pass_context
def inspect_add(
    ctx,
    hive_id: str,
    brood: int,
    total: int,
    queen_seen: Optional[bool],
    temperament: Optional[str],
    mites: Optional[float],
    days: Optional[float],
    weather: Optional[str],
    temperature: Optional[float],
    observations: tuple,
    notes: str,
    wintering: bool,
    winter_feed: Optional[float],
    treatment: Optional[str],
    new_queen: bool,
    queen_marked: Optional[bool],
    queen_color: Optional[str],
    queen_clipped: Optional[bool],
    inspection_date,
):
    """Record an inspection and update the hive's status."""
    session = open_session(ctx)
    hive_id = parse_id(session, hive_id)

    readings = {
        "brood_frames": brood,
        "total_frames": total,
        "queen_seen": queen_seen,
        "temperament": temperament,
        "varroa_count": mites,
        "varroa_days": days,
        "weather": weather,
        "temperature": temperature,
        "observations": list(observations),
        "notes": notes,
        "is_wintering": wintering,
        "winter_feed": winter_feed,
        "is_varroa_treatment": treatment is not None,
        "treatment_type": treatment,
        "new_queen_added": new_queen,
        "new_queen_marked": queen_marked,
        "new_queen_color": queen_color,
        "new_queen_wing_clipped": queen_clipped,
    }
    if inspection_date is not None:
        readings["date"] = inspection_date.date()

    try:
        with console.status("[bold green]Sparar inspektion..."):
            service = session.hives()
            inspection = service.add_inspection(hive_id, **readings)
            h = service.get_hive(hive_id)
    except BKeeperError as e:
        fail(e)

    console.print(f"[green]✓[/green] Inspektion sparad för [bold]{h.name}[/bold]")
    console.print(f"  Status: {colored_status(h.status)}")
    if inspection.varroa_per_day is not None:
        console.print(f"  Varroa: {inspection.varroa_per_day:.1f}/dag ({inspection.varroa_level})")
    if inspection.ai_analysis:
        for rec in inspection.ai_analysis.get("recommendations", []):
            console.print(f"  [dim]- {rec}[/dim]")


@inspect.command("list")
@click.option("--hive", "hive_id", help="Only inspections of this hive")
@click.pass_context
def inspect_list(ctx, hive_id: Optional[str]):
    """List inspections, newest first."""
    session = open_session(ctx)
    hive_id = parse_id(session, hive_id)
    try:
        inspections = session.hives().list_inspections(hive_id)
    except BKeeperError as e:
        fail(e)

    if not inspections:
        console.print("[dim]Inga inspektioner hittades.[/dim]")
        return

    table = Table(title="Inspektioner")
    table.add_column("Datum")
    table.add_column("Kupa")
    table.add_column("Ramar")
    table.add_column("Drottning")
    table.add_column("Varroa/dag")
    table.add_column("Betyg")

    for i in inspections:
        queen = {True: "Ja", False: "[red]Nej[/red]"}.get(i.queen_seen, "?")
        table.add_row(
            i.date.isoformat(),
            i.hive,
            f"{i.brood_frames}/{i.total_frames}",
            queen,
            f"{i.varroa_per_day:.1f}" if i.varroa_per_day is not None else "-",
            str(i.rating or "-"),
        )

    console.print(table)


# --- Tasks ---


@cli.group()
def task():
    """Manage tasks."""
    pass


@task.command("add")
@click.argument("title")
@click.option("--date", "-d", "due_date", type=DATE_TYPE, required=True, help="Due date (YYYY-MM-DD)")
@click.option("--priority", "-p", type=click.Choice(PRIORITY_CHOICES), default="medium", help="Priority")
@click.option("--hive", "hive_id", help="Hive the task is about")
@click.option("--notes", "-n", default="", help="Free-text notes")
@click.pass_context
def task_add(ctx, title: str, due_date, priority: str, hive_id: Optional[str], notes: str):
    """Add a task."""
    session = open_session(ctx)
    hive_id = parse_id(session, hive_id)
    try:
        created = session.hives().add_task(
            title, _as_date(due_date), TaskPriority.parse(priority), hive_id, notes
        )
    except BKeeperError as e:
        fail(e)
    console.print(f"[green]✓[/green] Uppgift tillagd: [bold]{created.title}[/bold] ({created.due_date})")


@task.command("list")
@click.option("--all", "-a", "show_all", is_flag=True, help="Include completed tasks")
@click.pass_context
def task_list(ctx, show_all: bool):
    """List tasks by due date."""
    session = open_session(ctx)
    try:
        tasks = session.hives().list_tasks(include_completed=show_all)
    except BKeeperError as e:
        fail(e)

    if not tasks:
        console.print("[dim]Inga uppgifter.[/dim]")
        return

    table = Table(title="Uppgifter")
    table.add_column("ID", style="cyan")
    table.add_column("Uppgift")
    table.add_column("Datum")
    table.add_column("Prioritet")
    table.add_column("Klar")

    priority_colors = {"hög": "red", "medel": "yellow", "låg": "dim"}
    for t in tasks:
        color = priority_colors.get(t.priority, "white")
        table.add_row(
            str(t.id),
            t.title,
            t.due_date.isoformat() if t.due_date else (t.due_text or "-"),
            f"[{color}]{t.priority}[/{color}]",
            "[green]✓[/green]" if t.completed else "",
        )

    console.print(table)


@task.command("done")
@click.argument("task_id")
@click.pass_context
def task_done(ctx, task_id: str):
    """Mark a task as completed."""
    session = open_session(ctx)
    task_id = parse_id(session, task_id)
    try:
        done = session.hives().complete_task(task_id)
    except BKeeperError as e:
        fail(e)
    console.print(f"[green]✓[/green] Klar: [bold]{done.title}[/bold]")


# --- Harvests ---


@cli.group()
def harvest():
    """Record honey harvests."""
    pass


@harvest.command("add")
@click.argument("hive_id")
@click.option("--frames", "-f", type=float, required=True, help="Honey frames taken")
@click.option("--date", "-d", "harvest_date", type=DATE_TYPE, help="Harvest date (default: today)")
@click.option("--notes", "-n", default="", help="Free-text notes")
@click.pass_context
def harvest_add(ctx, hive_id: str, frames: float, harvest_date, notes: str):
    """Record a harvest and add it to the hive's honey total."""
    session = open_session(ctx)
    hive_id = parse_id(session, hive_id)
    try:
        created = session.hives().add_harvest(hive_id, frames, _as_date(harvest_date), notes)
    except BKeeperError as e:
        fail(e)
    console.print(
        f"[green]✓[/green] Skattning sparad: {created.honey_frames:g} ramar ≈ "
        f"[bold]{created.estimated_kg:g} kg[/bold]"
    )


# --- Apiaries and sharing ---


@cli.group()
def apiary():
    """Manage shared apiaries (requires login)."""
    pass


@apiary.command("create")
@click.argument("name")
@click.option("--description", help="Short description")
@click.option("--location", "-l", help="Where the apiary is")
@click.pass_context
def apiary_create(ctx, name: str, description: Optional[str], location: Optional[str]):
    """Create an apiary you own."""
    session = open_session(ctx)
    try:
        created = session.remote().create_apiary(name, description, location)
    except BKeeperError as e:
        fail(e)
    console.print(f"[green]✓[/green] Skapade bigård: [bold]{created.name}[/bold]")
    console.print(f"  ID: [cyan]{created.id}[/cyan]")
    console.print(f"  Inbjudningskod: [yellow]{created.invite_code}[/yellow]")


@apiary.command("list")
@click.pass_context
def apiary_list(ctx):
    """List apiaries you belong to."""
    session = open_session(ctx)
    try:
        apiaries = session.apiaries()
        active = session.active_apiary()
    except BKeeperError as e:
        fail(e)

    if not apiaries:
        console.print("[dim]Inga bigårdar.[/dim]")
        return

    table = Table(title="Bigårdar")
    table.add_column("ID", style="cyan")
    table.add_column("Namn")
    table.add_column("Roll")
    table.add_column("Plats", style="dim")
    table.add_column("Aktiv")

    for a in apiaries:
        table.add_row(
            a.id,
            a.name,
            a.role or "-",
            a.location or "",
            "[green]●[/green]" if active and a.id == active.id else "",
        )

    console.print(table)


@apiary.command("select")
@click.argument("apiary_id")
@click.pass_context
def apiary_select(ctx, apiary_id: str):
    """Choose the apiary hive commands work on."""
    session = open_session(ctx)
    try:
        selected = session.select_apiary(apiary_id)
    except BKeeperError as e:
        fail(e)
    console.print(f"[green]✓[/green] Aktiv bigård: [bold]{selected.name}[/bold]")


@apiary.command("share")
@click.option("--hive", "hive_id", help="Share a single hive instead of the apiary")
@click.option("--expires-days", type=click.IntRange(min=1), help="Code expires after this many days")
@click.option("--max-uses", type=click.IntRange(min=1), help="Code can be redeemed this many times")
@click.pass_context
def apiary_share(ctx, hive_id: Optional[str], expires_days: Optional[int], max_uses: Optional[int]):
    """Create a sharing code for the active apiary or one of its hives."""
    session = open_session(ctx)
    hive_id = parse_id(session, hive_id)
    expires_at = utcnow() + timedelta(days=expires_days) if expires_days is not None else None
    try:
        active = session.active_apiary()
        if active is None:
            fail(BKeeperError("Du har ingen bigård att dela"))
        if hive_id is not None:
            resource_type, resource_id = ResourceType.HIVE, hive_id
            resource_name = session.hives().get_hive(hive_id).name
        else:
            resource_type, resource_id, resource_name = ResourceType.APIARY, active.id, active.name
        code = session.sharing().create_code(
            resource_type, resource_id, session.profile.id, expires_at, max_uses
        )
    except BKeeperError as e:
        fail(e)

    console.print(f"[green]✓[/green] Delningskod: [bold yellow]{code.code}[/bold yellow]")
    if code.expires_at:
        console.print(f"  Går ut: {code.expires_at.strftime('%Y-%m-%d %H:%M')}")
    if code.max_uses:
        console.print(f"  Max användningar: {code.max_uses}")
    console.print(f"\n[dim]{format_invite_message(resource_name, code.code, resource_type)}[/dim]")


@apiary.command("join")
@click.argument("invite_code")
@click.pass_context
def apiary_join(ctx, invite_code: str):
    """Join an apiary with its invite code."""
    session = open_session(ctx)
    try:
        name = session.sharing().join_by_invite_code(invite_code)
    except BKeeperError as e:
        fail(e)
    console.print(f"[green]✓[/green] Du är nu medlem i [bold]{name}[/bold]")


@cli.group()
def code():
    """Redeem sharing codes."""
    pass


@code.command("redeem")
@click.argument("sharing_code")
@click.pass_context
def code_redeem(ctx, sharing_code: str):
    """Get access to an apiary or hive through a sharing code."""
    session = open_session(ctx)
    try:
        access = session.sharing().redeem_code(sharing_code, session.profile.id)
    except BKeeperError as e:
        fail(e)
    noun = "bigården" if access.resource_type == ResourceType.APIARY.value else "kupan"
    console.print(f"[green]✓[/green] Du har nu tillgång till {noun} [cyan]{access.resource_id}[/cyan]")


# --- Configuration ---


@cli.group()
def config():
    """Show and change settings."""
    pass


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx, key: str, value: str):
    """Set a configuration value."""
    try:
        ctx.obj["config"].set(key, value)
    except BKeeperError as e:
        fail(e)
    console.print(f"[green]✓[/green] {key} sparad")


@config.command("show")
@click.pass_context
def config_show(ctx):
    """Show effective settings."""
    try:
        settings = ctx.obj["config"].show()
    except BKeeperError as e:
        fail(e)

    table = Table(title="Inställningar")
    table.add_column("Nyckel", style="cyan")
    table.add_column("Värde")
    for key, value in settings.items():
        table.add_row(key, "[dim]-[/dim]" if value is None else str(value))
    console.print(table)


if __name__ == "__main__":
    cli()
