import asyncio
import logging
import subprocess
import sys
from typing import Optional

import typer

import auth
import database
from config import settings
from library import Library
from services.reminders import run_daily_reminders
from utils.ui_helpers import print_reminder_summary, print_stats_result, set_output_mode

APP_NAME = "Library CLI"

app = typer.Typer(help=APP_NAME)


def _get_library() -> Library:
    return Library(db_file=database.DATABASE_FILE)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
):
    """Administration commands for the library backend."""
    if output:
        set_output_mode(output)
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.DEBUG if verbose or settings.debug else logging.WARNING,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default: API_HOST)"),
    port: Optional[int] = typer.Option(None, "--port", help="Port (default: API_PORT)"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
):
    """Start the HTTP API with uvicorn."""
    host = host or settings.api_host
    port = port or int(settings.api_port)
    print(f"Starting API on http://{host}:{port}/")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "api:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload:
        args.append("--reload")
    try:
        subprocess.run(args, check=False)
    except KeyboardInterrupt:
        print("Server stopped.")


@app.command("init-db")
def cli_init_db():
    """Create the database schema if it does not exist yet."""
    database.initialize_database()
    print(f"Database initialized at {database.DATABASE_FILE}")


@app.command("create-admin")
def cli_create_admin(
    name: str = typer.Option(..., "--name", help="Display name"),
    email: str = typer.Option(..., "--email", help="Login email"),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True, confirmation_prompt=True),
):
    """Create a verified administrator account."""
    lib = _get_library()
    email = email.strip().lower()
    try:
        auth.validate_registration(name, email, password, "admin")
        user = lib.create_user(name, email, auth.hash_password(password), role="admin", verified=True)
    except ValueError as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1)
    print(f"Admin created: {user.name} <{user.email}> (id {user.id})")


@app.command("send-reminders")
def cli_send_reminders():
    """Run the due/overdue reminder sweep once, right now."""
    summary = asyncio.run(run_daily_reminders(_get_library()))
    print_reminder_summary(summary)


@app.command("stats")
def cli_stats():
    """Show catalog and circulation statistics."""
    print_stats_result(_get_library().get_statistics())


if __name__ == "__main__":
    app()
