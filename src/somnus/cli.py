import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from somnus.core.config import load_config, ConfigLoader, mask_secret

app = typer.Typer(help="Somnus: a dream journal with AI interpretations")
config_app = typer.Typer(help="Manage Somnus configuration")
app.add_typer(config_app, name="config")

console = Console()


def _setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address (defaults to config)"),
    port: Optional[int] = typer.Option(None, help="Port (defaults to config)"),
):
    """Start the HTTP API."""
    import uvicorn
    from somnus.interface.server.app import create_app, EndpointFilter

    config = load_config()
    _setup_logging(config.debug)
    logging.getLogger("uvicorn.access").addFilter(EndpointFilter())

    host = host or config.server.host
    port = port or config.server.port
    console.print(f"[green]Starting Somnus on http://{host}:{port}[/green]")
    uvicorn.run(create_app(config), host=host, port=port, log_level="debug" if config.debug else "info")


@app.command("setup-admin")
def setup_admin(
    password: Optional[str] = typer.Option(None, help="Password (defaults to ADMIN_PASSWORD)"),
):
    """Create the admin user row, or reset its password if it exists."""
    from somnus.auth.session import hash_password
    from somnus.core.database import DreamStore

    config = load_config()
    username = config.admin.username
    password = password or config.admin.password
    if not username or not password:
        console.print("[bold red]ADMIN_USERNAME and ADMIN_PASSWORD must be configured.[/bold red]")
        raise typer.Exit(1)

    async def run_setup():
        async with DreamStore(url=config.database.url) as store:
            await store.init_db()
            existing = await store.get_user_by_username(username)
            if existing:
                console.print("[yellow]Admin user already exists. Updating password...[/yellow]")
                await store.update_user(existing.id, password_hash=hash_password(password))
            else:
                console.print(f"[green]Creating admin user {username}...[/green]")
                await store.create_user(username, hash_password(password))

    asyncio.run(run_setup())
    console.print("[bold green]Admin user ready.[/bold green]")


@app.command()
def users(limit: int = typer.Option(20, help="How many users to list")):
    """Show the user count and the most recent users."""
    from somnus.core.database import DreamStore

    config = load_config()

    async def fetch():
        async with DreamStore(url=config.database.url) as store:
            await store.init_db()
            return await store.count_users(), await store.list_users_with_counts(limit=limit)

    total, rows = asyncio.run(fetch())
    console.print(f"Total users: [bold]{total}[/bold]")

    table = Table(title="Users")
    table.add_column("Username", style="cyan")
    table.add_column("Zodiac", style="magenta")
    table.add_column("Dreams", justify="right")
    table.add_column("Created", style="green")
    for row in rows:
        user = row["user"]
        table.add_row(user.username, user.zodiac_sign or "-", str(row["dream_count"]), user.created_at.strftime("%Y-%m-%d"))
    console.print(table)


@app.command()
def sync(
    username: str = typer.Argument(..., help="Server account that receives the dreams"),
    mirror_dir: Optional[Path] = typer.Option(None, "--mirror-dir", help="Local mirror directory"),
    local_user_id: Optional[str] = typer.Option(None, help="Local user id (anonymous dreams when omitted)"),
):
    """Flush pending dreams from a local mirror to the server store."""
    from somnus.core.database import DreamStore
    from somnus.journal.mirror import LocalMirror

    config = load_config()
    mirror = LocalMirror(mirror_dir)

    async def run_flush():
        async with DreamStore(url=config.database.url) as store:
            await store.init_db()
            user = await store.get_user_by_username(username)
            if user is None:
                return None
            return await mirror.flush(store, local_user_id, user.id)

    count = asyncio.run(run_flush())
    if count is None:
        console.print(f"[bold red]No server user named {username}.[/bold red]")
        raise typer.Exit(1)
    console.print(f"[green]Flushed {count} dream(s) to {username}.[/green]")


@config_app.command("show")
def config_show():
    """Print the effective configuration with secrets masked."""
    config = load_config()
    console.print(f"Config file: [cyan]{ConfigLoader.get_config_path()}[/cyan]")

    table = Table(title="Somnus Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("llm.model", config.llm.model)
    table.add_row("llm.api_keys", ", ".join(mask_secret(k) for k in config.llm.api_keys) or "<none>")
    table.add_row("admin.username", config.admin.username or "<unset>")
    table.add_row("admin.password", "<set>" if config.admin.password else "<unset>")
    table.add_row("session.secret", mask_secret(config.session.secret))
    table.add_row("database.url", config.database.url or "<default sqlite>")
    table.add_row("server", f"{config.server.host}:{config.server.port}")
    console.print(table)


if __name__ == "__main__":
    app()
