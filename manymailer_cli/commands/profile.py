import typer
from rich.console import Console
from rich.table import Table

from manymailer_cli.utils.config import (
    get_ce_region,
    load_config,
    set_active_profile,
    update_profile,
)

app = typer.Typer(help="Profile and Credential Management")
console = Console()


@app.command()
def configure(
        profile: str = typer.Option("default", "--profile", "-p", help="Profile name"),
        aws_profile: str = typer.Option(None, help="Source AWS Profile"),
        ce_region: str = typer.Option(None, help="Cost Explorer endpoint region"),
):
    """
    Update settings for a specific profile context.
    """
    updates = {
        "aws_profile_name": aws_profile,
        "ce_region": ce_region,
    }

    # Only provided values, so existing keys survive
    clean_updates = {k: v for k, v in updates.items() if v is not None}

    if not clean_updates:
        console.print("[yellow]No changes provided.[/yellow]")
        return

    update_profile(profile, **clean_updates)

    console.print(f"[green]Profile '{profile}' updated successfully![/green]")


@app.command()
def use(name: str = typer.Argument(..., help="Profile to make active")):
    """Switch the active profile."""
    config = load_config()
    if name not in config["profiles"]:
        console.print(f"[bold red]Error:[/bold red] Profile '{name}' not found.")
        raise typer.Exit(code=1)

    set_active_profile(name)
    console.print(f"[green]Active profile is now '{name}'.[/green]")


@app.command()
def show():
    """List configured profiles."""
    config = load_config()
    active = config.get("active_profile", "default")

    table = Table(title="Profiles")
    table.add_column("Active")
    table.add_column("Profile")
    table.add_column("AWS Profile")
    table.add_column("CE Region")
    table.add_column("Cached Session")

    for name, data in sorted(config["profiles"].items()):
        table.add_row(
            "*" if name == active else "",
            name,
            data.get("aws_profile_name") or "-",
            get_ce_region(data),
            "yes" if data.get("cached_session", {}).get("aws_access_key_id") else "no",
        )

    console.print(table)
