#!/usr/bin/env python3
import os

import typer

from manymailer_cli.commands import cost, profile
from manymailer_cli.utils.config import get_ce_region, load_config
from manymailer_cli.utils.logger import LogFormat, set_log_format

app = typer.Typer(help="many-mailer operations CLI")

# Register Subcommands
app.add_typer(cost.app, name="cost")
app.add_typer(profile.app, name="profile")


@app.callback()
def cli_config(
        ctx: typer.Context,
        profile: str = typer.Option(None, "--profile", "-p", help="Switch context/profile"),
        log_format: LogFormat = typer.Option(LogFormat.text, "--log-format", help="Log output format"),
):
    """
    Global configuration.
    """
    set_log_format(log_format.value)

    full_config = load_config() or {}

    # Priority: Flag > Configured Default > "default"
    active_profile_name = profile or full_config.get("active_profile", "default")
    profile_data = full_config.get("profiles", {}).get(active_profile_name, {})

    # Cached session wins over the named AWS profile
    cached_session = profile_data.get("cached_session", {})
    if cached_session.get("aws_access_key_id"):
        os.environ["AWS_ACCESS_KEY_ID"] = cached_session["aws_access_key_id"]
        os.environ["AWS_SECRET_ACCESS_KEY"] = cached_session["aws_secret_access_key"]
        os.environ["AWS_SESSION_TOKEN"] = cached_session["aws_session_token"]

    if profile_data.get("aws_profile_name"):
        os.environ["AWS_PROFILE"] = profile_data["aws_profile_name"]

    ctx.meta["profile_name"] = active_profile_name
    ctx.meta["ce_region"] = get_ce_region(profile_data)


def main():
    app()


if __name__ == "__main__":
    main()
