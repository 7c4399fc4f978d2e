import sys
from enum import Enum
from pathlib import Path
from typing import Optional

import typer
from botocore.exceptions import BotoCoreError, ClientError

from manymailer_cli.reports.cost_explorer import (
    CostReportError,
    build_query,
    ensure_credentials,
    fetch_cost_and_usage,
    format_rows,
    parse_response,
    render_table,
    resolve_dates,
    to_cli_command,
)
from manymailer_cli.utils.config import get_ce_region
from manymailer_cli.utils.logger import (
    get_logger,
    print_lines,
    print_raw_json,
    set_debug,
)

logger = get_logger(__name__)

app = typer.Typer(
    help="AWS Cost Explorer summaries. Data for the last 24-48 hours is often estimated."
)


class ReportName(str, Enum):
    mtd_service_daily = "mtd-service-daily"
    last7_service = "last7-service"
    drill_service_usage = "drill-service-usage"
    total_mtd = "total-mtd"


# --- Shared options ---
START_OPTION = typer.Option(
    None, "--start", metavar="YYYY-MM-DD", help="Start date (inclusive)."
)
END_OPTION = typer.Option(
    None,
    "--end",
    metavar="YYYY-MM-DD",
    help="End date (exclusive). Defaults to today (UTC).",
)
EXCLUDE_CREDITS_OPTION = typer.Option(
    False, "--exclude-credits", help="Exclude Credit/Refund/Tax record types."
)
SERVICE_OPTION = typer.Option(
    None, "--service", help="Only include this SERVICE, e.g. 'Amazon Simple Email Service'."
)
JSON_OPTION = typer.Option(
    False, "--json", help="Print the raw JSON response and skip the table."
)
DEBUG_OPTION = typer.Option(
    False, "--debug", help="Echo the equivalent aws CLI command before running it."
)


def _run_report(
    ctx: typer.Context,
    report: str,
    start: Optional[str],
    end: Optional[str],
    exclude_credits: bool,
    service: Optional[str],
    json_only: bool,
    debug: bool,
):
    """Resolve -> query -> fetch -> print. Any failure exits 1 with no rows."""
    if debug:
        set_debug()
    region = ctx.meta.get("ce_region") or get_ce_region()

    try:
        ensure_credentials()
        start, end = resolve_dates(report, start=start, end=end)
        query = build_query(
            report, start, end, exclude_credits=exclude_credits, service=service
        )
        if debug:
            typer.echo(to_cli_command(query, region), err=True)

        response = fetch_cost_and_usage(query, region)
        if json_only:
            print_raw_json(response)
            return

        rows = format_rows(report, response)
    except (CostReportError, ValueError, ClientError, BotoCoreError) as e:
        # botocore messages are surfaced as-is
        logger.error(str(e))
        raise typer.Exit(code=1)

    print_lines(render_table(report, rows))


@app.command("mtd-service-daily")
def mtd_service_daily(
    ctx: typer.Context,
    start: Optional[str] = START_OPTION,
    end: Optional[str] = END_OPTION,
    exclude_credits: bool = EXCLUDE_CREDITS_OPTION,
    service: Optional[str] = SERVICE_OPTION,
    json_only: bool = JSON_OPTION,
    debug: bool = DEBUG_OPTION,
):
    """Month-to-date, daily, grouped by SERVICE. Metrics: Unblended, Amortized."""
    _run_report(
        ctx, "mtd-service-daily", start, end, exclude_credits, service, json_only, debug
    )


@app.command("last7-service")
def last7_service(
    ctx: typer.Context,
    start: Optional[str] = START_OPTION,
    end: Optional[str] = END_OPTION,
    exclude_credits: bool = EXCLUDE_CREDITS_OPTION,
    service: Optional[str] = SERVICE_OPTION,
    json_only: bool = JSON_OPTION,
    debug: bool = DEBUG_OPTION,
):
    """Last 7 days, daily, grouped by SERVICE. Metrics: Unblended, UsageQuantity."""
    _run_report(
        ctx, "last7-service", start, end, exclude_credits, service, json_only, debug
    )


@app.command("drill-service-usage")
def drill_service_usage(
    ctx: typer.Context,
    start: Optional[str] = START_OPTION,
    end: Optional[str] = END_OPTION,
    exclude_credits: bool = EXCLUDE_CREDITS_OPTION,
    service: Optional[str] = SERVICE_OPTION,
    json_only: bool = JSON_OPTION,
    debug: bool = DEBUG_OPTION,
):
    """Drill-down by SERVICE and USAGE_TYPE (daily). Default last 7 days."""
    _run_report(
        ctx,
        "drill-service-usage",
        start,
        end,
        exclude_credits,
        service,
        json_only,
        debug,
    )


@app.command("total-mtd")
def total_mtd(
    ctx: typer.Context,
    start: Optional[str] = START_OPTION,
    end: Optional[str] = END_OPTION,
    exclude_credits: bool = EXCLUDE_CREDITS_OPTION,
    service: Optional[str] = SERVICE_OPTION,
    json_only: bool = JSON_OPTION,
    debug: bool = DEBUG_OPTION,
):
    """Month-to-date total (monthly granularity), UnblendedCost."""
    _run_report(
        ctx, "total-mtd", start, end, exclude_credits, service, json_only, debug
    )


@app.command("format")
def format_saved(
    report: ReportName = typer.Argument(..., help="Report layout to render with."),
    input_file: str = typer.Option(
        "-", "--input", "-i", help="Saved get-cost-and-usage JSON ('-' for stdin)."
    ),
    json_only: bool = JSON_OPTION,
):
    """Render a saved 'aws ce get-cost-and-usage' response without calling AWS."""
    try:
        if input_file == "-":
            text = sys.stdin.read()
        else:
            text = Path(input_file).read_text()
    except OSError as e:
        logger.error(f"Could not read {input_file}: {e}")
        raise typer.Exit(code=1)

    try:
        response = parse_response(text)
        if json_only:
            typer.echo(text.rstrip("\n"))
            return
        rows = format_rows(report.value, response)
    except CostReportError as e:
        logger.error(str(e))
        raise typer.Exit(code=1)

    print_lines(render_table(report.value, rows))
