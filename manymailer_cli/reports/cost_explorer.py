import datetime
import json
import shlex

import boto3

from manymailer_cli.utils.logger import get_logger

logger = get_logger(__name__)

DATE_FORMAT = "%Y-%m-%d"
CREDIT_RECORD_TYPES = ["Credit", "Refund", "Tax"]

NO_DATA_LABEL = "NO_DATA"
TOTAL_LABEL = "TOTAL"
LABEL_SEPARATOR = " / "

# Fixed display widths; the last column of each report is never padded
DATE_WIDTH = 10
LABEL_WIDTH = 60
AMOUNT_WIDTH = 16

REPORTS = {
    "mtd-service-daily": {
        "help": "Month-to-date, daily, grouped by SERVICE (Unblended + Amortized).",
        "granularity": "DAILY",
        "metrics": ["UnblendedCost", "AmortizedCost"],
        "group_by": ["SERVICE"],
        "default_start": "month",
        "columns": [
            ("Date", "Date"),
            ("Label", "Service"),
            ("Unblended", "Unblended"),
            ("Amortized", "Amortized"),
        ],
    },
    "last7-service": {
        "help": "Last 7 days, daily, grouped by SERVICE (Unblended + UsageQuantity).",
        "granularity": "DAILY",
        "metrics": ["UnblendedCost", "UsageQuantity"],
        "group_by": ["SERVICE"],
        "default_start": "week",
        "columns": [
            ("Date", "Date"),
            ("Label", "Service"),
            ("Unblended", "Unblended"),
            ("Usage", "Usage"),
            ("Unit", "Unit"),
        ],
    },
    "drill-service-usage": {
        "help": "Daily drill-down by SERVICE and USAGE_TYPE. Defaults to the last 7 days.",
        "granularity": "DAILY",
        "metrics": ["UnblendedCost"],
        "group_by": ["SERVICE", "USAGE_TYPE"],
        "default_start": "week",
        "columns": [
            ("Date", "Date"),
            ("Label", "Service / Usage Type"),
            ("Unblended", "Unblended"),
        ],
    },
    "total-mtd": {
        "help": "Month-to-date total (monthly granularity), UnblendedCost.",
        "granularity": "MONTHLY",
        "metrics": ["UnblendedCost"],
        "group_by": [],
        "default_start": "month",
        "columns": [
            ("Date", "Date"),
            ("Label", "Label"),
            ("Unblended", "Unblended"),
        ],
    },
}

COLUMN_WIDTHS = {
    "Date": DATE_WIDTH,
    "Label": LABEL_WIDTH,
    "Unblended": AMOUNT_WIDTH,
    "Amortized": AMOUNT_WIDTH,
    "Usage": AMOUNT_WIDTH,
}


# --- Errors ---
class CostReportError(RuntimeError):
    """Base class for failures that end a report run."""


class MissingCredentialsError(CostReportError):
    pass


class ReportFormatError(CostReportError):
    """Raised when a Cost Explorer response cannot be turned into rows."""

    def __init__(self, detail):
        super().__init__(
            f"Could not format Cost Explorer response: {detail}. "
            "Re-run with --json to inspect the raw output."
        )
        self.detail = detail


def get_report(name):
    try:
        return REPORTS[name]
    except KeyError:
        known = ", ".join(sorted(REPORTS))
        raise ValueError(f"Unknown report '{name}'. Choose one of: {known}")


# --- 1. Dates ---
def _parse_date(value, label):
    try:
        return datetime.datetime.strptime(value, DATE_FORMAT).date()
    except (TypeError, ValueError):
        raise ValueError(f"Invalid {label} date '{value}'; expected YYYY-MM-DD")


def _first_of_previous_month(day):
    last_of_previous = day.replace(day=1) - datetime.timedelta(days=1)
    return last_of_previous.replace(day=1)


def resolve_dates(report, start=None, end=None, today=None):
    """
    Fill in the default window for a report.
    Start is inclusive, end is exclusive and defaults to today (UTC).
    """
    definition = get_report(report)
    if today is None:
        today = datetime.datetime.now(datetime.timezone.utc).date()

    end_dt = _parse_date(end, "end") if end else today

    if start:
        start_dt = _parse_date(start, "start")
    elif definition["default_start"] == "month":
        start_dt = today.replace(day=1)
        if start_dt == end_dt:
            # On the 1st month-to-date is empty; report the previous month
            start_dt = _first_of_previous_month(start_dt)
    else:
        start_dt = today - datetime.timedelta(days=7)

    if start_dt >= end_dt:
        raise ValueError(
            f"Start date {start_dt.isoformat()} must be before end date "
            f"{end_dt.isoformat()} (end is exclusive)"
        )

    return start_dt.isoformat(), end_dt.isoformat()


# --- 2. Query ---
def build_filter(exclude_credits=False, service=None):
    """
    Returns a Cost Explorer filter expression, or None when nothing filters.
    Cost Explorer rejects an empty {} filter with a ValidationException.
    """
    conditions = []
    if exclude_credits:
        conditions.append(
            {
                "Not": {
                    "Dimensions": {
                        "Key": "RECORD_TYPE",
                        "Values": list(CREDIT_RECORD_TYPES),
                    }
                }
            }
        )
    if service:
        conditions.append({"Dimensions": {"Key": "SERVICE", "Values": [service]}})

    if not conditions:
        return None
    if len(conditions) == 1:
        return conditions[0]
    return {"And": conditions}


def build_query(report, start, end, exclude_credits=False, service=None):
    """Builds the keyword arguments for ce.get_cost_and_usage."""
    definition = get_report(report)

    query = {
        "TimePeriod": {"Start": start, "End": end},
        "Granularity": definition["granularity"],
        "Metrics": list(definition["metrics"]),
    }

    if definition["group_by"]:
        query["GroupBy"] = [
            {"Type": "DIMENSION", "Key": key} for key in definition["group_by"]
        ]

    expression = build_filter(exclude_credits=exclude_credits, service=service)
    if expression is not None:
        query["Filter"] = expression

    return query


def to_cli_command(query, region):
    """Renders the equivalent aws CLI invocation for --debug."""
    period = query["TimePeriod"]
    parts = [
        "aws",
        "--region",
        region,
        "ce",
        "get-cost-and-usage",
        "--time-period",
        f"Start={period['Start']},End={period['End']}",
        "--granularity",
        query["Granularity"],
        "--metrics",
        *query["Metrics"],
    ]
    if "Filter" in query:
        parts += ["--filter", json.dumps(query["Filter"], separators=(",", ":"))]
    for group in query.get("GroupBy", []):
        parts += ["--group-by", f"Type={group['Type']},Key={group['Key']}"]

    return " ".join(shlex.quote(part) for part in parts)


# --- 3. Fetch ---
def get_ce_client(region):
    return boto3.client("ce", region_name=region)


def ensure_credentials():
    """Fail before any request when boto3 cannot find credentials."""
    if boto3.Session().get_credentials() is None:
        raise MissingCredentialsError(
            "AWS credentials are required. Configure a profile with "
            "'manymailer profile configure' or set AWS_PROFILE."
        )


def fetch_cost_and_usage(query, region, client=None):
    """
    Runs the query, following NextPageToken, and returns one merged
    response document. Client errors propagate unchanged.
    """
    client = client or get_ce_client(region)
    logger.debug(f"get_cost_and_usage in {region}: {json.dumps(query)}")

    results = []
    token = None
    while True:
        if token:
            response = client.get_cost_and_usage(NextPageToken=token, **query)
        else:
            response = client.get_cost_and_usage(**query)

        if "ResultsByTime" not in response:
            # Leave it to the formatter to reject
            return response

        results.extend(response["ResultsByTime"])
        token = response.get("NextPageToken")
        if not token:
            break

    merged = {
        k: v
        for k, v in response.items()
        if k not in ("NextPageToken", "ResponseMetadata")
    }
    merged["ResultsByTime"] = results
    logger.debug(f"Fetched {len(results)} time bucket(s)")
    return merged


# --- 4. Format ---
def parse_response(text):
    """Parses raw get-cost-and-usage output as produced by the aws CLI."""
    if text is None or not text.strip():
        raise ReportFormatError("empty response")
    try:
        # Keep numbers as their source text so amounts stay verbatim
        return json.loads(text, parse_float=str, parse_int=str)
    except json.JSONDecodeError as e:
        raise ReportFormatError(f"response is not valid JSON ({e.msg})")


def format_amount(amount, currency=True):
    """Passes the amount through verbatim, prefixed with '$' for money."""
    if amount is None or amount == "":
        return ""
    return f"${amount}" if currency else str(amount)


def _metric(metrics, name, date):
    value = metrics.get(name)
    if value is None:
        return None, None
    if not isinstance(value, dict):
        raise ReportFormatError(f"metric '{name}' on {date} is not an object")
    return value.get("Amount"), value.get("Unit")


def _row_from_metrics(date, label, metrics, metric_names, include_usage=True):
    row = {"Date": date, "Label": label}

    amount, _ = _metric(metrics, "UnblendedCost", date)
    row["Unblended"] = format_amount(amount)

    if "AmortizedCost" in metric_names:
        amount, _ = _metric(metrics, "AmortizedCost", date)
        row["Amortized"] = format_amount(amount)

    if "UsageQuantity" in metric_names:
        if include_usage:
            amount, unit = _metric(metrics, "UsageQuantity", date)
            row["Usage"] = format_amount(amount, currency=False)
            row["Unit"] = unit or ""
        else:
            row["Usage"] = ""
            row["Unit"] = ""

    return row


def format_rows(report, response):
    """
    Flattens a get-cost-and-usage response into report rows.

    One row per group; a bucket without groups becomes a single row
    carrying the bucket Total under a placeholder label.
    """
    definition = get_report(report)
    metric_names = definition["metrics"]
    placeholder = NO_DATA_LABEL if definition["group_by"] else TOTAL_LABEL

    if not isinstance(response, dict) or not response:
        raise ReportFormatError("empty response")

    buckets = response.get("ResultsByTime")
    if not isinstance(buckets, list):
        raise ReportFormatError("missing 'ResultsByTime' list")

    rows = []
    for index, bucket in enumerate(buckets):
        if not isinstance(bucket, dict):
            raise ReportFormatError(f"time bucket #{index} is not an object")

        period = bucket.get("TimePeriod") or {}
        date = period.get("Start") if isinstance(period, dict) else None
        if not date:
            raise ReportFormatError(f"time bucket #{index} has no TimePeriod.Start")

        groups = bucket.get("Groups")
        if groups is None:
            groups = []
        if not isinstance(groups, list):
            raise ReportFormatError(f"Groups on {date} is not a list")

        if not groups:
            total = bucket.get("Total")
            if total is None:
                total = {}
            if not isinstance(total, dict):
                raise ReportFormatError(f"Total on {date} is not an object")
            rows.append(
                _row_from_metrics(
                    date, placeholder, total, metric_names, include_usage=False
                )
            )
            continue

        for group in groups:
            keys = group.get("Keys") if isinstance(group, dict) else None
            metrics = group.get("Metrics") if isinstance(group, dict) else None
            if not keys or not isinstance(keys, list) or not isinstance(metrics, dict):
                raise ReportFormatError(f"malformed group on {date}")
            label = LABEL_SEPARATOR.join(str(k) for k in keys)
            rows.append(_row_from_metrics(date, label, metrics, metric_names))

    if not rows:
        logger.warning("Cost Explorer returned no time buckets for this range")
    return rows


def _fit(key, value, last):
    width = COLUMN_WIDTHS.get(key)
    if last or width is None:
        return value
    if key == "Label" and len(value) > width:
        value = value[: width - 3] + "..."
    return value.ljust(width)


def _render_line(keys, values):
    last_index = len(keys) - 1
    cells = [
        _fit(key, value, i == last_index)
        for i, (key, value) in enumerate(zip(keys, values))
    ]
    return "  ".join(cells).rstrip()


def render_table(report, rows):
    """Fixed-width text table: header, rule, then one line per row."""
    columns = get_report(report)["columns"]
    keys = [key for key, _ in columns]

    header = _render_line(keys, [title for _, title in columns])
    lines = [header, "-" * len(header)]
    for row in rows:
        lines.append(_render_line(keys, [str(row.get(key, "")) for key in keys]))
    return lines
