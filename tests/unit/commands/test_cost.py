import json
import os
import re
from unittest.mock import patch

import pytest
from botocore.exceptions import ClientError
from typer.testing import CliRunner

from manymailer_cli.commands.cost import ReportName, app
from manymailer_cli.reports.cost_explorer import REPORTS, MissingCredentialsError

runner = CliRunner()

PATCH_PATH = "manymailer_cli.commands.cost"

pytestmark = [pytest.mark.unit, pytest.mark.cost]

# --- TEST DATA ---
S3_RESPONSE = {
    "GroupDefinitions": [{"Type": "DIMENSION", "Key": "SERVICE"}],
    "ResultsByTime": [
        {
            "TimePeriod": {"Start": "2025-09-13", "End": "2025-09-14"},
            "Total": {},
            "Groups": [
                {
                    "Keys": ["Amazon S3"],
                    "Metrics": {
                        "UnblendedCost": {"Amount": "0.0001662", "Unit": "USD"},
                        "AmortizedCost": {"Amount": "0.0001662", "Unit": "USD"},
                    },
                }
            ],
            "Estimated": True,
        }
    ],
}


def split_columns(line):
    return re.split(r"\s{2,}", line.strip())


@pytest.fixture
def aws_env():
    with patch.dict(os.environ, {"AWS_REGION": "us-east-1"}):
        yield


@pytest.fixture
def mock_creds():
    with patch(f"{PATCH_PATH}.ensure_credentials") as mock_ensure:
        yield mock_ensure


@pytest.fixture
def mock_fetch(aws_env, mock_creds):
    with patch(f"{PATCH_PATH}.fetch_cost_and_usage") as mock_fetch:
        mock_fetch.return_value = S3_RESPONSE
        yield mock_fetch


@pytest.fixture
def mock_logger():
    with patch(f"{PATCH_PATH}.logger") as mock_log:
        yield mock_log


# --- TESTS ---


def test_every_report_has_a_command():
    assert set(REPORTS) == {r.value for r in ReportName}

    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for name in REPORTS:
        assert name in result.stdout


def test_mtd_service_daily_prints_table(mock_fetch):
    result = runner.invoke(
        app, ["mtd-service-daily", "--start", "2025-09-13", "--end", "2025-09-14"]
    )

    assert result.exit_code == 0
    lines = result.stdout.splitlines()
    assert split_columns(lines[0]) == ["Date", "Service", "Unblended", "Amortized"]
    assert split_columns(lines[2]) == [
        "2025-09-13",
        "Amazon S3",
        "$0.0001662",
        "$0.0001662",
    ]

    query, region = mock_fetch.call_args.args
    assert region == "us-east-1"
    assert query["TimePeriod"] == {"Start": "2025-09-13", "End": "2025-09-14"}
    assert query["Metrics"] == ["UnblendedCost", "AmortizedCost"]
    assert "Filter" not in query


def test_exclude_credits_and_service_are_anded(mock_fetch):
    result = runner.invoke(
        app,
        [
            "last7-service",
            "--start",
            "2025-09-01",
            "--end",
            "2025-09-08",
            "--exclude-credits",
            "--service",
            "Amazon Simple Email Service",
        ],
    )

    assert result.exit_code == 0
    query = mock_fetch.call_args.args[0]
    assert list(query["Filter"]) == ["And"]
    assert query["Filter"]["And"][0]["Not"]["Dimensions"]["Key"] == "RECORD_TYPE"
    assert query["Filter"]["And"][1] == {
        "Dimensions": {"Key": "SERVICE", "Values": ["Amazon Simple Email Service"]}
    }


def test_json_prints_raw_response(mock_fetch):
    result = runner.invoke(
        app,
        ["drill-service-usage", "--json", "--start", "2025-09-13", "--end", "2025-09-14"],
    )

    assert result.exit_code == 0
    assert json.loads(result.stdout) == S3_RESPONSE


def test_debug_echoes_aws_command(mock_fetch):
    with patch(f"{PATCH_PATH}.set_debug") as mock_set_debug:
        result = runner.invoke(
            app, ["total-mtd", "--debug", "--start", "2025-09-01", "--end", "2025-09-14"]
        )

    assert result.exit_code == 0
    mock_set_debug.assert_called_once()
    assert "aws --region us-east-1 ce get-cost-and-usage" in result.output
    assert "--granularity MONTHLY" in result.output


def test_malformed_response_exits_without_rows(mock_fetch, mock_logger):
    mock_fetch.return_value = {"ResponseMetadata": {}}

    result = runner.invoke(
        app, ["mtd-service-daily", "--start", "2025-09-13", "--end", "2025-09-14"]
    )

    assert result.exit_code == 1
    assert result.stdout == ""
    message = mock_logger.error.call_args.args[0]
    assert "--json" in message


@pytest.mark.parametrize(
    "bucket",
    [
        {"TimePeriod": {"Start": "2025-09-13"}, "Groups": 5},
        {"TimePeriod": {"Start": "2025-09-13"}, "Groups": [], "Total": ["x"]},
        {
            "TimePeriod": {"Start": "2025-09-13"},
            "Groups": [{"Keys": ["Amazon S3"], "Metrics": {"UnblendedCost": "0.1"}}],
        },
    ],
)
def test_wrongly_typed_fields_exit_with_json_hint(bucket, mock_fetch, mock_logger):
    mock_fetch.return_value = {"ResultsByTime": [bucket]}

    result = runner.invoke(
        app, ["mtd-service-daily", "--start", "2025-09-13", "--end", "2025-09-14"]
    )

    assert result.exit_code == 1
    assert result.exception is None or isinstance(result.exception, SystemExit)
    assert result.stdout == ""
    assert "--json" in mock_logger.error.call_args.args[0]


def test_missing_credentials_stops_before_request(aws_env, mock_creds, mock_logger):
    mock_creds.side_effect = MissingCredentialsError("AWS credentials are required.")

    with patch(f"{PATCH_PATH}.fetch_cost_and_usage") as mock_fetch:
        result = runner.invoke(app, ["total-mtd"])

    assert result.exit_code == 1
    mock_fetch.assert_not_called()
    mock_logger.error.assert_called_once_with("AWS credentials are required.")


def test_invalid_range_exits_1(mock_fetch, mock_logger):
    result = runner.invoke(
        app, ["last7-service", "--start", "2025-09-14", "--end", "2025-09-13"]
    )

    assert result.exit_code == 1
    mock_fetch.assert_not_called()
    assert "must be before" in mock_logger.error.call_args.args[0]


def test_client_error_surfaced_verbatim(mock_fetch, mock_logger):
    error = ClientError(
        {"Error": {"Code": "AccessDeniedException", "Message": "not allowed"}},
        "GetCostAndUsage",
    )
    mock_fetch.side_effect = error

    result = runner.invoke(app, ["total-mtd"])

    assert result.exit_code == 1
    mock_logger.error.assert_called_once_with(str(error))


def test_unknown_option_is_usage_error(mock_fetch):
    result = runner.invoke(app, ["total-mtd", "--bogus"])

    assert result.exit_code == 2
    mock_fetch.assert_not_called()


def test_unknown_subcommand_is_usage_error():
    result = runner.invoke(app, ["weekly-everything"])
    assert result.exit_code == 2


# --- format ---


def test_format_reads_stdin():
    result = runner.invoke(
        app, ["format", "mtd-service-daily"], input=json.dumps(S3_RESPONSE)
    )

    assert result.exit_code == 0
    assert split_columns(result.stdout.splitlines()[2])[:3] == [
        "2025-09-13",
        "Amazon S3",
        "$0.0001662",
    ]


def test_format_reads_file(tmp_path):
    saved = tmp_path / "ce.json"
    saved.write_text(
        json.dumps(
            {
                "ResultsByTime": [
                    {
                        "TimePeriod": {"Start": "2025-09-01"},
                        "Total": {"UnblendedCost": {"Amount": "4.2"}},
                        "Groups": [],
                    }
                ]
            }
        )
    )

    result = runner.invoke(app, ["format", "total-mtd", "--input", str(saved)])

    assert result.exit_code == 0
    assert split_columns(result.stdout.splitlines()[2]) == [
        "2025-09-01",
        "TOTAL",
        "$4.2",
    ]


def test_format_json_passthrough():
    text = json.dumps(S3_RESPONSE)

    result = runner.invoke(app, ["format", "last7-service", "--json"], input=text)

    assert result.exit_code == 0
    assert result.stdout.strip() == text


@pytest.mark.parametrize("text", ["", "not json at all"])
def test_format_rejects_empty_or_non_json(text, mock_logger):
    result = runner.invoke(app, ["format", "total-mtd"], input=text)

    assert result.exit_code == 1
    assert result.stdout == ""
    assert "--json" in mock_logger.error.call_args.args[0]


@pytest.mark.parametrize(
    "bucket",
    [
        '{"TimePeriod": {"Start": "2025-09-13"}, "Groups": 5}',
        '{"TimePeriod": {"Start": "2025-09-13"}, "Groups": [], "Total": ["x"]}',
        '{"TimePeriod": {"Start": "2025-09-13"}, "Groups": '
        '[{"Keys": ["Amazon S3"], "Metrics": {"UnblendedCost": "0.1"}}]}',
    ],
)
def test_format_rejects_wrongly_typed_fields(bucket, mock_logger):
    result = runner.invoke(
        app,
        ["format", "mtd-service-daily"],
        input='{"ResultsByTime": [' + bucket + "]}",
    )

    assert result.exit_code == 1
    assert result.exception is None or isinstance(result.exception, SystemExit)
    assert result.stdout == ""
    assert "--json" in mock_logger.error.call_args.args[0]


def test_format_keeps_numeric_amount_text():
    text = (
        '{"ResultsByTime": [{"TimePeriod": {"Start": "2025-09-13"}, "Groups": '
        '[{"Keys": ["Amazon S3"], "Metrics": {"UnblendedCost": {"Amount": 0.00001}}}]}]}'
    )

    result = runner.invoke(app, ["format", "mtd-service-daily"], input=text)

    assert result.exit_code == 0
    assert split_columns(result.stdout.splitlines()[2]) == [
        "2025-09-13",
        "Amazon S3",
        "$0.00001",
    ]


def test_format_missing_file(tmp_path, mock_logger):
    result = runner.invoke(
        app, ["format", "total-mtd", "--input", str(tmp_path / "missing.json")]
    )

    assert result.exit_code == 1
    mock_logger.error.assert_called_once()


def test_format_unknown_report_is_usage_error():
    result = runner.invoke(app, ["format", "nope"], input="{}")
    assert result.exit_code == 2
