import datetime
import json

from ..utils.logger import get_logger

logger = get_logger(__name__)

ALIVE_MESSAGE = "many-mailer lambda is alive"


def _utc_now_iso():
    now = datetime.datetime.now(datetime.timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def handler(event, context):
    """API Gateway (HTTP API, payload v2) health check."""
    event = event or {}
    path = event.get("rawPath") or "/"
    logger.info(f"Health check request: {path}")

    if path == "/ping":
        return {
            "statusCode": 200,
            "headers": {"content-type": "application/json"},
            "body": json.dumps({"ok": True, "time": _utc_now_iso()}),
        }

    return {
        "statusCode": 200,
        "headers": {"content-type": "text/plain"},
        "body": ALIVE_MESSAGE,
    }


if __name__ == "__main__":
    print(handler({"rawPath": "/ping"}, None))
