import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

# Define where to store the config
APP_DIR = Path.home() / ".manymailer"
CONFIG_FILE = APP_DIR / "config.json"

# Cost Explorer is served from us-east-1; the region does not limit cost scope
DEFAULT_CE_REGION = "us-east-1"


def _default_config() -> Dict[str, Any]:
    return {"profiles": {}, "active_profile": "default"}


def load_config() -> Dict[str, Any]:
    """Load the full configuration from the JSON file."""
    if not CONFIG_FILE.exists():
        return _default_config()
    try:
        with open(CONFIG_FILE, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError:
        return _default_config()

    if not isinstance(data, dict):
        return _default_config()
    # Ensure basic structure exists if file is empty or old format
    data.setdefault("profiles", {})
    data.setdefault("active_profile", "default")
    return data


def save_full_config(data: Dict[str, Any]) -> None:
    """
    Overwrites the entire config file.
    Internal use only; prefer update_profile() for safety.
    """
    APP_DIR.mkdir(parents=True, exist_ok=True)

    with open(CONFIG_FILE, "w") as f:
        json.dump(data, f, indent=4)

    # Readable only by the user (600)
    os.chmod(CONFIG_FILE, 0o600)


def update_profile(profile_name: str, **kwargs) -> None:
    """
    Safely updates specific keys for a single profile.

    Usage:
        update_profile("prod", aws_profile_name="mailer-prod", ce_region="us-east-1")
    """
    config = load_config()

    current_profile_data = config["profiles"].setdefault(profile_name, {})
    # Merge so adding a region does not wipe a cached session
    current_profile_data.update(kwargs)

    save_full_config(config)


def set_active_profile(profile_name: str) -> None:
    config = load_config()
    config["active_profile"] = profile_name
    save_full_config(config)


def get_profile(profile_name: Optional[str] = None) -> Dict[str, Any]:
    """
    Retrieve data for a specific profile (or the active one if None).
    """
    config = load_config()

    if not profile_name:
        profile_name = config.get("active_profile", "default")

    return config.get("profiles", {}).get(profile_name, {})


def get_ce_region(profile_data: Optional[Dict[str, Any]] = None) -> str:
    """
    Resolve the Cost Explorer endpoint region.
    Priority: profile 'ce_region' > AWS_REGION env > us-east-1.
    """
    if profile_data and profile_data.get("ce_region"):
        return profile_data["ce_region"]
    return os.environ.get("AWS_REGION") or DEFAULT_CE_REGION
