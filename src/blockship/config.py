"""Configuration loading and credential lookup for the block shipper."""

from __future__ import annotations

import json
import os
from pathlib import Path

import keyring
from keyring.errors import PasswordDeleteError

from blockship.models import ShipperConfig


SERVICE_NAME = "blockship-s3"
ACCESS_KEY_NAME = "aws_access_key_id"
SECRET_KEY_NAME = "aws_secret_access_key"

DEFAULT_CONFIG_PATH = Path("config/shipper_config.json")

# Environment variable -> ShipperConfig field
_ENV_OVERRIDES = {
    "TX_LOG_S3_BUCKET": "bucket_name",
    "TX_LOG_DIRECTORY": "source_directory",
    "BLOCKSHIP_POLL_INTERVAL_MS": "poll_interval_ms",
}


def get_aws_credentials() -> tuple[str | None, str | None]:
    """Get S3 credentials: system keyring first, then AWS_* env vars.

    Returns ``(None, None)`` when neither source has a complete pair, which
    lets boto3 fall back to its own credential chain (instance profile,
    ``~/.aws/credentials``, ...).
    """
    access_key = keyring.get_password(SERVICE_NAME, ACCESS_KEY_NAME)
    secret_key = keyring.get_password(SERVICE_NAME, SECRET_KEY_NAME)
    if access_key and secret_key:
        return access_key, secret_key

    access_key = os.environ.get("AWS_ACCESS_KEY_ID")
    secret_key = os.environ.get("AWS_SECRET_ACCESS_KEY")
    if access_key and secret_key:
        return access_key, secret_key

    return None, None


def set_aws_credentials(access_key: str, secret_key: str) -> None:
    """Store S3 credentials in the system keyring."""
    keyring.set_password(SERVICE_NAME, ACCESS_KEY_NAME, access_key)
    keyring.set_password(SERVICE_NAME, SECRET_KEY_NAME, secret_key)


def delete_aws_credentials() -> bool:
    """Remove S3 credentials from the system keyring.

    Returns:
        True if anything was removed.
    """
    removed = False
    for key_name in (ACCESS_KEY_NAME, SECRET_KEY_NAME):
        try:
            keyring.delete_password(SERVICE_NAME, key_name)
            removed = True
        except PasswordDeleteError:
            pass
    return removed


def load_shipper_config(config_path: Path | None = None) -> ShipperConfig:
    """Load shipper configuration from JSON, then apply environment overrides.

    Reads from ``config/shipper_config.json`` when *config_path* is ``None``.
    A missing file is not an error; defaults are used. Unknown keys in the
    file are ignored. ``file_observers`` cannot be set from a file.

    Args:
        config_path: Optional explicit path to shipper_config.json.

    Returns:
        ShipperConfig populated from file + environment.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    data: dict = {}
    if config_path.exists():
        with open(config_path) as f:
            data = json.load(f)

    field_names = {f.name for f in ShipperConfig.__dataclass_fields__.values()}
    field_names.discard("file_observers")
    kwargs = {k: v for k, v in data.items() if k in field_names}

    for env_name, field_name in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value is None:
            continue
        if field_name == "poll_interval_ms":
            kwargs[field_name] = int(value)
        else:
            kwargs[field_name] = value

    return ShipperConfig(**kwargs)
