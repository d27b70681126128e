"""Configuration loading for the uploader."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

import keyring
import keyring.errors

from bulkimg.models import UploaderConfig

logger = logging.getLogger(__name__)

SERVICE_NAME = "bulkimg-shopify"
KEY_NAME = "access_token"
ENV_TOKEN = "BULKIMG_ACCESS_TOKEN"
ENV_SHOP = "BULKIMG_SHOP_DOMAIN"

DEFAULT_CONFIG_PATH = Path("config/uploader_config.json")


def get_access_token() -> str:
    """Get the Admin API access token: keyring first, then env var fallback.

    Raises:
        RuntimeError: If no token is found anywhere, with setup instructions.
    """
    try:
        token = keyring.get_password(SERVICE_NAME, KEY_NAME)
    except keyring.errors.KeyringError as exc:
        logger.debug("Keyring unavailable, checking %s: %s", ENV_TOKEN, exc)
        token = None
    if token:
        return token

    token = os.environ.get(ENV_TOKEN)
    if token:
        return token

    raise RuntimeError(
        "Admin API access token not found.\n"
        "Set it with: bulkimg config set-token YOUR_TOKEN\n"
        f"Or: export {ENV_TOKEN}=your-token"
    )


def load_uploader_config(config_path: Path | None = None) -> UploaderConfig:
    """Load uploader configuration from JSON, falling back to defaults.

    Reads ``config/uploader_config.json`` when *config_path* is ``None``.
    Unknown keys are ignored.  ``shop_domain`` falls back to the
    ``BULKIMG_SHOP_DOMAIN`` environment variable.  The access token is not
    resolved here; see :func:`get_access_token`.

    Args:
        config_path: Optional explicit path to the JSON file.

    Returns:
        UploaderConfig populated from file and environment.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    data: dict = {}
    if config_path.exists():
        with open(config_path) as f:
            data = json.load(f)

    field_names = set(UploaderConfig.__dataclass_fields__)
    kwargs = {k: v for k, v in data.items() if k in field_names}

    if not kwargs.get("shop_domain"):
        kwargs["shop_domain"] = os.environ.get(ENV_SHOP, "")

    return UploaderConfig(**kwargs)
