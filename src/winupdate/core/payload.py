"""Loads the update script that gets staged on targets"""

import logging
import os
from importlib import resources
from typing import Optional

from winupdate.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

BUNDLED_SCRIPT = "Invoke-WinUpdate.ps1"


def load_payload(script_path: Optional[str] = None) -> bytes:
    """Read the script to stage

    Args:
        script_path: Local script to use instead of the bundled Invoke-WinUpdate.ps1

    Raises:
        ConfigurationError: The script cannot be read or is empty
    """
    if script_path:
        path = os.path.expanduser(script_path)
        try:
            with open(path, "rb") as f:
                payload = f.read()
        except OSError as e:
            raise ConfigurationError(f"cannot read update script {path}: {e}") from e
        source = path
    else:
        payload = resources.files("winupdate").joinpath("scripts", BUNDLED_SCRIPT).read_bytes()
        source = BUNDLED_SCRIPT

    if not payload:
        raise ConfigurationError(f"contents within '{source}' are empty")

    logger.debug(f"Loaded {len(payload)} byte update script from {source}")
    return payload
