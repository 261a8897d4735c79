# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
import os
from pathlib import Path

import yaml

from openjragent.core.types import Settings


DEFAULT_SETTINGS_FILE = "settings.openjragent.yaml"
SETTINGS_ENV_VAR = "OPENJRAGENT_SETTINGS"


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from a YAML file.

    Resolution order:
    1. Explicit config_path parameter (if provided)
    2. OPENJRAGENT_SETTINGS environment variable (if set)
    3. Default: 'settings.openjragent.yaml' in the current directory

    A missing default file yields default settings. Environment variables
    prefixed with ``OPENJRAGENT_`` still apply on top of the defaults.

    Args:
        config_path: Optional explicit path to the configuration file.

    Returns:
        Settings object populated from the YAML configuration.

    Raises:
        FileNotFoundError: If an explicitly requested configuration file does not exist.
        yaml.YAMLError: If the YAML file is malformed.
        pydantic.ValidationError: If the configuration fails validation.
    """
    explicit = config_path is not None
    if config_path is None:
        env_path = os.environ.get(SETTINGS_ENV_VAR)
        explicit = bool(env_path)
        config_path = Path(env_path) if env_path else Path(DEFAULT_SETTINGS_FILE)
    config_path = Path(config_path)

    if not config_path.exists():
        if explicit:
            raise FileNotFoundError(f"Configuration file not found at {config_path}")
        return Settings()

    with open(config_path) as f:
        data = yaml.safe_load(f)

    return Settings(**(data or {}))
