"""Configuration management"""

import logging
import os
import re
import uuid
from dataclasses import dataclass
from typing import List, Dict, Any, Optional, Tuple

import yaml

from winupdate.core.command import quote_list
from winupdate.core.env import EnvManager
from winupdate.core.errors import ConfigurationError
from winupdate.core.retry import RetryPolicy
from winupdate.transport.base import RemoteHost

logger = logging.getLogger(__name__)

# Seconds to wait for a restart after updates are applied.
DEFAULT_RESTART_TIMEOUT = 60 * 60

# Delay between checks that a restarting target is back.
DEFAULT_RESTART_CHECK_DELAY = 10

# Times to retry uploading the Windows Update script.
DEFAULT_UPLOAD_RETRY_ATTEMPTS = 5

# Delay between retries to upload the Windows Update script.
DEFAULT_UPLOAD_RETRY_DELAY = 30

# Time to wait for the Windows Update script to be uploaded.
DEFAULT_UPLOAD_TIMEOUT = 5 * 60

# Times to run the Windows Update script (if necessary).
DEFAULT_UPDATE_RETRY_ATTEMPTS = 3

# Delay before running the Windows Update script again.
DEFAULT_UPDATE_RETRY_DELAY = 10

# Time to wait for Windows to finish updating.
DEFAULT_UPDATE_TIMEOUT = 4 * 60 * 60

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_duration(value: Any) -> float:
    """Parse a duration into seconds

    Accepts numbers (seconds) or strings such as ``30s``, ``5m``, ``1h30m``, ``200ms``.

    Raises:
        ConfigurationError: Value is not a valid duration
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        raise ConfigurationError(f"invalid duration: {value!r}")

    text = value.strip().lower()
    try:
        return float(text)
    except ValueError:
        pass

    position = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()

    if position == 0 or position != len(text):
        raise ConfigurationError(f"invalid duration: {value!r}")
    return total


@dataclass(frozen=True)
class UpdateSettings:
    """Validated update settings, built once per run"""

    category_ids: Tuple[str, ...] = ()
    cab_files: Tuple[str, ...] = ()
    install_all: bool = False
    include_hidden: bool = False
    install_optional: bool = False
    install_recommended: bool = False
    install_important: bool = False
    upload_retry_attempts: int = DEFAULT_UPLOAD_RETRY_ATTEMPTS
    upload_retry_delay: float = DEFAULT_UPLOAD_RETRY_DELAY
    upload_timeout: float = DEFAULT_UPLOAD_TIMEOUT
    update_retry_attempts: int = DEFAULT_UPDATE_RETRY_ATTEMPTS
    update_retry_delay: float = DEFAULT_UPDATE_RETRY_DELAY
    update_timeout: float = DEFAULT_UPDATE_TIMEOUT
    restart_timeout: float = DEFAULT_RESTART_TIMEOUT
    disable_restart: bool = False
    cleanup_script: bool = True
    script: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "UpdateSettings":
        """Build settings from the ``update`` config section

        Missing, zero or negative numbers take their defaults. All problems are
        collected and raised together.

        Raises:
            ConfigurationError: One or more values are invalid
        """
        data = dict(data or {})
        errors: List[str] = []

        def count(key: str, default: int) -> int:
            value = data.pop(key, None)
            if value is None:
                return default
            if isinstance(value, bool) or not isinstance(value, int):
                errors.append(f"{key} must be an integer, got {value!r}")
                return default
            return value if value > 0 else default

        def duration(key: str, default: float) -> float:
            value = data.pop(key, None)
            if value is None:
                return default
            try:
                seconds = parse_duration(value)
            except ConfigurationError as e:
                errors.append(f"{key}: {e}")
                return default
            return seconds if seconds > 0 else default

        def flag(key: str, default: bool = False) -> bool:
            value = data.pop(key, default)
            if not isinstance(value, bool):
                errors.append(f"{key} must be a boolean, got {value!r}")
                return default
            return value

        def string_list(key: str) -> Optional[Tuple[str, ...]]:
            value = data.pop(key, None)
            if value is None:
                return None
            if isinstance(value, str):
                value = [value]
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                errors.append(f"{key} must be a list of strings")
                return None
            return tuple(value)

        category_ids = string_list("category_ids")
        for category_id in category_ids or ():
            try:
                uuid.UUID(category_id)
            except ValueError:
                errors.append(f"invalid Windows Category UUID format: {category_id}")

        cab_files = string_list("cab_files")
        for cab_file in cab_files or ():
            if not cab_file.strip() or "\x00" in cab_file:
                errors.append(f"invalid file path for provided cab file: {cab_file!r}")

        install_important = flag("install_important")
        install_optional = flag("install_optional")
        install_recommended = flag("install_recommended")
        install_all = flag("install_all")

        # Nothing specific requested: install everything
        specified = (install_important or install_optional or install_recommended
                     or cab_files is not None or category_ids is not None)
        if not specified:
            install_all = True

        script = data.pop("script", None)
        if script is not None and not isinstance(script, str):
            errors.append(f"script must be a path, got {script!r}")
            script = None

        settings = dict(
            category_ids=category_ids or (),
            cab_files=cab_files or (),
            install_all=install_all,
            include_hidden=flag("include_hidden"),
            install_optional=install_optional,
            install_recommended=install_recommended,
            install_important=install_important,
            upload_retry_attempts=count("upload_retry_attempts", DEFAULT_UPLOAD_RETRY_ATTEMPTS),
            upload_retry_delay=duration("upload_retry_delay", DEFAULT_UPLOAD_RETRY_DELAY),
            upload_timeout=duration("upload_timeout", DEFAULT_UPLOAD_TIMEOUT),
            update_retry_attempts=count("update_retry_attempts", DEFAULT_UPDATE_RETRY_ATTEMPTS),
            update_retry_delay=duration("update_retry_delay", DEFAULT_UPDATE_RETRY_DELAY),
            update_timeout=duration("update_timeout", DEFAULT_UPDATE_TIMEOUT),
            restart_timeout=duration("restart_timeout", DEFAULT_RESTART_TIMEOUT),
            disable_restart=flag("disable_restart"),
            cleanup_script=flag("cleanup_script", True),
            script=script,
        )

        if errors:
            raise ConfigurationError("; ".join(errors))

        for key in data:
            logger.warning(f"Ignoring unknown update option: {key}")

        return cls(**settings)

    def upload_policy(self) -> RetryPolicy:
        return RetryPolicy(
            overall_timeout=self.upload_timeout,
            max_attempts=self.upload_retry_attempts,
            delay_between_attempts=self.upload_retry_delay,
        )

    def update_policy(self) -> RetryPolicy:
        return RetryPolicy(
            overall_timeout=self.update_timeout,
            max_attempts=self.update_retry_attempts,
            delay_between_attempts=self.update_retry_delay,
        )

    def restart_policy(self, check_delay: float = DEFAULT_RESTART_CHECK_DELAY) -> RetryPolicy:
        """Keep probing every ``check_delay`` seconds until restart_timeout"""
        return RetryPolicy(
            overall_timeout=self.restart_timeout,
            max_attempts=max(1, int(self.restart_timeout // check_delay) + 1),
            delay_between_attempts=check_delay,
        )

    def script_args(self) -> List[str]:
        """Arguments passed to Invoke-WinUpdate.ps1"""
        args = []
        if self.category_ids:
            args.append(f"-CategoryIDs {quote_list(self.category_ids)}")
        if self.cab_files:
            args.append(f"-CabFiles {quote_list(self.cab_files)}")
        if self.install_all:
            args.append("-InstallAll")
        if self.include_hidden:
            args.append("-IncludeHidden")
        if self.install_optional:
            args.append("-InstallOptional")
        if self.install_recommended:
            args.append("-InstallRecommended")
        if self.install_important:
            args.append("-InstallImportant")
        return args


class Config:
    """Configuration manager for winupdate"""

    def __init__(self, config_file: str, env_files: Optional[List[str]] = None):
        """Load configuration from YAML file

        Args:
            config_file: Path to configuration YAML file
            env_files: List of environment files to load
        """
        self.config_file = config_file
        self.data: Dict[str, Any] = {}
        self.env_manager = EnvManager()
        self.env_files = env_files or []

        if self.env_files:
            self.env_manager.env.update(self.env_manager.load_files(self.env_files))

        self.load()

    def load(self) -> None:
        """Load configuration from file and expand environment variables"""
        try:
            with open(self.config_file, "r") as f:
                self.data = yaml.safe_load(f) or {}
            logger.info(f"Loaded configuration from {self.config_file}")
        except FileNotFoundError:
            logger.error(f"Configuration file not found: {self.config_file}")
            raise
        except yaml.YAMLError as e:
            logger.error(f"Failed to parse configuration file: {e}")
            raise ConfigurationError(f"failed to parse {self.config_file}: {e}") from e

        if not isinstance(self.data, dict):
            raise ConfigurationError(f"{self.config_file} must contain a mapping")

        self._load_env_config()
        try:
            self.data = self.env_manager.expand(self.data)
        except ValueError as e:
            logger.error(f"Environment variable expansion failed: {e}")
            raise ConfigurationError(str(e)) from e

    def _load_env_config(self) -> None:
        """Apply the ``env_from`` files and ``env`` mapping from the config"""
        env_from = self.data.get("env_from", [])
        if isinstance(env_from, str):
            env_from = [env_from]
        for file_path in env_from:
            self.env_manager.env.update(self.env_manager.load_file(file_path))

        env_direct = self.data.get("env", {})
        if isinstance(env_direct, list):
            env_direct = dict(item.split("=", 1) for item in env_direct if "=" in item)
        if env_direct:
            self.env_manager.env.update({k: str(v) for k, v in env_direct.items()})
            logger.info(f"Loaded {len(env_direct)} direct environment variables")

    @property
    def transport_config(self) -> Dict[str, Any]:
        """Transport section, defaulting to SSH"""
        return self.data.get("transport") or {"type": "ssh"}

    @property
    def targets(self) -> List[RemoteHost]:
        """Targets with global transport options merged in (per-target wins)"""
        global_options = self.transport_config.get("options", {}) or {}
        targets = []

        for target in self.data.get("targets", []) or []:
            if isinstance(target, str):
                target = {"host": target}
            if "host" not in target:
                logger.warning("Target missing 'host' field, skipping")
                continue

            ssh_options = {k: global_options[k] for k in ("key_file", "password") if k in global_options}
            ssh_options.update(target.get("ssh_options", {}) or {})

            user = target.get("user") or ssh_options.get("user") or global_options.get("user", "Administrator")

            targets.append(RemoteHost(
                host=target["host"],
                user=user,
                port=target.get("port", 22),
                ssh_options=ssh_options,
            ))

        return targets

    @property
    def update_settings(self) -> UpdateSettings:
        """Parsed ``update`` section

        Raises:
            ConfigurationError: The section is invalid
        """
        return UpdateSettings.from_dict(self.data.get("update"))

    def validate(self) -> bool:
        """Validate configuration

        Returns:
            True if configuration is valid
        """
        transport_type = self.transport_config.get("type", "ssh")
        if transport_type not in ("ssh", "local"):
            logger.error(f"Unsupported transport type: {transport_type}")
            return False

        if transport_type == "ssh" and not self.targets:
            logger.error("No targets specified")
            return False

        try:
            settings = self.update_settings
        except ConfigurationError as e:
            logger.error(f"Invalid update settings: {e}")
            return False

        if settings.script and not os.path.isfile(os.path.expanduser(settings.script)):
            logger.error(f"Update script not found: {settings.script}")
            return False

        return True
