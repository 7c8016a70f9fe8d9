"""Environment variables for config expansion"""

import logging
import os
import re
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

_BRACED = re.compile(r"\$\{([^}]+)\}")
_BARE = re.compile(r"\$([A-Za-z_][A-Za-z0-9_]*)")


class EnvManager:
    """Holds the variables available to ``$VAR`` references in the config file"""

    def __init__(self):
        self.env: Dict[str, str] = dict(os.environ)

    def load_file(self, file_path: str) -> Dict[str, str]:
        """Read KEY=VALUE lines from a .env file

        Blank lines and ``#`` comments are skipped; surrounding quotes are stripped.
        A missing file is logged and yields no variables.
        """
        file_path = os.path.expanduser(file_path)
        variables: Dict[str, str] = {}

        if not os.path.exists(file_path):
            logger.warning(f"Environment file not found: {file_path}")
            return variables

        with open(file_path, "r") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                if line.startswith("export "):
                    line = line[len("export "):]
                if "=" not in line:
                    logger.warning(f"Invalid line in {file_path}:{line_num}: {line}")
                    continue

                key, value = (part.strip() for part in line.split("=", 1))
                if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
                    value = value[1:-1]
                variables[key] = value

        logger.info(f"Loaded {len(variables)} variables from {file_path}")
        return variables

    def load_files(self, file_paths: List[str]) -> Dict[str, str]:
        """Load several .env files; later files win"""
        merged: Dict[str, str] = {}
        for file_path in file_paths:
            merged.update(self.load_file(file_path))
        return merged

    def expand_value(self, value: str) -> str:
        """Expand ``$VAR``, ``${VAR}``, ``${VAR:-default}`` and ``${VAR:?message}``

        Unknown plain references are left untouched.

        Raises:
            ValueError: A ``${VAR:?message}`` variable is not set
        """

        def braced(match):
            expr = match.group(1)
            if ":-" in expr:
                name, default = expr.split(":-", 1)
                return self.env.get(name.strip(), default)
            if ":?" in expr:
                name, message = expr.split(":?", 1)
                name = name.strip()
                if name not in self.env:
                    raise ValueError(f"Required variable not set: {name} ({message})")
                return self.env[name]
            return self.env.get(expr.strip(), match.group(0))

        value = _BRACED.sub(braced, value)
        return _BARE.sub(lambda m: self.env.get(m.group(1), m.group(0)), value)

    def expand(self, data: Any) -> Any:
        """Recursively expand every string in dicts and lists"""
        if isinstance(data, str):
            return self.expand_value(data)
        if isinstance(data, dict):
            return {key: self.expand(value) for key, value in data.items()}
        if isinstance(data, list):
            return [self.expand(item) for item in data]
        return data
