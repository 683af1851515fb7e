"""YAML parser for retry configurations."""

import os
import re
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import ValidationError

from smart_retry.config.schema import RetrySettings


class YAMLParser:
    """YAML parser with environment variable substitution."""

    def __init__(self):
        self.env_pattern = re.compile(r'\$\{([^}]+)\}')

    def parse_file(self, file_path: str) -> RetrySettings:
        """Parse a YAML configuration file."""
        path = Path(file_path).resolve()

        with open(path, 'r') as f:
            raw_content = f.read()

        return self.parse_string(raw_content)

    def parse_string(self, yaml_content: str) -> RetrySettings:
        """Parse YAML from string."""
        content = self._substitute_env_vars(yaml_content)
        data = yaml.safe_load(content)
        return self._validate(data)

    def _validate(self, data: Any) -> RetrySettings:
        if not isinstance(data, dict) or 'retry' not in data:
            raise ValueError("YAML must contain 'retry' top-level key")

        try:
            return RetrySettings.model_validate(data['retry'] or {})
        except ValidationError as e:
            raise ValueError(f"Configuration validation failed: {e}")

    def _substitute_env_vars(self, content: str) -> str:
        """Replace ${VAR} with environment variable values."""
        def replacer(match):
            var_name = match.group(1)
            # Support default values: ${VAR:-default}
            if ':-' in var_name:
                var_name, default = var_name.split(':-', 1)
                return os.environ.get(var_name, default)
            return os.environ.get(var_name, match.group(0))

        return self.env_pattern.sub(replacer, content)


def load_settings(file_path: str) -> RetrySettings:
    """Convenience wrapper around :meth:`YAMLParser.parse_file`."""
    return YAMLParser().parse_file(file_path)


def dump_settings(settings: RetrySettings) -> str:
    """Serialize settings back to YAML."""
    data: Dict[str, Any] = {"retry": settings.model_dump(mode="json", exclude_none=True)}
    return yaml.safe_dump(data, sort_keys=False)
