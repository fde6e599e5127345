"""
Client configuration for request execution.
"""
import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from .error_handler import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_REGION = 'us-east-1'
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_READ_TIMEOUT = 60.0


def get_aws_region() -> str:
    """Get AWS region from environment."""
    return (
        os.environ.get("AWS_REGION")
        or os.environ.get("REGION")
        or os.environ.get("AWS_DEFAULT_REGION")
        or DEFAULT_REGION
    )


class ClientConfig:
    """Configuration shared by connections and the requests they build."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize client configuration.

        Args:
            config: Configuration dictionary (camelCase keys)
        """
        config = config or {}
        self.region = config.get('region', DEFAULT_REGION)
        self.protocol = config.get('protocol', 'https')
        self.max_retries = config.get('maxRetries', 5)
        self.connect_timeout = config.get('connectTimeout', DEFAULT_CONNECT_TIMEOUT)
        self.read_timeout = config.get('readTimeout', DEFAULT_READ_TIMEOUT)
        self.signature_version = config.get('signatureVersion', 2)
        self.strict_errors = config.get('strictErrors', False)

        logger.debug(f"Client configuration initialized: region={self.region}, protocol={self.protocol}")

    @property
    def timeout(self) -> Tuple[float, float]:
        return (self.connect_timeout, self.read_timeout)

    def validate(self) -> 'ClientConfig':
        """
        Validate configuration values.

        Returns:
            The configuration itself

        Raises:
            ConfigurationError: If a value is invalid
        """
        errors = []

        if not re.match(r'^[a-z]{2}(-[a-z]+)+-\d+$', str(self.region)):
            errors.append(f"Invalid region format: {self.region}")

        if self.protocol not in ('http', 'https'):
            errors.append(f"protocol must be 'http' or 'https', got {self.protocol!r}")

        if not isinstance(self.max_retries, int) or self.max_retries < 0:
            errors.append("maxRetries must be a non-negative integer")

        for name, value in (('connectTimeout', self.connect_timeout), ('readTimeout', self.read_timeout)):
            if not isinstance(value, (int, float)) or value <= 0:
                errors.append(f"{name} must be a positive number")

        if self.signature_version not in (2, 4):
            errors.append(f"signatureVersion must be 2 or 4, got {self.signature_version!r}")

        if errors:
            raise ConfigurationError("; ".join(errors), context={"errors": errors})
        return self

    @classmethod
    def from_env(cls) -> 'ClientConfig':
        """Build configuration from environment variables."""
        config: Dict[str, Any] = {'region': get_aws_region()}

        for env_name, key, cast in (
            ('PLATA_CONNECT_TIMEOUT', 'connectTimeout', float),
            ('PLATA_READ_TIMEOUT', 'readTimeout', float),
            ('PLATA_MAX_RETRIES', 'maxRetries', int),
        ):
            value = os.environ.get(env_name)
            if value is None or value.strip() == '':
                continue
            try:
                config[key] = cast(value)
            except ValueError as e:
                raise ConfigurationError(f"{env_name} must be a number, got {value!r}", original_error=e)

        return cls(config)

    @classmethod
    def from_file(cls, config_path: Union[str, Path]) -> 'ClientConfig':
        """Build configuration from a JSON file."""
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Configuration file {path} not found")

        try:
            with open(path, 'r') as f:
                return cls(json.load(f))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {path}: {e}", original_error=e)
