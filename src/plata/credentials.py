"""
Credential snapshot and resolution.
"""
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import boto3

from .error_handler import CredentialsNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credentials:
    key: str
    secret: str
    session_token: Optional[str] = None

    def __repr__(self) -> str:
        return f"Credentials(key={self.key!r}, secret='***', session_token={'***' if self.session_token else None})"


def credentials_from_file(auth_file: Union[str, Path]) -> Credentials:
    """
    Load credentials from a JSON auth file.

    Both ``{"key", "secret", "sessionToken"}`` and
    ``{"accessKeyId", "secretAccessKey", "sessionToken"}`` layouts are accepted.

    Args:
        auth_file: Path to the JSON file

    Returns:
        Credentials snapshot

    Raises:
        CredentialsNotFoundError: If the file is missing, unreadable or incomplete
    """
    path = Path(auth_file)
    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise CredentialsNotFoundError(f"Auth file {path} not found", original_error=e)
    except json.JSONDecodeError as e:
        raise CredentialsNotFoundError(f"Invalid JSON in auth file {path}: {e}", original_error=e)

    key = data.get('key') or data.get('accessKeyId')
    secret = data.get('secret') or data.get('secretAccessKey')
    if not key or not secret:
        raise CredentialsNotFoundError(f"Auth file {path} must define a key and a secret")

    return Credentials(key=key, secret=secret, session_token=data.get('sessionToken'))


def credentials_from_boto3(profile_name: Optional[str] = None) -> Credentials:
    """
    Resolve credentials through the boto3 credential chain
    (environment, shared credentials file, instance role, ...).
    """
    session = boto3.Session(profile_name=profile_name)
    resolved = session.get_credentials()
    if resolved is None:
        raise CredentialsNotFoundError(
            "AWS credentials not found. Set env vars, ~/.aws/credentials, or an IAM role."
        )

    frozen = resolved.get_frozen_credentials()
    return Credentials(key=frozen.access_key, secret=frozen.secret_key, session_token=frozen.token)


def load_credentials(auth_file: Optional[Union[str, Path]] = None, profile_name: Optional[str] = None) -> Credentials:
    """
    Load credentials from an auth file when given, otherwise from boto3.

    Args:
        auth_file: Optional path to a JSON auth file
        profile_name: Optional boto3 profile

    Returns:
        Credentials snapshot
    """
    if auth_file:
        logger.debug(f"Loading credentials from {auth_file}")
        return credentials_from_file(auth_file)
    return credentials_from_boto3(profile_name)
