"""
plata: signed request execution for AWS query and JSON APIs.

Builds a single outbound call, signs it (signature version 2 or 4), sends it
over HTTP(S), classifies the response and retries transient service errors
with backoff.
"""
import logging

from .config import ClientConfig
from .connection import Connection
from .credentials import Credentials, load_credentials
from .error_handler import (
    ClientError,
    ConfigurationError,
    CredentialsNotFoundError,
    PlataError,
    RequestStateError,
    ResponseDecodeError,
    RetriesExhaustedError,
    SigningError,
    TransportError,
)
from .request import Request
from .retry import RETRY_EVENT, SUCCESSFUL_RETRY_EVENT, RetryPolicy
from .signing import get_signer, register_signer

__version__ = "0.3.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = (
    "ClientConfig",
    "ClientError",
    "ConfigurationError",
    "Connection",
    "Credentials",
    "CredentialsNotFoundError",
    "PlataError",
    "RETRY_EVENT",
    "Request",
    "RequestStateError",
    "ResponseDecodeError",
    "RetriesExhaustedError",
    "RetryPolicy",
    "SUCCESSFUL_RETRY_EVENT",
    "SigningError",
    "TransportError",
    "get_signer",
    "load_credentials",
    "register_signer",
)
