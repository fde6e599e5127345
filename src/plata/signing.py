"""
AWS request signing strategies, keyed by signature version.

A signer is a callable ``sign(request, credentials) -> None`` that attaches
the parameters and/or headers the wire protocol requires. It never sends
anything. The request object is expected to expose ``method``, ``host``,
``path``, ``params``, ``headers``, ``body``, ``version``, ``region``,
``service_name``, ``scope`` and ``url``.
"""
import base64
import hashlib
import hmac
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Union
from urllib.parse import quote

from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials as BotocoreCredentials
from botocore.exceptions import BotoCoreError

from .credentials import Credentials
from .error_handler import SigningError
from .response_utils import sort_by_keys

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = '%Y-%m-%dT%H:%M:%SZ'
V2_SIGNATURE_METHOD = 'HmacSHA1'
V4_SIGNED_HEADERS = ('Authorization', 'X-Amz-Date', 'X-Amz-Security-Token')

# RFC 3986 unreserved characters
_SAFE_CHARS = '-_.~'

Signer = Callable[[Any, Credentials], None]


def iso_timestamp(now: Optional[datetime] = None) -> str:
    """UTC ISO-8601 timestamp without fractional seconds, e.g. ``2013-04-15T10:20:30Z``."""
    now = now or datetime.now(timezone.utc)
    return now.strftime(TIMESTAMP_FORMAT)


def _encode(value: Any) -> str:
    return quote(str(value), safe=_SAFE_CHARS)


def encode_params(params: Mapping[str, Any], sort: bool = True) -> str:
    """
    URL-encode parameters as ``key=value&...``.

    Args:
        params: Parameters to encode
        sort: Sort by key first (the canonical form); otherwise keep insertion order

    Returns:
        Encoded parameter string
    """
    items = sort_by_keys(params).items() if sort else params.items()
    return '&'.join(f"{_encode(key)}={_encode(value)}" for key, value in items)


def string_to_sign(verb: str, host: str, path: str, params: Mapping[str, Any]) -> str:
    """
    Build the version 2 canonical string: verb, lower-cased host, path and
    the sorted, encoded parameter string, one per line.
    """
    return '\n'.join([
        verb.upper(),
        host.lower(),
        path or '/',
        encode_params(params)
    ])


def compute_signature(secret_key: str, canonical_string: str) -> str:
    """base64(HMAC-SHA1(secret, canonical string))"""
    digest = hmac.new(
        secret_key.encode('utf-8'),
        canonical_string.encode('utf-8'),
        hashlib.sha1
    ).digest()
    return base64.b64encode(digest).decode('utf-8')


def sign_query_params(
    verb: str,
    host: str,
    path: str,
    params: Mapping[str, Any],
    credentials: Credentials,
    version: str,
    action: Optional[str] = None,
    timestamp: Optional[str] = None
) -> Dict[str, Any]:
    """
    Sign a query-protocol parameter set with signature version 2.

    The input mapping is left untouched; a stale ``Signature`` in it is ignored.

    Args:
        verb: HTTP method
        host: Endpoint host
        path: Request path
        params: Call parameters
        credentials: Credentials to sign with
        version: API version of the service
        action: Action name, injected as ``Action`` when given
        timestamp: Override for the ``Timestamp`` parameter

    Returns:
        New parameter dict, including ``Signature``, sorted by key
    """
    signed = {key: value for key, value in params.items() if key != 'Signature'}

    if action is not None:
        signed['Action'] = action
    signed['AWSAccessKeyId'] = credentials.key
    signed['Version'] = version
    signed['SignatureVersion'] = 2
    signed['SignatureMethod'] = V2_SIGNATURE_METHOD
    signed['Timestamp'] = timestamp or iso_timestamp()
    if credentials.session_token:
        signed['SecurityToken'] = credentials.session_token

    signed['Signature'] = compute_signature(
        credentials.secret,
        string_to_sign(verb, host, path, signed)
    )
    return sort_by_keys(signed)


def sign_v2(request: Any, credentials: Credentials) -> None:
    """Signature version 2: stamp the request's query parameters."""
    request.params = sign_query_params(
        request.method,
        request.host,
        request.path,
        request.params,
        credentials,
        request.version
    )


def sign_v4(request: Any, credentials: Credentials) -> None:
    """Signature version 4: set the authorization headers through botocore."""
    for name in V4_SIGNED_HEADERS:
        request.headers.pop(name, None)

    body = request.body.encode('utf-8') if request.body else b''
    aws_request = AWSRequest(
        method=request.method,
        url=request.url,
        data=body,
        headers={name: str(value) for name, value in request.headers.items()}
    )
    service = request.scope or (request.service_name or '').lower()

    try:
        SigV4Auth(
            BotocoreCredentials(credentials.key, credentials.secret, credentials.session_token),
            service,
            request.region
        ).add_auth(aws_request)
    except BotoCoreError as e:
        raise SigningError(f"Failed to sign request with SigV4: {e}", original_error=e)

    for name in V4_SIGNED_HEADERS:
        if name in aws_request.headers:
            request.headers[name] = aws_request.headers[name]

    logger.debug(f"Signed request for {service} in {request.region}")


SIGNERS: Dict[int, Signer] = {
    2: sign_v2,
    4: sign_v4,
}


def _normalize_version(version: Union[int, str]) -> int:
    if isinstance(version, str):
        version = version.strip().lstrip('vV')
    return int(version)


def get_signer(version: Union[int, str]) -> Signer:
    """
    Look up the signer registered for a signature version.

    Raises:
        SigningError: If no signer is registered for the version
    """
    try:
        return SIGNERS[_normalize_version(version)]
    except (KeyError, TypeError, ValueError):
        raise SigningError(
            f"Unsupported signature version: {version!r}",
            context={"supported_versions": sorted(SIGNERS)}
        )


def register_signer(version: int, signer: Signer) -> None:
    SIGNERS[int(version)] = signer
