"""
A single AWS API call: parameter and header accumulation, signing,
transport, response classification and retries.
"""
import asyncio
import json
import logging
import re
import xml.etree.ElementTree as ET
from typing import Any, Callable, Dict, List, Optional

from .credentials import Credentials
from .error_handler import (
    ClientError,
    RequestStateError,
    ResponseDecodeError,
    SigningError,
    TransportError,
    handle_error,
)
from .response_utils import canonicalize_headers, decode_body, is_json_content_type
from .retry import (
    AttemptState,
    Failed,
    Outcome,
    Resolved,
    Retry,
    RetryListeners,
    RetryPolicy,
    exponential_backoff,
    run_with_retries,
)
from .signing import encode_params, get_signer
from .transport import RequestsTransport, build_url, default_port

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = 'application/x-amz-json-1.0'

# "2013-04-15" -> "20130415", "2012-08-10T00:00:00.000" -> "20120810T000000"
_VERSION_PUNCTUATION = re.compile(r'[:\-]|\.\d{3}')


def target_prefix(service_name: str, version: str) -> str:
    """Build the ``x-amz-target`` prefix, e.g. ``DynamoDB_20120810.``"""
    return f"{service_name}_{_VERSION_PUNCTUATION.sub('', version)}."


def _type_code(type_tag: Any) -> Optional[str]:
    # "com.amazon.coral.service#ThrottlingException" -> "ThrottlingException"
    if not type_tag:
        return None
    return str(type_tag).split('#')[-1]


def extract_error(result: Any, as_json: bool, status_code: Optional[int] = None) -> Optional[ClientError]:
    """
    Build a ClientError from a recognized error body.

    JSON bodies are recognized by ``{"__type": "...#Code", "message": ...}``,
    XML bodies by ``{"errorResponse": {"error": {"code", "message"}}}``.

    Returns:
        The error, or None when the body has neither shape
    """
    if not isinstance(result, dict):
        return None

    if as_json:
        if 'message' in result or 'Message' in result:
            message = result.get('message', result.get('Message'))
            return ClientError(_type_code(result.get('__type')), message, status_code)
        return None

    error_response = result.get('errorResponse')
    if not isinstance(error_response, dict):
        return None
    error = error_response.get('error')
    # Several <Error> siblings decode to a list; the first one is reported
    if isinstance(error, list) and error:
        error = error[0]
    if isinstance(error, dict):
        return ClientError(error.get('code'), error.get('message'), status_code)
    return None


def synthesize_error(result: Any, as_json: bool, status_code: Optional[int] = None) -> ClientError:
    """Best-effort error for an unrecognized body: JSON type tag or first XML key."""
    code = None
    if isinstance(result, dict):
        if as_json:
            code = _type_code(result.get('__type'))
        elif result:
            code = next(iter(result))
    return ClientError(code, status_code=status_code)


class Request:
    """
    One in-flight API call, including its own retry chain.

    A request is single-use: ``exec()`` may run once, and retries happen only
    through the internal retry driver.
    """

    def __init__(
        self,
        host: str,
        path: str = '/',
        version: Optional[str] = None,
        region: str = 'us-east-1',
        credentials: Optional[Credentials] = None,
        service_name: Optional[str] = None,
        scope: Optional[str] = None,
        protocol: str = 'https',
        port: Optional[int] = None,
        signature_version: int = 2,
        content_type: Optional[str] = None,
        transport: Optional[Any] = None,
        retry_policy: Optional[RetryPolicy] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.host = host
        self.path = path or '/'
        self.version = version
        self.region = region
        self.credentials = credentials
        self.service_name = service_name
        self.scope = scope
        self.protocol = protocol or 'https'
        self.port = port or default_port(self.protocol)
        self.signature_version = signature_version or 2
        self.is_json = content_type == 'json'

        self.params: Dict[str, Any] = {}
        self.headers: Dict[str, Any] = {}
        self.method = 'POST'
        self.body = ''
        self.retries = 0
        self.last_error: Optional[ClientError] = None
        self.response = ''
        self.retry_log: List[ClientError] = []

        self.transport = transport or RequestsTransport()
        self.retry_policy = retry_policy or RetryPolicy(backoff=exponential_backoff)
        self.logger = logger or logging.getLogger(__name__)
        self._listeners = RetryListeners()
        self._executed = False

    def __repr__(self) -> str:
        return f"Request({self.method} {self.protocol}://{self.host}{self.path}, retries={self.retries})"

    def post(self) -> 'Request':
        self.method = 'POST'
        return self

    def get(self) -> 'Request':
        self.method = 'GET'
        return self

    def action(self, name: str) -> 'Request':
        """Target a JSON-protocol action, e.g. ``DynamoDB_20120810.ListTables``."""
        self.headers['x-amz-target'] = target_prefix(self.service_name or '', self.version or '') + name
        self.headers['Content-Type'] = JSON_CONTENT_TYPE
        return self

    def json(self, data: Any = None) -> 'Request':
        """
        Set a JSON body. Structured data is serialized, strings pass through
        untouched and a missing payload becomes ``{}``.
        """
        if not data:
            data = {}
        self.body = data if isinstance(data, str) else json.dumps(data, separators=(',', ':'))
        self.headers['content-length'] = len(self.body.encode('utf-8'))
        return self

    def on(self, event: str, listener: Callable[[Optional[ClientError]], Any]) -> 'Request':
        """Register a listener for ``retry`` or ``successful retry``."""
        self._listeners.on(event, listener)
        return self

    @property
    def url(self) -> str:
        query = encode_params(self.params, sort=False) if self.params else ''
        return build_url(self.protocol, self.host, self.port, self.path, query)

    def _log_context(self) -> Dict[str, Any]:
        return {
            'host': self.host,
            'path': self.path,
            'method': self.method,
            'target': self.headers.get('x-amz-target'),
            'retries': self.retries,
        }

    def _settle(self, state: AttemptState) -> None:
        self.retries = state.retries
        self.last_error = state.last_error

    async def _attempt(self, state: AttemptState) -> Outcome:
        self._settle(state)

        if self.credentials is None:
            raise SigningError("Cannot sign request without credentials", context=self._log_context())
        get_signer(self.signature_version)(self, self.credentials)

        url = self.url
        headers = canonicalize_headers(self.headers)
        self.response = ''

        self.logger.debug(f"Sending {self.method} {self.host}{self.path}", extra={
            'extra_fields': self._log_context()
        })

        try:
            response = await asyncio.to_thread(
                self.transport.send, self.method, url, headers, self.body or None
            )
        except TransportError as e:
            handle_error(e, context=self._log_context(), log=self.logger)
            return Failed(e, state)

        self.response = response.body
        as_json = self.is_json or is_json_content_type(response.content_type)

        try:
            result = decode_body(response.body, as_json)
        except (ValueError, ET.ParseError) as e:
            if response.status_code < 400:
                error = ResponseDecodeError(
                    f"Could not decode response body: {e}",
                    original_error=e,
                    context=self._log_context()
                )
                handle_error(error, log=self.logger)
                return Failed(error, state)
            result = {}

        if response.status_code < 400:
            return Resolved(result, state)

        error = extract_error(result, as_json, response.status_code)
        if error is None:
            error = synthesize_error(result, as_json, response.status_code)
            handle_error(error, context=self._log_context(), log=self.logger)
            return Failed(error, state)

        outcome = self.retry_policy.classify(error, state)
        if isinstance(outcome, Retry):
            self.retry_log.append(error)
            self.logger.warning(
                f"Retryable error {error.code}, retrying in {outcome.delay_ms}ms "
                f"(attempt {outcome.next_state.retries}/{self.retry_policy.max_retries})"
            )
        else:
            handle_error(outcome.error, context=self._log_context(), log=self.logger)
        return outcome

    async def exec(self) -> Any:
        """
        Sign, send and decode the call, retrying retryable service errors.

        Returns:
            Decoded response body

        Raises:
            ClientError: Service error (RetriesExhaustedError when retries ran out)
            TransportError: Connection-level failure
            SigningError: Unknown signature version or missing credentials
            RequestStateError: If the request was already executed
        """
        if self._executed:
            raise RequestStateError("Request has already been executed", context=self._log_context())
        self._executed = True

        return await run_with_retries(
            self._attempt,
            listeners=self._listeners,
            on_settled=self._settle
        )

    async def end(self, callback: Callable[[Any], Any]) -> Any:
        """Execute and hand the decoded result to ``callback``."""
        result = await self.exec()
        return callback(result)
