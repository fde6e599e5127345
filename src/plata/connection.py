"""
Connection: a reusable handle to one service endpoint and API version.
"""
import asyncio
import logging
import xml.etree.ElementTree as ET
from typing import Any, Callable, Dict, Mapping, Optional

from .config import ClientConfig
from .credentials import Credentials
from .error_handler import ResponseDecodeError, TransportError, handle_error
from .request import Request, extract_error, synthesize_error
from .response_utils import xml_to_object
from .retry import (
    AttemptState,
    Failed,
    Outcome,
    Resolved,
    Retry,
    RetryPolicy,
    exponential_backoff,
    linear_backoff,
    run_with_retries,
)
from .signing import compute_signature, encode_params, sign_query_params, string_to_sign
from .transport import RequestsTransport, build_url, default_port

FORM_CONTENT_TYPE = 'application/x-www-form-urlencoded; charset=utf-8'


class Connection:
    """
    Long-lived handle bound to one endpoint and API version.

    Connections never change after construction, so one instance can serve
    any number of concurrent calls. Use ``request(path)`` to build a general
    call, or ``make_request`` for the query-protocol shortcut.
    """

    def __init__(
        self,
        access_key_id: str,
        secret_access_key: str,
        host: str,
        version: str,
        region: Optional[str] = None,
        base_path: str = '/',
        session_token: Optional[str] = None,
        name: Optional[str] = None,
        scope: Optional[str] = None,
        protocol: Optional[str] = None,
        port: Optional[int] = None,
        signature_version: Optional[int] = None,
        content_type: Optional[str] = None,
        strict_errors: Optional[bool] = None,
        config: Optional[ClientConfig] = None,
        transport: Optional[Any] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.config = config or ClientConfig()

        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.host = host
        self.version = version
        self.region = region or self.config.region
        self.base_path = base_path or '/'
        self.name = name
        self.scope = scope
        self.protocol = protocol or self.config.protocol
        self.port = port or default_port(self.protocol)
        self.signature_version = signature_version or self.config.signature_version
        self.content_type = content_type
        self.strict_errors = self.config.strict_errors if strict_errors is None else strict_errors

        self.credentials = Credentials(
            key=access_key_id,
            secret=secret_access_key,
            session_token=session_token
        )
        self.transport = transport or RequestsTransport(timeout=self.config.timeout)
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_credentials(cls, credentials: Credentials, host: str, version: str, **kwargs) -> 'Connection':
        return cls(
            credentials.key,
            credentials.secret,
            host,
            version,
            session_token=credentials.session_token,
            **kwargs
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(host={self.host!r}, version={self.version!r}, region={self.region!r})"

    def request(self, path: Optional[str] = None) -> Request:
        """
        Build a new call bound to this connection.

        Args:
            path: Request path (defaults to the connection's base path)

        Returns:
            A fresh Request
        """
        return Request(
            host=self.host,
            path=path or self.base_path,
            version=self.version,
            region=self.region,
            credentials=self.credentials,
            service_name=self.name,
            scope=self.scope,
            protocol=self.protocol,
            port=self.port,
            signature_version=self.signature_version,
            content_type=self.content_type,
            transport=self.transport,
            retry_policy=RetryPolicy(max_retries=self.config.max_retries, backoff=exponential_backoff),
            logger=self.logger
        )

    def get_signature(
        self,
        verb: str,
        params: Mapping[str, Any],
        headers: Optional[Mapping[str, str]] = None,
        path: Optional[str] = None
    ) -> str:
        """Version 2 signature of ``params`` for this connection's host."""
        unsigned = {key: value for key, value in params.items() if key != 'Signature'}
        return compute_signature(
            self.secret_access_key,
            string_to_sign(verb, self.host, path or self.base_path, unsigned)
        )

    async def make_request(
        self,
        action: str,
        params: Optional[Mapping[str, Any]] = None,
        verb: str = 'GET',
        headers: Optional[Mapping[str, str]] = None,
        path: Optional[str] = None,
        callback: Optional[Callable[[Any], Any]] = None,
        retries: int = 0
    ) -> Any:
        """
        Call a query-protocol action (signature version 2, XML responses).

        Retryable service errors are retried up to the configured ceiling
        with a linear backoff of ``retries * 100 + 50`` ms. An error status
        whose body is not a recognized error document is handed to the
        callback like a success unless the connection is ``strict_errors``.

        The callback is an optional keyword rather than the leading
        argument; without it the decoded result is returned directly.

        Args:
            action: Action name, e.g. ``DescribeRegions``
            params: Action parameters (not modified)
            verb: ``GET`` (query string) or ``POST`` (form body)
            headers: Extra request headers
            path: Request path (defaults to the connection's base path)
            callback: Applied to the decoded result
            retries: Retry count to start from; lowers the remaining retry budget

        Returns:
            ``callback(result)`` or the decoded result
        """
        verb = (verb or 'GET').upper()
        path = path or self.base_path
        base_params: Dict[str, Any] = dict(params or {})
        extra_headers = dict(headers or {})
        policy = RetryPolicy(max_retries=self.config.max_retries, backoff=linear_backoff)

        self.logger.info(f"make request {action}", extra={
            'extra_fields': {
                'host': self.host,
                'action': action,
                'params': sorted(base_params),
                'verb': verb,
                'path': path
            }
        })

        async def attempt(state: AttemptState) -> Outcome:
            signed = sign_query_params(
                verb, self.host, path, base_params, self.credentials, self.version, action=action
            )
            param_string = encode_params(signed)

            request_headers: Dict[str, str] = {}
            if verb == 'POST':
                url = build_url(self.protocol, self.host, self.port, path)
                body = param_string
                request_headers['Content-Type'] = FORM_CONTENT_TYPE
                request_headers['Content-Length'] = str(len(body.encode('utf-8')))
            else:
                url = build_url(self.protocol, self.host, self.port, path, param_string)
                body = None
            request_headers.update(extra_headers)

            context = {'host': self.host, 'action': action, 'retries': state.retries}
            try:
                response = await asyncio.to_thread(self.transport.send, verb, url, request_headers, body)
            except TransportError as e:
                handle_error(e, context=context, log=self.logger)
                return Failed(e, state)

            try:
                result = xml_to_object(response.body)
            except ET.ParseError as e:
                if response.status_code < 400:
                    error = ResponseDecodeError(f"Could not decode response body: {e}", original_error=e, context=context)
                    handle_error(error, log=self.logger)
                    return Failed(error, state)
                result = {}

            if response.status_code >= 400:
                error = extract_error(result, as_json=False, status_code=response.status_code)
                if error is None:
                    if self.strict_errors:
                        error = synthesize_error(result, as_json=False, status_code=response.status_code)
                        handle_error(error, context=context, log=self.logger)
                        return Failed(error, state)
                    self.logger.warning(
                        f"Unrecognized error body for {action} (HTTP {response.status_code}), passing it through"
                    )
                    return Resolved(result, state)

                outcome = policy.classify(error, state)
                if isinstance(outcome, Retry):
                    self.logger.debug(f"Error {error.code} is retryable. Going to retry in {outcome.delay_ms}ms")
                else:
                    handle_error(outcome.error, context=context, log=self.logger)
                return outcome

            return Resolved(result, state)

        result = await run_with_retries(attempt, state=AttemptState(retries=retries))
        return callback(result) if callback else result
