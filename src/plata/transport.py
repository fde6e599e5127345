"""
HTTP transport used to send signed requests.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple, Union

import requests

from .error_handler import TransportError

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {'http': 80, 'https': 443}


def default_port(protocol: str) -> int:
    return 80 if protocol == 'http' else 443


def build_url(protocol: str, host: str, port: Optional[int], path: str, query: str = '') -> str:
    """
    Build a request URL. The port is omitted when it is the protocol default.
    """
    netloc = host
    if port is not None and DEFAULT_PORTS.get(protocol) != port:
        netloc = f"{host}:{port}"
    url = f"{protocol}://{netloc}{path or '/'}"
    if query:
        url += ('&' if '?' in url else '?') + query
    return url


@dataclass
class HttpResponse:
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ''

    @property
    def content_type(self) -> str:
        for name, value in self.headers.items():
            if name.lower() == 'content-type':
                return value
        return ''


class RequestsTransport:
    """
    Sends one HTTP request per call with ``requests``.

    A fresh request is issued for every call (no session reuse) and every call
    carries an explicit ``(connect, read)`` timeout.
    """

    def __init__(self, timeout: Union[float, Tuple[float, float]] = (10.0, 60.0)):
        self.timeout = timeout

    def send(
        self,
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Optional[str] = None
    ) -> HttpResponse:
        """
        Send a request and read the whole response body.

        Args:
            method: HTTP method
            url: Full request URL
            headers: Request headers
            body: Request body, sent when non-empty

        Returns:
            Status code, headers and decoded body text

        Raises:
            TransportError: On connection failures and timeouts
        """
        start_time = time.time()
        try:
            response = requests.request(
                method,
                url,
                headers=dict(headers or {}),
                data=body.encode('utf-8') if body else None,
                timeout=self.timeout,
                allow_redirects=False
            )
        except requests.RequestException as e:
            logger.debug(f"Transport failure for {method} {url}: {e}")
            raise TransportError(
                f"{type(e).__name__}: {e}",
                original_error=e,
                context={"method": method, "url": url}
            )

        duration_ms = (time.time() - start_time) * 1000
        logger.debug(f"HTTP {method} {url} -> {response.status_code}", extra={
            'extra_fields': {
                'status_code': response.status_code,
                'duration_ms': duration_ms
            }
        })

        return HttpResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response.content.decode('utf-8', errors='replace')
        )
