"""
Shared fixtures: credentials, a scripted transport and a no-wait sleep.
"""
import json
from unittest.mock import AsyncMock, patch

import pytest

from plata.credentials import Credentials
from plata.transport import HttpResponse

JSON_HEADERS = {'Content-Type': 'application/x-amz-json-1.0'}
XML_HEADERS = {'Content-Type': 'text/xml;charset=UTF-8'}


class ScriptedTransport:
    """Returns (or raises) the scripted responses in order and records every call."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def send(self, method, url, headers=None, body=None):
        self.calls.append({
            'method': method,
            'url': url,
            'headers': dict(headers or {}),
            'body': body
        })
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def credentials():
    return Credentials(key='AKIDEXAMPLE', secret='wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY')


@pytest.fixture
def make_transport():
    return ScriptedTransport


@pytest.fixture
def xml_error():
    def build(code, message='Something went wrong', status=400):
        body = (
            '<?xml version="1.0" encoding="UTF-8"?>'
            '<ErrorResponse xmlns="http://webservices.amazon.com/AWSFault/2005-15-09">'
            f'<Error><Type>Sender</Type><Code>{code}</Code><Message>{message}</Message></Error>'
            '<RequestId>7a62c49f-347e-4fc4-9331-6e8eEXAMPLE</RequestId>'
            '</ErrorResponse>'
        )
        return HttpResponse(status, dict(XML_HEADERS), body)
    return build


@pytest.fixture
def json_error():
    def build(code, message='Something went wrong', status=400):
        body = json.dumps({
            '__type': f'com.amazonaws.dynamodb.v20120810#{code}',
            'message': message
        })
        return HttpResponse(status, dict(JSON_HEADERS), body)
    return build


@pytest.fixture
def no_sleep():
    with patch('plata.retry.asyncio.sleep', new_callable=AsyncMock) as sleep:
        yield sleep
