"""
Tests for Connection: the request factory and the query-protocol shortcut.
"""
import asyncio
import base64
import hashlib
import hmac
import threading
from unittest.mock import call, patch
from urllib.parse import parse_qsl, quote, urlsplit

import pytest

from plata.config import ClientConfig
from plata.connection import FORM_CONTENT_TYPE, Connection
from plata.credentials import Credentials
from plata.error_handler import ClientError, RetriesExhaustedError, TransportError
from plata.request import Request
from plata.transport import HttpResponse

pytestmark = pytest.mark.unit

SECRET = 'wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY'
TIMESTAMP = '2013-04-15T10:20:30Z'
REGIONS_BODY = (
    '<DescribeRegionsResponse xmlns="http://ec2.amazonaws.com/doc/2011-12-15/">'
    '<requestId>59dbff89-35bd-4eac-99ed-be587EXAMPLE</requestId>'
    '<regionInfo>'
    '<item><regionName>us-east-1</regionName><regionEndpoint>ec2.us-east-1.amazonaws.com</regionEndpoint></item>'
    '<item><regionName>eu-west-1</regionName><regionEndpoint>ec2.eu-west-1.amazonaws.com</regionEndpoint></item>'
    '</regionInfo>'
    '</DescribeRegionsResponse>'
)


def expected_signature(verb, host, path, params):
    encoded = '&'.join(
        f"{quote(str(key), safe='-_.~')}={quote(str(value), safe='-_.~')}"
        for key, value in sorted(params.items())
    )
    canonical = '\n'.join([verb, host.lower(), path, encoded])
    digest = hmac.new(SECRET.encode('utf-8'), canonical.encode('utf-8'), hashlib.sha1).digest()
    return base64.b64encode(digest).decode('utf-8')


def ec2_connection(transport, **kwargs):
    return Connection('AKIDEXAMPLE', SECRET, 'ec2.amazonaws.com', '2011-12-15', transport=transport, **kwargs)


def sent_params(transport, index=0):
    return dict(parse_qsl(urlsplit(transport.calls[index]['url']).query))


class TestConnectionFactory:
    """Test Connection construction and request()."""

    def test_defaults(self):
        connection = Connection('AKID', 'secret', 'ec2.amazonaws.com', '2011-12-15')

        assert connection.region == 'us-east-1'
        assert connection.base_path == '/'
        assert connection.protocol == 'https'
        assert connection.port == 443
        assert connection.credentials == Credentials(key='AKID', secret='secret')

    def test_request_is_bound_to_connection(self):
        connection = Connection(
            'AKID', 'secret', 'dynamodb.eu-west-1.amazonaws.com', '2012-08-10',
            region='eu-west-1', name='DynamoDB', signature_version=4, content_type='json'
        )

        request = connection.request('/tables')

        assert isinstance(request, Request)
        assert request.host == 'dynamodb.eu-west-1.amazonaws.com'
        assert request.path == '/tables'
        assert request.version == '2012-08-10'
        assert request.region == 'eu-west-1'
        assert request.service_name == 'DynamoDB'
        assert request.signature_version == 4
        assert request.is_json
        assert request.credentials is connection.credentials
        assert request.transport is connection.transport

    def test_request_does_not_mutate_connection(self):
        connection = Connection('AKID', 'secret', 'example.com', '2011-01-01', base_path='/base')

        first = connection.request('/one')
        second = connection.request()

        assert first.path == '/one'
        assert second.path == '/base'
        assert connection.base_path == '/base'
        assert first is not second

    def test_config_drives_defaults(self):
        config = ClientConfig({'region': 'ap-southeast-2', 'protocol': 'http', 'signatureVersion': 4, 'strictErrors': True})

        connection = Connection('AKID', 'secret', 'example.com', '2011-01-01', config=config)

        assert connection.region == 'ap-southeast-2'
        assert connection.protocol == 'http'
        assert connection.port == 80
        assert connection.signature_version == 4
        assert connection.strict_errors
        assert connection.transport.timeout == config.timeout

    def test_from_credentials_keeps_session_token(self):
        credentials = Credentials(key='AKID', secret='secret', session_token='token')

        connection = Connection.from_credentials(credentials, 'example.com', '2011-01-01')

        assert connection.credentials == credentials

    def test_get_signature(self):
        connection = Connection('AKIDEXAMPLE', SECRET, 'Example.com', '2011-01-01')
        params = {'B': 2, 'A': 1}

        signature = connection.get_signature('GET', params)

        assert signature == expected_signature('GET', 'Example.com', '/', params)

    def test_get_signature_ignores_existing_signature(self):
        connection = Connection('AKIDEXAMPLE', SECRET, 'example.com', '2011-01-01')

        assert connection.get_signature('GET', {'A': 1, 'Signature': 'stale'}) == \
            connection.get_signature('GET', {'A': 1})


@pytest.mark.integration
class TestMakeRequest:
    """Test the query-protocol make_request path."""

    def test_get_signs_and_decodes(self, make_transport, no_sleep):
        transport = make_transport([HttpResponse(200, {'Content-Type': 'text/xml'}, REGIONS_BODY)])
        connection = ec2_connection(transport)

        with patch('plata.signing.iso_timestamp', return_value=TIMESTAMP):
            result = asyncio.run(connection.make_request('DescribeRegions'))

        regions = result['describeRegionsResponse']['regionInfo']['item']
        assert [region['regionName'] for region in regions] == ['us-east-1', 'eu-west-1']

        sent = transport.calls[0]
        assert sent['method'] == 'GET'
        assert sent['body'] is None
        assert sent['url'].startswith('https://ec2.amazonaws.com/?')

        params = sent_params(transport)
        signature = params.pop('Signature')
        assert params == {
            'AWSAccessKeyId': 'AKIDEXAMPLE',
            'Action': 'DescribeRegions',
            'SignatureMethod': 'HmacSHA1',
            'SignatureVersion': '2',
            'Timestamp': TIMESTAMP,
            'Version': '2011-12-15',
        }
        assert signature == expected_signature('GET', 'ec2.amazonaws.com', '/', params)

    def test_query_string_is_sorted(self, make_transport, no_sleep):
        transport = make_transport([HttpResponse(200, {}, REGIONS_BODY)])
        connection = ec2_connection(transport)

        asyncio.run(connection.make_request('DescribeInstances', {'InstanceId.1': 'i-1234', 'Zeta': 'z'}))

        keys = [key for key, _ in parse_qsl(urlsplit(transport.calls[0]['url']).query)]
        assert keys == sorted(keys)
        assert 'InstanceId.1' in keys

    def test_post_sends_form_body(self, make_transport, no_sleep):
        transport = make_transport([HttpResponse(200, {}, REGIONS_BODY)])
        connection = ec2_connection(transport)

        with patch('plata.signing.iso_timestamp', return_value=TIMESTAMP):
            asyncio.run(connection.make_request('DescribeRegions', verb='POST', headers={'X-Trace': 'abc'}))

        sent = transport.calls[0]
        assert sent['method'] == 'POST'
        assert sent['url'] == 'https://ec2.amazonaws.com/'
        assert sent['headers']['Content-Type'] == FORM_CONTENT_TYPE
        assert sent['headers']['Content-Length'] == str(len(sent['body'].encode('utf-8')))
        assert sent['headers']['X-Trace'] == 'abc'

        params = dict(parse_qsl(sent['body']))
        signature = params.pop('Signature')
        assert signature == expected_signature('POST', 'ec2.amazonaws.com', '/', params)

    def test_path_is_per_call(self, make_transport, no_sleep):
        transport = make_transport([HttpResponse(200, {}, REGIONS_BODY)])
        connection = ec2_connection(transport)

        asyncio.run(connection.make_request('DescribeRegions', path='/v2/'))

        assert urlsplit(transport.calls[0]['url']).path == '/v2/'
        assert connection.base_path == '/'

    def test_callback_result_is_returned(self, make_transport, no_sleep):
        transport = make_transport([HttpResponse(200, {}, REGIONS_BODY)])
        connection = ec2_connection(transport)

        result = asyncio.run(connection.make_request(
            'DescribeRegions',
            callback=lambda body: body['describeRegionsResponse']['requestId']
        ))

        assert result == '59dbff89-35bd-4eac-99ed-be587EXAMPLE'

    def test_caller_params_are_not_mutated(self, make_transport, no_sleep):
        transport = make_transport([HttpResponse(200, {}, REGIONS_BODY)])
        connection = ec2_connection(transport)
        params = {'RegionName.1': 'us-east-1'}

        asyncio.run(connection.make_request('DescribeRegions', params))

        assert params == {'RegionName.1': 'us-east-1'}

    def test_retryable_error_uses_linear_backoff(self, make_transport, xml_error, no_sleep):
        transport = make_transport([
            xml_error('InternalFailure', status=500),
            xml_error('ServiceUnavailableException', status=503),
            HttpResponse(200, {}, REGIONS_BODY)
        ])
        connection = ec2_connection(transport)

        result = asyncio.run(connection.make_request('DescribeRegions'))

        assert 'describeRegionsResponse' in result
        assert len(transport.calls) == 3
        assert no_sleep.await_args_list == [call(0.05), call(0.15)]

    def test_each_retry_is_signed_again(self, make_transport, xml_error, no_sleep):
        transport = make_transport([
            xml_error('InternalFailure', status=500),
            HttpResponse(200, {}, REGIONS_BODY)
        ])
        connection = ec2_connection(transport)

        with patch('plata.signing.iso_timestamp', side_effect=['2013-04-15T10:20:30Z', '2013-04-15T10:20:31Z']):
            asyncio.run(connection.make_request('DescribeRegions'))

        first, second = sent_params(transport, 0), sent_params(transport, 1)
        assert first['Timestamp'] != second['Timestamp']
        assert first['Signature'] != second['Signature']

    def test_retry_ceiling(self, make_transport, xml_error, no_sleep):
        transport = make_transport([xml_error('InternalFailure', status=500) for _ in range(6)])
        connection = ec2_connection(transport)

        with pytest.raises(RetriesExhaustedError) as exc_info:
            asyncio.run(connection.make_request('DescribeRegions'))

        assert exc_info.value.code == 'InternalFailure'
        assert exc_info.value.attempts == 6
        assert len(transport.calls) == 6
        assert no_sleep.await_args_list == [call(0.05), call(0.15), call(0.25), call(0.35), call(0.45)]

    def test_non_retryable_error_is_raised(self, make_transport, xml_error, no_sleep):
        transport = make_transport([xml_error('AuthFailure', 'AWS was not able to validate the credentials', 401)])
        connection = ec2_connection(transport)

        with pytest.raises(ClientError) as exc_info:
            asyncio.run(connection.make_request('DescribeRegions'))

        assert exc_info.value.code == 'AuthFailure'
        assert exc_info.value.message == 'AWS was not able to validate the credentials'
        assert len(transport.calls) == 1
        no_sleep.assert_not_awaited()

    def test_unrecognized_error_body_passes_through(self, make_transport, no_sleep):
        body = '<Response><Errors><Error><Code>InvalidAction</Code></Error></Errors></Response>'
        transport = make_transport([HttpResponse(400, {}, body)])
        connection = ec2_connection(transport)

        result = asyncio.run(connection.make_request('Bogus'))

        assert result == {'response': {'errors': {'error': {'code': 'InvalidAction'}}}}
        assert len(transport.calls) == 1

    def test_unrecognized_error_body_raises_when_strict(self, make_transport, no_sleep):
        body = '<Response><Errors><Error><Code>InvalidAction</Code></Error></Errors></Response>'
        transport = make_transport([HttpResponse(400, {}, body)])
        connection = ec2_connection(transport, strict_errors=True)

        with pytest.raises(ClientError) as exc_info:
            asyncio.run(connection.make_request('Bogus'))

        assert exc_info.value.code == 'Response'
        assert exc_info.value.status_code == 400

    def test_transport_error_is_raised(self, make_transport, no_sleep):
        transport = make_transport([TransportError('ConnectTimeout: timed out')])
        connection = ec2_connection(transport)

        with pytest.raises(TransportError):
            asyncio.run(connection.make_request('DescribeRegions'))

        assert len(transport.calls) == 1

    def test_starting_retry_count_shortens_the_budget(self, make_transport, xml_error, no_sleep):
        transport = make_transport([xml_error('InternalFailure', status=500) for _ in range(2)])
        connection = ec2_connection(transport)

        with pytest.raises(RetriesExhaustedError) as exc_info:
            asyncio.run(connection.make_request('DescribeRegions', retries=4))

        assert exc_info.value.attempts == 6
        assert len(transport.calls) == 2
        assert no_sleep.await_args_list == [call(0.45)]


class RoutingTransport:
    """Serves a separate response queue per ``Action``, safe to call from worker threads."""

    def __init__(self, routes):
        self.routes = {action: list(responses) for action, responses in routes.items()}
        self.calls = []
        self._lock = threading.Lock()

    def send(self, method, url, headers=None, body=None):
        params = dict(parse_qsl(urlsplit(url).query))
        with self._lock:
            self.calls.append(params)
            return self.routes[params['Action']].pop(0)


@pytest.mark.integration
class TestConcurrentCalls:
    """Test several calls in flight on one connection."""

    def test_calls_share_no_mutable_state(self, xml_error, no_sleep):
        def ok(name):
            return HttpResponse(200, {'Content-Type': 'text/xml'}, f'<Result><name>{name}</name></Result>')

        transport = RoutingTransport({
            'ListQueues': [xml_error('ThrottlingException', status=400), xml_error('ThrottlingException', status=400), ok('a')],
            'GetQueueUrl': [ok('b')],
            'DescribeRegions': [xml_error('InternalFailure', status=500), ok('c')],
            'DescribeInstances': [ok('d')],
        })
        connection = ec2_connection(transport, base_path='/base/')
        before = dict(vars(connection))

        throttled = connection.request().get()
        throttled.params['Action'] = 'ListQueues'
        direct = connection.request().get()
        direct.params['Action'] = 'GetQueueUrl'

        async def run_all():
            return await asyncio.gather(
                throttled.exec(),
                direct.exec(),
                connection.make_request('DescribeRegions', {'Name': 'c'}),
                connection.make_request('DescribeInstances', {'Name': 'd'}),
            )

        results = asyncio.run(run_all())

        assert [result['result']['name'] for result in results] == ['a', 'b', 'c', 'd']

        assert throttled.retries == 2
        assert [error.code for error in throttled.retry_log] == ['ThrottlingException'] * 2
        assert direct.retries == 0
        assert direct.retry_log == []
        assert direct.last_error is None

        for params in transport.calls:
            signature = params.pop('Signature')
            assert signature == expected_signature('GET', 'ec2.amazonaws.com', '/base/', params)
            if params['Action'] == 'DescribeRegions':
                assert params['Name'] == 'c'
            elif params['Action'] == 'DescribeInstances':
                assert params['Name'] == 'd'
            else:
                assert 'Name' not in params
        assert len(transport.calls) == 7

        assert vars(connection) == before
        assert connection.base_path == '/base/'
