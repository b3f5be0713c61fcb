import pytest
import requests

from tibber_sdk.client import TibberApiClient
from tibber_sdk.errors import ApplicationError, TibberApiError, TibberApiHttpError


def viewer_response(mocker, homes, url='wss://api.tibber.com/v1-beta/gql/subscriptions'):
    mock_response = mocker.Mock()
    mock_response.ok = True
    mock_response.json.return_value = {
        'data': {
            'viewer': {
                'websocketSubscriptionUrl': url,
                'homes': homes
            }
        }
    }
    return mock_response


def home(home_id, enabled):
    return {
        'id': home_id,
        'appNickname': 'Test Home',
        'features': {
            'realTimeConsumptionEnabled': enabled
        }
    }


@pytest.mark.asyncio
async def test_validate_realtime_device_success(mocker):
    """Test successful Tibber HTTP bootstrap"""
    mock_post = mocker.patch(
        'tibber_sdk.client.requests.post',
        return_value=viewer_response(mocker, [home('home-1', False), home('home-2', True)])
    )

    client = TibberApiClient(token='test-token')
    device = await client.validate_realtime_device()

    # Verify HTTP call was made
    mock_post.assert_called_once()
    call_args = mock_post.call_args
    assert 'Bearer test-token' in call_args[1]['headers']['Authorization']
    assert 'websocketSubscriptionUrl' in call_args[1]['json']['query']

    assert device.websocket_subscription_url == 'wss://api.tibber.com/v1-beta/gql/subscriptions'
    assert device.home_ids == ('home-2',)
    assert device.eligible is True


@pytest.mark.asyncio
async def test_validate_realtime_device_no_pulse(mocker):
    """No home with realTimeConsumptionEnabled is an application error"""
    mocker.patch('tibber_sdk.client.requests.post', return_value=viewer_response(mocker, [home('home-1', False)]))

    client = TibberApiClient(token='test-token')

    with pytest.raises(ApplicationError):
        await client.validate_realtime_device()


@pytest.mark.asyncio
async def test_validate_realtime_device_no_homes(mocker):
    mocker.patch('tibber_sdk.client.requests.post', return_value=viewer_response(mocker, []))

    with pytest.raises(ApplicationError):
        await TibberApiClient(token='test-token').validate_realtime_device()


@pytest.mark.asyncio
async def test_validate_realtime_device_no_url(mocker):
    mocker.patch(
        'tibber_sdk.client.requests.post',
        return_value=viewer_response(mocker, [home('home-1', True)], url=None)
    )

    with pytest.raises(ApplicationError):
        await TibberApiClient(token='test-token').validate_realtime_device()


@pytest.mark.asyncio
async def test_graphql_errors_are_raised(mocker):
    mock_response = mocker.Mock()
    mock_response.ok = True
    mock_response.json.return_value = {
        'errors': [{'message': 'invalid token', 'locations': [{'line': 1, 'column': 2}]}]
    }
    mocker.patch('tibber_sdk.client.requests.post', return_value=mock_response)

    with pytest.raises(TibberApiError) as exc_info:
        await TibberApiClient(token='test-token').validate_realtime_device()

    assert 'invalid token (locations: line: 1, column: 2)' in str(exc_info.value)


@pytest.mark.asyncio
async def test_http_status_failure(mocker):
    mock_response = mocker.Mock()
    mock_response.ok = False
    mock_response.status_code = 401
    mock_response.reason = 'Unauthorized'
    mock_response.text = '{"message": "bad token"}'
    mocker.patch('tibber_sdk.client.requests.post', return_value=mock_response)

    with pytest.raises(TibberApiHttpError) as exc_info:
        await TibberApiClient(token='test-token').query('{ viewer { name } }')

    error = exc_info.value
    assert error.status_code == 401
    assert error.method == 'POST'
    assert 'Status: Unauthorized (401)' in str(error)
    assert 'bad token' in str(error)


@pytest.mark.asyncio
async def test_http_transport_failure(mocker):
    mocker.patch('tibber_sdk.client.requests.post', side_effect=requests.ConnectionError('unreachable'))

    with pytest.raises(TibberApiHttpError) as exc_info:
        await TibberApiClient(token='test-token').mutation('mutation { x }')

    assert exc_info.value.status_code is None
    assert isinstance(exc_info.value.__cause__, requests.ConnectionError)


def test_token_required():
    with pytest.raises(ValueError):
        TibberApiClient(token='  ')


@pytest.mark.asyncio
async def test_listener_calls_are_delegated(mocker):
    client = TibberApiClient(token='test-token')
    subscribe = mocker.patch.object(client.listener, 'subscribe_home', new=mocker.AsyncMock(return_value='stream'))
    unsubscribe = mocker.patch.object(client.listener, 'unsubscribe_home', new=mocker.AsyncMock())

    assert await client.start_real_time_measurement_listener('home-1', fields=['power']) == 'stream'
    await client.stop_real_time_measurement_listener('home-1')

    subscribe.assert_awaited_once_with('home-1', fields=['power'], timeout=30.0)
    unsubscribe.assert_awaited_once_with('home-1')


@pytest.mark.asyncio
async def test_listener_bootstraps_with_fresh_url(mocker):
    """The subscription URL comes from the HTTP bootstrap"""
    mocker.patch(
        'tibber_sdk.client.requests.post',
        return_value=viewer_response(mocker, [home('home-1', True)], url='wss://rotated.example/sub')
    )

    async with TibberApiClient(token='test-token') as client:
        assert await client.listener.endpoint_provider() == 'wss://rotated.example/sub'

    assert client.listener.closed is True
