import httpx
import pytest

from fake_service import make_token, sign_in
from therapynotes.client import TherapyNotesClient
from therapynotes.config import ClientSettings
from therapynotes.errors import ApiError, SessionExpiredError
from therapynotes.pipeline import TEST_ROLE_HEADER, RequestDescriptor
from therapynotes.token_store import ID_TOKEN, REFRESH_TOKEN

STATUS = ('GET', '/auth/mfa/status')
REFRESH = ('POST', '/auth/refresh')


def _signed_in(make_client, service, token=None):
    api = make_client()
    api.store.set(ID_TOKEN, token or service.issue_token())
    api.store.set(REFRESH_TOKEN, 'refresh-1')
    return api


@pytest.mark.asyncio
async def test_usable_token_sent_as_bearer(networked, make_client, service):
    token = service.issue_token()
    api = _signed_in(make_client, service, token)
    assert await api.get_mfa_status() == {'mfaEnabled': True}
    assert service.calls() == [STATUS]
    assert service.requests[0].headers['Authorization'] == f'Bearer {token}'
    assert service.refresh_calls == 0


@pytest.mark.asyncio
async def test_unauthorized_triggers_refresh_and_single_retry(networked, make_client, service):
    revoked = make_token()
    api = _signed_in(make_client, service, revoked)

    assert await api.get_mfa_status() == {'mfaEnabled': True}

    assert service.calls() == [STATUS, REFRESH, STATUS]
    retried = service.requests[-1].headers['Authorization']
    assert retried != f'Bearer {revoked}'
    assert api.store.get(ID_TOKEN) == retried.split(' ', 1)[1]


@pytest.mark.asyncio
async def test_second_unauthorized_ends_session(networked, make_client, service):
    api = make_client()
    await sign_in(api)
    credentials = api.store.credentials()
    assert credentials.access_token and credentials.refresh_token and credentials.cached_profile
    service.requests.clear()
    ended = []
    api.add_session_listener(ended.append)
    service.queue('GET', '/auth/mfa/status', httpx.Response(401, json={'message': 'nope'}))
    service.queue('GET', '/auth/mfa/status', httpx.Response(401, json={'message': 'nope'}))

    with pytest.raises(SessionExpiredError) as excinfo:
        await api.get_mfa_status()

    assert excinfo.value.status == 401
    assert service.calls() == [STATUS, REFRESH, STATUS]
    assert ended == ['retry_unauthorized']
    assert api.store.credentials().id_token is None
    assert api.store.credentials().refresh_token is None
    assert api.store.credentials().access_token is None
    assert api.store.credentials().cached_profile is None


@pytest.mark.asyncio
async def test_unauthorized_with_failed_refresh_is_not_retried(networked, make_client, service):
    api = _signed_in(make_client, service, make_token())
    service.refresh_enabled = False

    with pytest.raises(SessionExpiredError):
        await api.get_mfa_status()

    assert service.calls() == [STATUS, REFRESH]
    assert not api.is_logged_in()


@pytest.mark.asyncio
async def test_expiring_token_refreshed_before_request(networked, make_client, service):
    api = _signed_in(make_client, service, service.issue_token(lifetime=120))

    await api.get_mfa_status()

    assert service.calls() == [REFRESH, STATUS]
    assert service.requests[-1].headers['Authorization'] == f'Bearer {api.store.get(ID_TOKEN)}'


@pytest.mark.asyncio
async def test_proactive_refresh_failure_sends_nothing(networked, make_client, service):
    api = _signed_in(make_client, service, make_token(lifetime=-60))
    service.refresh_enabled = False
    ended = []
    api.add_session_listener(ended.append)

    with pytest.raises(SessionExpiredError):
        await api.documents.list('client-001')

    assert service.calls() == [REFRESH]
    assert ended == ['refresh_failed']
    assert not api.is_logged_in()


@pytest.mark.asyncio
async def test_no_credentials_fails_without_network(networked, make_client, service):
    api = make_client()
    with pytest.raises(SessionExpiredError):
        await api.list_clients()
    assert service.calls() == []


@pytest.mark.asyncio
async def test_other_failures_returned_unchanged(networked, make_client, service):
    api = _signed_in(make_client, service)
    service.queue('GET', '/auth/mfa/status', httpx.Response(500, json={'error': 'boom'}))

    response = await api.pipeline.authenticated_request(RequestDescriptor('GET', '/auth/mfa/status'))
    assert response.status_code == 500
    assert service.refresh_calls == 0

    service.queue('GET', '/auth/mfa/status', httpx.Response(503, json={'message': 'maintenance'}))
    with pytest.raises(ApiError) as excinfo:
        await api.get_mfa_status()
    assert excinfo.value.status == 503
    assert excinfo.value.message == 'maintenance'


@pytest.mark.asyncio
async def test_transport_errors_become_api_errors(networked):
    def handler(request):
        raise httpx.ConnectError('connection refused', request=request)

    api = TherapyNotesClient(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    with pytest.raises(ApiError) as excinfo:
        await api.login('a@b.c', 'pw')
    assert excinfo.value.status == 503


def _settings(**overrides):
    return lambda: ClientSettings(**{'use_mock_api': False, **overrides})


def test_content_type_only_with_body(make_client):
    api = make_client(settings=_settings())
    get_headers = api.pipeline.build_headers(RequestDescriptor('GET', '/clients'), 'tok')
    assert get_headers == {'Authorization': 'Bearer tok'}

    post_headers = api.pipeline.build_headers(RequestDescriptor('POST', '/clients', body={}), 'tok')
    assert post_headers['Content-Type'] == 'application/json'


def test_test_role_header_only_for_networked_authenticated_calls(make_client):
    api = make_client(settings=_settings(test_role='supervisor'))
    privileged = api.pipeline.build_headers(RequestDescriptor('GET', '/clients'), 'tok')
    assert privileged[TEST_ROLE_HEADER] == 'supervisor'

    public = api.pipeline.build_headers(RequestDescriptor('POST', '/auth/login', body={}, requires_auth=False), None)
    assert TEST_ROLE_HEADER not in public
    assert 'Authorization' not in public

    simulated = make_client(settings=lambda: ClientSettings(use_mock_api=True, test_role='supervisor'))
    assert TEST_ROLE_HEADER not in simulated.pipeline.build_headers(RequestDescriptor('GET', '/clients'), 'tok')
