import asyncio

import jwt
import pytest

from fake_service import make_token
from therapynotes.errors import ApiError
from therapynotes.token_store import ACCESS_TOKEN, ID_TOKEN, REFRESH_TOKEN, TokenStore
from therapynotes.tokens import TokenLifecycle, is_usable, token_expiry

NOW = 1_700_000_000


def test_usable_only_outside_buffer():
    token = make_token(1000, now=NOW)
    expiry = NOW + 1000
    assert is_usable(token, 300, now=expiry - 301)
    assert not is_usable(token, 300, now=expiry - 300)
    assert not is_usable(token, 300, now=expiry + 5)
    assert is_usable(token, 0, now=expiry - 1)


def test_unreadable_tokens_are_unusable():
    assert not is_usable(None)
    assert not is_usable('')
    assert not is_usable('not-a-jwt')
    assert not is_usable('a.b.c')
    no_exp = jwt.encode({'sub': 'user-001'}, 'key-for-tokens-without-expiry-claims', algorithm='HS256')
    assert token_expiry(no_exp) is None
    assert not is_usable(no_exp, now=NOW)


@pytest.mark.parametrize('exp', ['soon', True, 10 ** 30, [1]])
def test_unreadable_expiry_claims_are_unusable(exp):
    token = jwt.encode({'sub': 'user-001', 'exp': exp}, 'key-for-tokens-with-odd-expiry-claims', algorithm='HS256')
    assert token_expiry(token) is None
    assert not is_usable(token, now=NOW)


def test_expired_token_still_decodes():
    token = make_token(60, now=NOW - 10_000)
    assert token_expiry(token).timestamp() == NOW - 10_000 + 60


class Exchange:
    def __init__(self, result=None, error=None, delay=0.0):
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = []

    async def __call__(self, refresh_token):
        self.calls.append(refresh_token)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


def _store(**slots):
    store = TokenStore()
    for slot, value in slots.items():
        store.set(slot, value)
    return store


@pytest.mark.asyncio
async def test_refresh_without_refresh_token_never_calls_exchange():
    exchange = Exchange(result={'token': 'new'})
    lifecycle = TokenLifecycle(_store(authToken='old'), exchange)
    assert await lifecycle.refresh() is False
    assert exchange.calls == []
    assert lifecycle.current_token() == 'old'


@pytest.mark.asyncio
async def test_refresh_persists_only_returned_fields():
    store = _store(authToken='old-id', accessToken='old-access', refreshToken='keep-me')
    exchange = Exchange(result={'token': 'new-id', 'accessToken': ''})
    lifecycle = TokenLifecycle(store, exchange)

    assert await lifecycle.refresh() is True
    assert exchange.calls == ['keep-me']
    assert store.get(ID_TOKEN) == 'new-id'
    assert store.get(ACCESS_TOKEN) == 'old-access'
    assert store.get(REFRESH_TOKEN) == 'keep-me'


@pytest.mark.asyncio
@pytest.mark.parametrize('exchange', [Exchange(result=None), Exchange(error=RuntimeError('network down'))])
async def test_failed_refresh_leaves_store_untouched(exchange):
    store = _store(authToken='old-id', refreshToken='r')
    lifecycle = TokenLifecycle(store, exchange)
    assert await lifecycle.refresh() is False
    assert store.get(ID_TOKEN) == 'old-id'
    assert store.get(REFRESH_TOKEN) == 'r'


@pytest.mark.asyncio
async def test_concurrent_refreshes_share_one_exchange():
    exchange = Exchange(result={'token': 'new-id'}, delay=0.01)
    lifecycle = TokenLifecycle(_store(refreshToken='r'), exchange)

    results = await asyncio.gather(*(lifecycle.refresh() for _ in range(5)))
    assert results == [True] * 5
    assert len(exchange.calls) == 1

    assert await lifecycle.refresh() is True
    assert len(exchange.calls) == 2


def test_begin_session_honours_keep_signed_in():
    store = _store(refreshToken='stale')
    lifecycle = TokenLifecycle(store, Exchange())
    lifecycle.begin_session(
        {'token': 'id', 'accessToken': 'access', 'refreshToken': 'fresh', 'user': {'email': 'a@b.c'}},
        keep_signed_in=False,
    )
    assert store.get(ID_TOKEN) == 'id'
    assert store.get(ACCESS_TOKEN) == 'access'
    assert store.get(REFRESH_TOKEN) is None
    assert store.profile() == {'email': 'a@b.c'}

    lifecycle.begin_session({'token': 'id2', 'refreshToken': 'fresh'})
    assert store.get(REFRESH_TOKEN) == 'fresh'

    with pytest.raises(ApiError) as excinfo:
        lifecycle.begin_session({'accessToken': 'only'})
    assert excinfo.value.status == 502
    assert store.get(ID_TOKEN) == 'id2'


def test_end_session_clears_and_notifies_listeners():
    store = _store(authToken='id', refreshToken='r')
    lifecycle = TokenLifecycle(store, Exchange())
    reasons = []

    def broken(reason):
        raise RuntimeError('listener bug')

    lifecycle.add_session_listener(broken)
    lifecycle.add_session_listener(reasons.append)
    lifecycle.end_session('retry_unauthorized')

    assert reasons == ['retry_unauthorized']
    assert store.credentials().id_token is None
    assert store.credentials().refresh_token is None


def test_clear_does_not_notify():
    lifecycle = TokenLifecycle(_store(authToken='id'), Exchange())
    reasons = []
    lifecycle.add_session_listener(reasons.append)
    lifecycle.clear()
    assert reasons == []
    assert lifecycle.current_token() is None
