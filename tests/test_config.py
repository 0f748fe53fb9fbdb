import pytest

from therapynotes.cache import ResponseCache
from therapynotes.client import TherapyNotesClient
from therapynotes.config import ClientSettings, ConfigurationError, validate_config
from therapynotes.selector import BackendSelector


def test_defaults_favour_simulated_backend(monkeypatch):
    monkeypatch.delenv('THERAPYNOTES_API_ENDPOINT')
    monkeypatch.delenv('THERAPYNOTES_STREAMING_API_ENDPOINT')
    monkeypatch.delenv('THERAPYNOTES_SIMULATED_LATENCY')
    settings = ClientSettings.from_env()
    assert settings.use_mock_api is True
    assert settings.use_real_ai is False
    assert settings.api_endpoint == 'http://localhost:3000'
    assert settings.stream_endpoint == 'http://localhost:3000'
    assert settings.simulated_latency == 1.0
    assert settings.simulated_narrative is True
    assert not settings.is_production


@pytest.mark.parametrize('raw,expected', [('1', True), ('TRUE', True), (' yes ', True), ('0', False), ('off', False)])
def test_flag_parsing(monkeypatch, raw, expected):
    monkeypatch.setenv('THERAPYNOTES_USE_REAL_AI', raw)
    assert ClientSettings.from_env().use_real_ai is expected


def test_endpoints_and_latency(monkeypatch):
    monkeypatch.setenv('THERAPYNOTES_API_ENDPOINT', 'https://api.example.test/')
    monkeypatch.delenv('THERAPYNOTES_STREAMING_API_ENDPOINT')
    monkeypatch.setenv('THERAPYNOTES_SIMULATED_LATENCY', '-3')
    settings = ClientSettings.from_env()
    assert settings.api_endpoint == 'https://api.example.test'
    assert settings.stream_endpoint == 'https://api.example.test'
    assert settings.simulated_latency == 0.0

    monkeypatch.setenv('THERAPYNOTES_SIMULATED_LATENCY', 'fast')
    with pytest.raises(ConfigurationError):
        ClientSettings.from_env()


def test_hybrid_requires_demo_endpoint(monkeypatch):
    monkeypatch.setenv('THERAPYNOTES_USE_REAL_AI', 'true')
    assert not ClientSettings.from_env().hybrid_ai
    monkeypatch.setenv('THERAPYNOTES_DEMO_AI_ENDPOINT', 'https://demo.example.test')
    settings = ClientSettings.from_env()
    assert settings.hybrid_ai
    assert not settings.simulated_narrative


def test_debug_mode_with_networked_backend_rejected(monkeypatch):
    monkeypatch.setenv('THERAPYNOTES_DEBUG_MODE', 'true')
    assert validate_config(ClientSettings.from_env()).debug_mode

    monkeypatch.setenv('THERAPYNOTES_USE_MOCK_API', 'false')
    with pytest.raises(ConfigurationError):
        validate_config(ClientSettings.from_env())
    with pytest.raises(ConfigurationError):
        TherapyNotesClient()


def test_selector_reads_flag_on_every_call(monkeypatch):
    simulated, networked = object(), object()
    selector = BackendSelector(simulated, networked)
    assert selector.backend() is simulated
    monkeypatch.setenv('THERAPYNOTES_USE_MOCK_API', 'no')
    assert selector.backend() is networked
    assert selector.narrative_backend() is networked
    monkeypatch.setenv('THERAPYNOTES_USE_MOCK_API', 'yes')
    monkeypatch.setenv('THERAPYNOTES_USE_REAL_AI', 'yes')
    assert selector.backend() is simulated
    assert selector.narrative_backend() is networked


def test_cache_entries_expire():
    now = [1000.0]
    cache = ResponseCache(clock=lambda: now[0])
    cache.set('clients', ['a'], 300)
    cache.set('settings:dashboard', {'x': 1}, 1800)
    cache.set('settings:interventions', {'y': 2}, 1800)

    now[0] += 299
    assert cache.get('clients') == ['a']
    now[0] += 1
    assert cache.get('clients') is None

    cache.invalidate_prefix('settings:')
    assert len(cache) == 0
    assert cache.get('settings:dashboard') is None
