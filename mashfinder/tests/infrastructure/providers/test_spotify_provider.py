import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from unittest.mock import Mock, patch

import pytest
import requests
import spotipy

from mashfinder.application.discovery import SOURCE_FALLBACK, DiscoveryService
from mashfinder.application.estimation import estimate_features
from mashfinder.domain.entities import DataSource
from mashfinder.domain.errors import (
    ConfigurationMissing, ProviderRateLimited, ProviderUnauthorized, ProviderUnreachable,
)
from mashfinder.infrastructure.cache import TokenCache
from mashfinder.infrastructure.providers.spotify import (
    MAX_QUERIES, SpotifyCatalog, build_search_queries, is_plausible_song,
)
from mashfinder.infrastructure.session import get_session


def _item(id, name='Song', artist='Artist', duration_ms=200000, album='Album'):
    return {
        'id': id,
        'name': name,
        'artists': [{'name': artist}, {'name': 'Guest'}],
        'album': {'name': album, 'images': [{'url': f'https://img/{id}'}]},
        'duration_ms': duration_ms,
        'preview_url': None,
        'external_urls': {'spotify': f'https://open.spotify.com/track/{id}'},
    }


def _token_response(status=200, payload=None, headers=None):
    response = Mock()
    response.status_code = status
    response.json.return_value = payload or {'access_token': 'tok', 'expires_in': 3600}
    response.headers = headers or {}
    return response


class TestBuildSearchQueries:
    """Tests for compatibility search query generation."""

    def test_default_queries_are_bounded(self):
        queries = build_search_queries()

        assert len(queries) == MAX_QUERIES
        assert queries[0] == 'pop genre:pop year:2020-2024'
        assert queries[1] == 'pop genre:pop year:2015-2019'
        assert queries[2] == 'pop genre:rock year:2020-2024'

    def test_terms_and_genre(self):
        queries = build_search_queries('daft punk', 'house')

        assert queries == [
            'daft punk genre:house year:2020-2024',
            'daft punk genre:house year:2015-2019',
            'daft punk',
            'daft punk genre:house',
        ]

    def test_genre_only(self):
        queries = build_search_queries(genre='jazz')
        assert all('genre:jazz' in q for q in queries)


class TestIsPlausibleSong:
    """Tests for the content filter."""

    def test_normal_song(self):
        assert is_plausible_song(_item('a'))

    def test_excluded_terms(self):
        assert not is_plausible_song(_item('a', name='Song (Karaoke)'))
        assert not is_plausible_song(_item('a', album='Rain Nature Sounds'))

    def test_duration_bounds(self):
        assert not is_plausible_song(_item('a', duration_ms=60000))
        assert not is_plausible_song(_item('a', duration_ms=9 * 60 * 1000))


class TestSpotifyCatalog:
    """Contract tests for the Spotify metadata adapter."""

    def setup_method(self):
        """Set up test fixtures."""
        self.spotify_patcher = patch('mashfinder.infrastructure.providers.spotify.spotipy.Spotify')
        self.mock_spotify_class = self.spotify_patcher.start()

        self.session = Mock()
        self.session.post.return_value = _token_response()
        self.client = Mock()
        self.client.audio_features.return_value = []
        self.mock_spotify_class.return_value = self.client

        self.catalog = SpotifyCatalog(
            'id', 'secret', token_cache=TokenCache(clock=lambda: 1000.0), session=self.session)

    def teardown_method(self):
        """Clean up test fixtures."""
        self.spotify_patcher.stop()

    def test_missing_credentials(self):
        catalog = SpotifyCatalog(None, 'secret', session=self.session)

        with pytest.raises(ConfigurationMissing) as exc_info:
            catalog.search('song')

        assert exc_info.value.setting == 'SPOTIFY_CLIENT_ID'
        self.session.post.assert_not_called()

    def test_token_request(self):
        self.client.search.return_value = {'tracks': {'items': []}}

        self.catalog.search('song')

        args, kwargs = self.session.post.call_args
        assert args[0] == 'https://accounts.spotify.com/api/token'
        assert kwargs['data'] == {'grant_type': 'client_credentials'}
        assert kwargs['auth'] == ('id', 'secret')
        self.mock_spotify_class.assert_called_once_with(
            auth='tok', requests_session=self.session, requests_timeout=10)

    def test_token_is_reused(self):
        self.client.search.return_value = {'tracks': {'items': []}}

        self.catalog.search('one')
        self.catalog.search('two')

        assert self.session.post.call_count == 1
        assert self.mock_spotify_class.call_count == 1

    def test_token_rejected(self):
        self.session.post.return_value = _token_response(status=400)
        with pytest.raises(ProviderUnauthorized):
            self.catalog.search('song')

    def test_token_rate_limited(self):
        self.session.post.return_value = _token_response(status=429, headers={'Retry-After': '2'})

        with pytest.raises(ProviderRateLimited) as exc_info:
            self.catalog.search('song')

        assert exc_info.value.retry_after_ms == 2000

    def test_token_network_error(self):
        self.session.post.side_effect = requests.exceptions.ConnectionError('down')
        with pytest.raises(ProviderUnreachable):
            self.catalog.search('song')

    def test_token_body_is_not_json(self):
        response = _token_response()
        response.json.side_effect = ValueError('Expecting value')
        self.session.post.return_value = response

        with pytest.raises(ProviderUnreachable):
            self.catalog.search('song')

        self.mock_spotify_class.assert_not_called()

    def test_token_payload_without_access_token(self):
        self.session.post.return_value = _token_response(payload={'token_type': 'Bearer'})

        with pytest.raises(ProviderUnreachable, match="Malformed token response"):
            self.catalog.search('song')

    def test_default_session_only_retries_connections(self):
        catalog = SpotifyCatalog('id', 'secret')

        retries = catalog._session.get_adapter('https://api.spotify.com').max_retries
        assert retries.connect == 1
        assert retries.read == 0
        assert retries.status == 0

    def test_search_with_measured_features(self):
        self.client.search.return_value = {'tracks': {'items': [_item('t1', name='Hello')]}}
        self.client.audio_features.return_value = [{'id': 't1', 'tempo': 119.6, 'key': 9, 'mode': 0}]

        tracks = self.catalog.search('hello')

        assert len(tracks) == 1
        track = tracks[0]
        assert track.bpm == 120
        assert track.key == 'A minor'
        assert track.data_source == DataSource.MEASURED
        assert track.artist == 'Artist, Guest'
        assert track.duration == 200
        assert track.album_art == 'https://img/t1'
        assert track.spotify_url == 'https://open.spotify.com/track/t1'
        self.client.search.assert_called_once_with(q='hello', type='track', limit=20, market='US')

    def test_search_estimates_when_features_forbidden(self):
        self.client.search.return_value = {'tracks': {'items': [_item('t1', name='Hello')]}}
        self.client.audio_features.side_effect = spotipy.SpotifyException(403, -1, 'forbidden')

        tracks = self.catalog.search('hello')

        expected = estimate_features('Hello', 'Artist')
        assert tracks[0].bpm == expected.bpm
        assert tracks[0].key == expected.key
        assert tracks[0].data_source == DataSource.ESTIMATED

    def test_search_unauthorized(self):
        self.client.search.side_effect = spotipy.SpotifyException(401, -1, 'expired')
        with pytest.raises(ProviderUnauthorized):
            self.catalog.search('song')

    def test_search_rate_limited(self):
        self.client.search.side_effect = spotipy.SpotifyException(
            429, -1, 'slow down', headers={'Retry-After': '3'})

        with pytest.raises(ProviderRateLimited) as exc_info:
            self.catalog.search('song')

        assert exc_info.value.retry_after_ms == 3000

    def test_search_server_error(self):
        self.client.search.side_effect = spotipy.SpotifyException(502, -1, 'bad gateway')
        with pytest.raises(ProviderUnreachable):
            self.catalog.search('song')

    def test_fetch_dedupes_and_filters(self):
        self.client.search.return_value = {'tracks': {'items': [
            _item('t1'),
            _item('skip'),
            _item('t2', name='Song (Karaoke)'),
            _item('t3', duration_ms=30000),
            _item('t4'),
        ]}}

        tracks = self.catalog.fetch_by_tempo_and_key(120, exclude_id='skip')

        assert [t.id for t in tracks] == ['t1', 't4']
        assert self.client.search.call_count == MAX_QUERIES

    def test_fetch_skips_failing_queries(self):
        responses = [requests.exceptions.ReadTimeout('slow')] + [
            {'tracks': {'items': [_item('t1')]}}] * (MAX_QUERIES - 1)
        self.client.search.side_effect = responses

        tracks = self.catalog.fetch_by_tempo_and_key(120)

        assert [t.id for t in tracks] == ['t1']

    def test_fetch_raises_when_every_query_fails(self):
        self.client.search.side_effect = requests.exceptions.ConnectionError('down')
        with pytest.raises(ProviderUnreachable):
            self.catalog.fetch_by_tempo_and_key(120)

    def test_fetch_aborts_on_auth_error(self):
        self.client.search.side_effect = spotipy.SpotifyException(403, -1, 'forbidden')

        with pytest.raises(ProviderUnauthorized):
            self.catalog.fetch_by_tempo_and_key(120)

        assert self.client.search.call_count == 1

    def test_from_config(self):
        config = Mock()
        config.get_settings.return_value = Mock(
            spotify_client_id='cid', spotify_client_secret='sec', token_refresh_margin=120,
            market='GB', search_limit=10, request_timeout=5)

        catalog = SpotifyCatalog.from_config(config)

        assert catalog.is_configured
        assert catalog.token_cache.refresh_margin_s == 120


class _StubSpotifyHandler(BaseHTTPRequestHandler):
    """Accounts and Web API stand-in: tokens always succeed, API calls fail."""

    def do_POST(self):
        self.rfile.read(int(self.headers.get('Content-Length') or 0))
        self.server.requests.append(('POST', self.path))
        self._send(200, {'access_token': 'tok', 'token_type': 'Bearer', 'expires_in': 3600})

    def do_GET(self):
        self.server.requests.append(('GET', self.path))
        self._send(self.server.api_status, {'error': {'status': self.server.api_status, 'message': 'stub'}},
                   self.server.api_headers)

    def _send(self, status, body, headers=None):
        data = json.dumps(body).encode()
        self.send_response(status)
        self.send_header('Content-Type', 'application/json')
        self.send_header('Content-Length', str(len(data)))
        for name, value in (headers or {}).items():
            self.send_header(name, value)
        self.end_headers()
        self.wfile.write(data)

    def log_message(self, format, *args):
        pass


class TestSpotifyCatalogOverHTTP:
    """Runs the real spotipy client against a local server returning HTTP errors."""

    def setup_method(self):
        """Start the stub server."""
        self.server = ThreadingHTTPServer(('127.0.0.1', 0), _StubSpotifyHandler)
        self.server.requests = []
        self.server.api_status = 503
        self.server.api_headers = {}
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self.thread.start()

        base = f"http://127.0.0.1:{self.server.server_address[1]}"
        session = get_session()
        session.trust_env = False
        self.catalog = SpotifyCatalog(
            'id', 'secret',
            session=session,
            request_timeout=5,
            token_url=f"{base}/api/token",
            api_prefix=f"{base}/v1/",
        )

    def teardown_method(self):
        """Stop the stub server."""
        self.server.shutdown()
        self.server.server_close()

    def _api_calls(self):
        return [path for method, path in self.server.requests if method == 'GET']

    def test_server_error_is_unreachable(self):
        with pytest.raises(ProviderUnreachable) as exc_info:
            self.catalog.search('stay')

        assert exc_info.value.status == 503
        assert len(self._api_calls()) == 1

    def test_rate_limit_keeps_retry_after(self):
        self.server.api_status = 429
        self.server.api_headers = {'Retry-After': '7'}

        with pytest.raises(ProviderRateLimited) as exc_info:
            self.catalog.search('stay')

        assert exc_info.value.retry_after_ms == 7000

    def test_server_errors_skip_each_query(self):
        with pytest.raises(ProviderUnreachable):
            self.catalog.fetch_by_tempo_and_key(120)

        assert len(self._api_calls()) == MAX_QUERIES

    def test_discovery_falls_back_without_warning(self):
        outcome = DiscoveryService(self.catalog).search('stay')

        assert outcome.source == SOURCE_FALLBACK
        assert outcome.warning is None
        assert [t.id for t in outcome.tracks] == ['5']
