import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

import requests
import spotipy
from urllib3.exceptions import ReadTimeoutError

from mashfinder.application.estimation import estimate_features
from mashfinder.domain.entities import DataSource, Track
from mashfinder.domain.errors import (
    ConfigurationMissing, ProviderError, ProviderRateLimited,
    ProviderUnauthorized, ProviderUnreachable,
)
from mashfinder.domain.keys import key_from_pitch_class
from mashfinder.domain.ports import MetadataProvider
from mashfinder.infrastructure.cache import TokenCache
from mashfinder.infrastructure.session import get_session

logger = logging.getLogger(__name__)

PROVIDER = 'spotify'
TOKEN_URL = 'https://accounts.spotify.com/api/token'

MAX_QUERIES = 8
QUERY_LIMIT = 25
FEATURES_BATCH_SIZE = 100

BASE_TERMS = (
    'pop', 'rock', 'hip hop', 'electronic', 'dance', 'indie', 'alternative',
    'r&b', 'reggaeton', 'latin', 'jazz', 'funk', 'house', 'techno',
)
GENRE_TAGS = (
    'pop', 'rock', 'hip-hop', 'electronic', 'dance', 'indie', 'alternative',
    'r-n-b', 'reggaeton', 'latin', 'jazz', 'funk', 'house', 'techno', 'country',
)
# Recent releases tend to have better audio features
YEAR_WINDOWS = ('2020-2024', '2015-2019')

EXCLUDE_TERMS = (
    'karaoke', 'instrumental version', 'backing track', 'ringtone',
    'sound effect', 'audiobook', 'podcast', 'meditation', 'nature sounds',
)
MIN_SONG_MINUTES = 1.5
MAX_SONG_MINUTES = 8


def build_search_queries(search_terms: Optional[str] = None,
                         genre: Optional[str] = None,
                         max_queries: int = MAX_QUERIES) -> List[str]:
    """Build the bounded list of search queries for a compatibility lookup.

    Free-text terms (or popular genres when none are given) are combined with
    genre tags and release-year windows; at most ``max_queries`` are returned.
    """
    terms = [search_terms] if search_terms else list(BASE_TERMS)
    genres = [genre] if genre else list(GENRE_TAGS)

    queries: List[str] = []
    for term in terms[:3]:
        for genre_tag in genres[:5]:
            for years in YEAR_WINDOWS:
                queries.append(f"{term} genre:{genre_tag} year:{years}")

    # Broader searches without year constraints
    if search_terms:
        queries.append(search_terms)
        if genre:
            queries.append(f"{search_terms} genre:{genre}")

    return queries[:max_queries]


def is_plausible_song(item: Dict[str, Any]) -> bool:
    """Drop non-music content and tracks outside a normal song length."""
    title = (item.get('name') or '').lower()
    album = ((item.get('album') or {}).get('name') or '').lower()
    artists = item.get('artists') or []
    artist = ((artists[0].get('name') if artists else '') or '').lower()

    if any(term in title or term in album or term in artist for term in EXCLUDE_TERMS):
        return False

    minutes = (item.get('duration_ms') or 0) / (1000 * 60)
    return MIN_SONG_MINUTES <= minutes <= MAX_SONG_MINUTES


def _chunks(items: List[str], size: int) -> Iterable[List[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


class SpotifyCatalog(MetadataProvider):
    """Spotify Web API metadata provider using the client-credentials flow."""

    def __init__(self,
                 client_id: Optional[str],
                 client_secret: Optional[str],
                 token_cache: Optional[TokenCache] = None,
                 market: str = 'US',
                 search_limit: int = 20,
                 request_timeout: int = 10,
                 session: Optional[requests.Session] = None,
                 token_url: str = TOKEN_URL,
                 api_prefix: Optional[str] = None):
        """Initialize Spotify catalog.

        Args:
            client_id: Spotify client ID; calls raise ConfigurationMissing when absent
            client_secret: Spotify client secret
            token_cache: Shared token holder; a private one is created when omitted
            market: Market used for searches
            search_limit: Result limit for free-text search
            request_timeout: Timeout in seconds for every outbound call
            session: HTTP session for the token request and the Web API; defaults
                to one that retries connection failures once
            token_url: Accounts service token endpoint
            api_prefix: Web API base URL, spotipy's default when omitted
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_cache = token_cache or TokenCache()
        self._market = market
        self._search_limit = search_limit
        self._request_timeout = request_timeout
        self._session = session or get_session()
        self._token_url = token_url
        self._api_prefix = api_prefix

        self._client: Optional[spotipy.Spotify] = None
        self._client_token: Optional[str] = None

    @classmethod
    def from_config(cls, config, token_cache: Optional[TokenCache] = None) -> 'SpotifyCatalog':
        settings = config.get_settings()
        return cls(
            client_id=settings.spotify_client_id,
            client_secret=settings.spotify_client_secret,
            token_cache=token_cache or TokenCache(settings.token_refresh_margin),
            market=settings.market,
            search_limit=settings.search_limit,
            request_timeout=settings.request_timeout,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    # -- auth -----------------------------------------------------------------

    def _fetch_token(self) -> Tuple[str, int]:
        """Request a new client-credentials token.

        Returns:
            (access_token, expires_in_seconds)
        """
        logger.info("Requesting Spotify access token")
        try:
            response = self._session.post(
                self._token_url,
                data={'grant_type': 'client_credentials'},
                auth=(self.client_id, self.client_secret),
                timeout=self._request_timeout,
            )
        except requests.exceptions.RequestException as e:
            raise ProviderUnreachable(PROVIDER, f"Token request failed: {e}")

        if response.status_code in (400, 401, 403):
            raise ProviderUnauthorized(
                PROVIDER, f"Token request rejected: {response.status_code}", response.status_code)
        if response.status_code == 429:
            raise ProviderRateLimited(PROVIDER, self._retry_after_ms(response.headers))
        if response.status_code != 200:
            raise ProviderUnreachable(
                PROVIDER, f"Token request failed: {response.status_code}", response.status_code)

        try:
            payload = response.json()
            return payload['access_token'], int(payload.get('expires_in', 3600))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise ProviderUnreachable(PROVIDER, f"Malformed token response: {e!r}")

    def _spotify(self) -> spotipy.Spotify:
        """Return a spotipy client bound to a valid token, rebuilding it after refresh."""
        if not self.client_id:
            raise ConfigurationMissing('SPOTIFY_CLIENT_ID')
        if not self.client_secret:
            raise ConfigurationMissing('SPOTIFY_CLIENT_SECRET')

        token = self.token_cache.get_or_fetch(self._fetch_token)
        if self._client is None or token != self._client_token:
            # Retries come from the session; spotipy's own status retries would
            # report every exhausted 5xx as a 429
            self._client = spotipy.Spotify(
                auth=token,
                requests_session=self._session,
                requests_timeout=self._request_timeout,
            )
            if self._api_prefix:
                self._client.prefix = self._api_prefix
            self._client_token = token
        return self._client

    # -- error mapping --------------------------------------------------------

    @staticmethod
    def _retry_after_ms(headers: Optional[Dict[str, Any]]) -> int:
        try:
            return int((headers or {}).get('Retry-After', 1)) * 1000
        except (TypeError, ValueError):
            return 1000

    def _translate_error(self, error: Exception, operation: str) -> ProviderError:
        """Map spotipy / requests exceptions onto domain errors."""
        if isinstance(error, ProviderError):
            return error
        status = getattr(error, 'http_status', None)
        if status in (401, 403):
            return ProviderUnauthorized(PROVIDER, f"{operation} unauthorized: {status}", status)
        if status == 429:
            return ProviderRateLimited(PROVIDER, self._retry_after_ms(getattr(error, 'headers', None)))
        if isinstance(error, (requests.exceptions.RequestException, ReadTimeoutError)):
            return ProviderUnreachable(PROVIDER, f"{operation} failed: {error}")
        return ProviderUnreachable(PROVIDER, f"{operation} failed: {error}", status)

    def _call(self, operation: str, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (spotipy.SpotifyException, requests.exceptions.RequestException, ReadTimeoutError) as e:
            raise self._translate_error(e, operation)

    # -- conversion -----------------------------------------------------------

    def _to_track(self, item: Dict[str, Any], features: Optional[Dict[str, Any]]) -> Track:
        """Convert a Spotify track object (plus optional audio features) to a domain Track."""
        track_id = item.get('id') or ''
        title = item.get('name', '')
        artist_names = [a.get('name', '') for a in item.get('artists') or [] if a.get('name')]
        album = item.get('album') or {}
        images = album.get('images') or []

        if features and features.get('tempo'):
            bpm = int(round(features['tempo']))
            key = key_from_pitch_class(features.get('key'), features.get('mode'))
            source = DataSource.MEASURED
        else:
            estimate = estimate_features(title, artist_names[0] if artist_names else 'Unknown')
            bpm, key = estimate.bpm, estimate.key
            source = DataSource.ESTIMATED

        return Track(
            id=track_id,
            title=title,
            artist=', '.join(artist_names),
            bpm=bpm if bpm > 0 else None,
            key=key,
            duration=int(round((item.get('duration_ms') or 0) / 1000)),
            data_source=source,
            spotify_id=track_id or None,
            album=album.get('name') or None,
            album_art=images[0].get('url') if images else None,
            preview_url=item.get('preview_url'),
            spotify_url=(item.get('external_urls') or {}).get('spotify'),
        )

    # -- audio features -------------------------------------------------------

    def _audio_features(self, track_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        """Fetch audio features in batches; any provider failure yields no features.

        Spotify answers 403 for apps without audio-features access, in which
        case every track falls back to estimated tempo and key.
        """
        features: Dict[str, Dict[str, Any]] = {}
        if not track_ids:
            return features
        try:
            client = self._spotify()
            for batch in _chunks(track_ids, FEATURES_BATCH_SIZE):
                result = self._call('audio_features', client.audio_features, batch) or []
                for entry in result:
                    if entry and entry.get('id'):
                        features[entry['id']] = entry
            logger.info(f"Got audio features for {len(features)} of {len(track_ids)} tracks")
        except ProviderError as e:
            logger.warning(f"Audio features not available ({e}), using estimated features")
        return features

    # -- public API -----------------------------------------------------------

    def search(self, query: str, limit: Optional[int] = None) -> List[Track]:
        """Free-text track search.

        Raises:
            ConfigurationMissing, ProviderUnauthorized, ProviderRateLimited, ProviderUnreachable
        """
        client = self._spotify()
        logger.debug(f"Searching Spotify: {query} (market={self._market})")
        results = self._call(
            'search', client.search, q=query, type='track',
            limit=limit or self._search_limit, market=self._market)

        items = [i for i in ((results or {}).get('tracks') or {}).get('items') or [] if i and i.get('id')]
        if not items:
            return []

        features = self._audio_features([i['id'] for i in items])
        return [self._to_track(item, features.get(item['id'])) for item in items]

    def fetch_by_tempo_and_key(self,
                               bpm: int,
                               key: Optional[str] = None,
                               exclude_id: Optional[str] = None,
                               genre: Optional[str] = None,
                               search_terms: Optional[str] = None) -> List[Track]:
        """Collect a deduplicated, content-filtered candidate pool for tempo matching.

        Runs at most MAX_QUERIES searches. A query that fails with a network error
        is skipped; auth and rate-limit errors abort the lookup. If every query
        fails, the last error is raised.
        """
        client = self._spotify()
        queries = build_search_queries(search_terms, genre)
        logger.info(f"Executing {len(queries)} searches for BPM {bpm}, key {key or 'any'}, "
                    f"genre {genre or 'any'}, search {search_terms or 'any'}")

        seen = set()
        items: List[Dict[str, Any]] = []
        failures = 0
        last_error: Optional[ProviderError] = None

        for query in queries:
            try:
                results = self._call(
                    'search', client.search, q=query, type='track',
                    limit=QUERY_LIMIT, market=self._market)
            except ProviderUnreachable as e:
                logger.warning(f"Search failed for query '{query}': {e}")
                failures += 1
                last_error = e
                continue

            for item in ((results or {}).get('tracks') or {}).get('items') or []:
                track_id = item.get('id') if item else None
                if not track_id or track_id in seen or track_id == exclude_id:
                    continue
                if not is_plausible_song(item):
                    continue
                seen.add(track_id)
                items.append(item)

        if queries and failures == len(queries) and last_error is not None:
            raise last_error

        logger.info(f"Found {len(items)} unique tracks to analyze")
        if not items:
            return []

        features = self._audio_features([i['id'] for i in items])
        return [self._to_track(item, features.get(item['id'])) for item in items]
