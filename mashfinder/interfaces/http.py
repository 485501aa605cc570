import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from flask import Flask, request, jsonify

from mashfinder.application.discovery import DiscoveryService, parse_bpm
from mashfinder.application.ranking import ResultRanker
from mashfinder.application.videos import VideoLookup
from mashfinder.crosscutting.config import ConfigManager, get_config_manager
from mashfinder.crosscutting.logging import (
    CorrelationContext, log_error, log_request_complete, log_request_start,
)
from mashfinder.crosscutting.metrics import ProviderMetrics, QuotaTracker
from mashfinder.domain.errors import InvalidRequest
from mashfinder.domain.keys import compatible_keys, is_valid_key
from mashfinder.infrastructure.cache import LRUCache, TokenCache
from mashfinder.infrastructure.providers.spotify import SpotifyCatalog
from mashfinder.infrastructure.providers.youtube import YouTubeVideos

VERSION = '0.1.0'
SERVICE_NAME = 'mashfinder'

_TRUTHY = {'1', 'true', 'yes', 'on'}


def create_service(config: ConfigManager,
                   metrics: Optional[ProviderMetrics] = None,
                   quota: Optional[QuotaTracker] = None) -> DiscoveryService:
    """Wire a DiscoveryService from configuration.

    Missing credentials are not an error here: providers raise ConfigurationMissing
    on use, and the service answers with fallback data.
    """
    settings = config.get_settings()
    metrics = metrics or ProviderMetrics()
    catalog = SpotifyCatalog.from_config(config, TokenCache(settings.token_refresh_margin))
    youtube = YouTubeVideos(settings.youtube_api_key, request_timeout=settings.request_timeout, quota=quota)
    videos = VideoLookup(youtube, cache=LRUCache(settings.video_cache_size), metrics=metrics)
    return DiscoveryService(
        catalog=catalog,
        videos=videos,
        ranker=ResultRanker(max_results=settings.result_limit),
        metrics=metrics,
    )


def _optional_int(name: str) -> Optional[int]:
    raw = request.args.get(name)
    if raw is None or raw == '':
        return None
    try:
        return int(raw)
    except ValueError:
        raise InvalidRequest(name, f"{name} must be an integer")


class HTTPServer:
    """JSON API for mashup discovery: search, tempo/key compatibility and video lookup."""

    def __init__(self, host: str = 'localhost', port: int = 3000, debug: bool = False,
                 config: Optional[ConfigManager] = None,
                 service: Optional[DiscoveryService] = None,
                 quota: Optional[QuotaTracker] = None):
        """Initialize HTTP server."""
        self.host = host
        self.port = port
        self.debug = debug
        self.app = Flask(__name__)
        self.logger = logging.getLogger(__name__)

        self.config = config or get_config_manager()
        settings = self.config.get_settings()

        self.version = VERSION
        self.commit = settings.commit

        self.quota = quota or QuotaTracker(settings.youtube_daily_quota)
        self.service = service or create_service(self.config, quota=self.quota)

        self._setup_routes()

    def _handle(self, endpoint: str, handler: Callable[[], Any]):
        """Run a route handler with request correlation and the error policy.

        InvalidRequest becomes a 400; anything unexpected is logged and becomes a 500.
        """
        request_id = request.headers.get('X-Request-Id') or uuid.uuid4().hex[:12]
        with CorrelationContext(request_id=request_id, endpoint=endpoint, panel=request.args.get('panel')):
            log_request_start(self.logger, endpoint, params=dict(request.args))
            try:
                return handler()
            except InvalidRequest as e:
                self.logger.info(f"Invalid request on {endpoint}: {e}")
                return jsonify({'error': str(e), 'field': e.field}), 400
            except Exception as e:
                log_error(self.logger, f"Unhandled error on {endpoint}", e)
                return jsonify({'error': 'Internal server error'}), 500

    def _setup_routes(self) -> None:
        """Setup Flask routes."""

        @self.app.route('/health', methods=['GET'])
        def health_check():
            """Health check endpoint."""
            return jsonify({
                'status': 'healthy',
                'service': SERVICE_NAME,
                'version': self.version,
                'commit': self.commit,
                'timestamp': datetime.now(timezone.utc).isoformat()
            }), 200

        @self.app.route('/', methods=['GET'])
        def root():
            """Root endpoint with basic info."""
            return jsonify({
                'service': SERVICE_NAME,
                'version': self.version,
                'endpoints': {
                    'health': '/health',
                    'search': '/api/search',
                    'compatible': '/api/compatible',
                    'youtube': '/api/youtube',
                    'keys': '/api/keys',
                    'config': '/api/config',
                    'quota': '/api/quota',
                    'metrics': '/api/metrics',
                }
            }), 200

        @self.app.route('/api/search', methods=['GET'])
        def search():
            """Free-text track search."""
            def handler():
                start = time.monotonic()
                query = request.args.get('q', '')
                if not query.strip():
                    raise InvalidRequest('q', 'Query parameter is required')
                page = _optional_int('page')
                outcome = self.service.search(
                    query,
                    panel=request.args.get('panel'),
                    seq=_optional_int('seq'),
                    page=1 if page is None else page,
                    limit=_optional_int('limit'),
                )
                log_request_complete(self.logger, 'search', len(outcome.tracks), outcome.source,
                                     int((time.monotonic() - start) * 1000))
                body: Dict[str, Any] = {
                    'tracks': [t.to_dict() for t in outcome.tracks],
                    'source': outcome.source,
                    'total': outcome.total,
                    'page': outcome.page,
                }
                if outcome.warning:
                    body['warning'] = outcome.warning
                if outcome.stale:
                    body['stale'] = True
                return jsonify(body), 200
            return self._handle('search', handler)

        @self.app.route('/api/compatible', methods=['GET'])
        def compatible():
            """Tracks with compatible tempo, ranked by closeness."""
            def handler():
                start = time.monotonic()
                key = request.args.get('key') or None
                outcome = self.service.compatible(
                    request.args.get('bpm'),
                    key=key,
                    exclude_id=request.args.get('excludeId') or None,
                    genre=request.args.get('genre') or None,
                    search_terms=request.args.get('search') or None,
                    strict_key=request.args.get('strictKey', '').lower() in _TRUTHY,
                    panel=request.args.get('panel'),
                    seq=_optional_int('seq'),
                )
                log_request_complete(self.logger, 'compatible', len(outcome.tracks), outcome.source,
                                     int((time.monotonic() - start) * 1000))

                tracks = []
                for match in outcome.matches:
                    entry = match.track.to_dict()
                    entry['bpmDistance'] = match.distance
                    entry['keyCompatible'] = match.key_compatible
                    tracks.append(entry)

                body: Dict[str, Any] = {
                    'tracks': tracks,
                    'source': outcome.source,
                    'target': {
                        'bpm': parse_bpm(request.args.get('bpm')),
                        'key': key,
                        'compatibleKeys': compatible_keys(key) if key else [],
                    },
                }
                if outcome.warning:
                    body['warning'] = outcome.warning
                if outcome.stale:
                    body['stale'] = True
                return jsonify(body), 200
            return self._handle('compatible', handler)

        @self.app.route('/api/youtube', methods=['GET'])
        def youtube():
            """Instrumental / acapella video lookup."""
            def handler():
                title = request.args.get('title') or request.args.get('q') or ''
                artist = request.args.get('artist') or ''
                if not title.strip():
                    raise InvalidRequest('q', 'Query parameter is required')
                videos = self.service.find_videos(title, artist, request.args.get('type') or 'instrumental')
                return jsonify([v.to_dict() for v in videos]), 200
            return self._handle('youtube', handler)

        @self.app.route('/api/keys', methods=['GET'])
        def keys():
            """Harmonically compatible keys for a key."""
            def handler():
                key = request.args.get('key', '')
                if not key.strip():
                    raise InvalidRequest('key', 'Key parameter is required')
                return jsonify({
                    'key': key,
                    'known': is_valid_key(key),
                    'compatibleKeys': compatible_keys(key),
                }), 200
            return self._handle('keys', handler)

        @self.app.route('/api/config', methods=['GET'])
        def config_summary():
            """Which credentials are configured, without exposing them."""
            return jsonify(self.config.get_config_summary()), 200

        @self.app.route('/api/quota', methods=['GET'])
        def quota():
            """Estimated YouTube Data API usage for today."""
            return jsonify(self.quota.snapshot()), 200

        @self.app.route('/api/metrics', methods=['GET'])
        def metrics():
            """Provider call metrics."""
            return jsonify(self.service.metrics.to_dict()), 200

    def run(self) -> None:
        """Run the HTTP server."""
        self.logger.info(f"Starting mashfinder HTTP server on {self.host}:{self.port}")
        self.app.run(
            host=self.host,
            port=self.port,
            debug=self.debug
        )


def create_app(config: Optional[ConfigManager] = None,
               service: Optional[DiscoveryService] = None) -> Flask:
    """Create Flask app (used by tests and WSGI servers)."""
    server = HTTPServer(config=config, service=service)
    return server.app


if __name__ == '__main__':
    server = HTTPServer()
    server.run()
