import logging
import time
from typing import Callable, List, Optional, Tuple

from mashfinder.crosscutting.logging import log_fallback
from mashfinder.crosscutting.metrics import ProviderMetrics
from mashfinder.domain.entities import PLACEHOLDER_PREFIX, VIDEO_TYPES, VideoResult
from mashfinder.domain.errors import ConfigurationMissing, InvalidRequest, ProviderError
from mashfinder.domain.ports import VideoProvider
from mashfinder.infrastructure.cache import LRUCache

logger = logging.getLogger(__name__)

VideoKey = Tuple[str, str, str]


def unconfigured_placeholders(query: str, video_type: str) -> List[VideoResult]:
    """Descriptors returned when no video API key is configured."""
    return [
        VideoResult(
            id=f'{PLACEHOLDER_PREFIX}1',
            title=f"{query} ({video_type.capitalize()})",
            duration='3:45',
            thumbnail=f'https://img.youtube.com/vi/{PLACEHOLDER_PREFIX}1/mqdefault.jpg',
        ),
        VideoResult(
            id=f'{PLACEHOLDER_PREFIX}2',
            title=f"{query} {video_type} version",
            duration='4:12',
            thumbnail=f'https://img.youtube.com/vi/{PLACEHOLDER_PREFIX}2/mqdefault.jpg',
        ),
    ]


def failure_placeholders(query: str, video_type: str, now_ms: int) -> List[VideoResult]:
    """Descriptors returned when the video provider fails or is over quota."""
    thumbnail = 'https://img.youtube.com/vi/dQw4w9WgXcQ/mqdefault.jpg'
    return [
        VideoResult(
            id=f'{PLACEHOLDER_PREFIX}_{now_ms}_1',
            title=f"{query} ({video_type.capitalize()}) - Mock",
            duration='3:45',
            thumbnail=thumbnail,
        ),
        VideoResult(
            id=f'{PLACEHOLDER_PREFIX}_{now_ms}_2',
            title=f"{query} {video_type} version - Mock",
            duration='4:12',
            thumbnail=thumbnail,
        ),
    ]


class VideoLookup:
    """Finds instrumental/acapella videos for a song, with an LRU result cache.

    Only real provider results are cached; placeholders are recomputed so a later
    call can still reach the provider.
    """

    def __init__(self,
                 provider: Optional[VideoProvider],
                 cache: Optional[LRUCache] = None,
                 metrics: Optional[ProviderMetrics] = None,
                 clock: Callable[[], float] = time.time):
        self.provider = provider
        self.cache = cache if cache is not None else LRUCache(256)
        self.metrics = metrics or ProviderMetrics()
        self._clock = clock

    @staticmethod
    def cache_key(title: str, artist: str, video_type: str) -> VideoKey:
        return ((title or '').strip().lower(), (artist or '').strip().lower(), video_type)

    def find(self, title: str, artist: str = '', video_type: str = 'instrumental') -> List[VideoResult]:
        """Return up to 5 videos for a song.

        Raises:
            InvalidRequest: empty title or unknown video type
        """
        if video_type not in VIDEO_TYPES:
            raise InvalidRequest('type', f"type must be one of {', '.join(VIDEO_TYPES)}")
        query = ' '.join(part for part in ((title or '').strip(), (artist or '').strip()) if part)
        if not query:
            raise InvalidRequest('q', 'Query parameter is required')

        key = self.cache_key(title, artist, video_type)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Using cached video results for {key}")
            return list(cached)

        if self.provider is None:
            return unconfigured_placeholders(query, video_type)

        try:
            with self.metrics.timed('youtube'):
                results = self.provider.search(query, video_type)
        except ConfigurationMissing:
            logger.warning("YouTube API key not configured, returning placeholder videos")
            return unconfigured_placeholders(query, video_type)
        except ProviderError as e:
            log_fallback(logger, 'youtube', e, query=query, video_type=video_type)
            return failure_placeholders(query, video_type, int(self._clock() * 1000))

        self.cache.put(key, list(results))
        return results
