"""YouTube Data API v3 search for instrumental and acapella versions of a song."""

import logging
import re
from typing import Any, Dict, List, Optional

import requests

from mashfinder.domain.entities import VIDEO_TYPES, VideoResult
from mashfinder.domain.errors import (
    ConfigurationMissing, InvalidRequest, ProviderError, ProviderRateLimited,
    ProviderUnauthorized, ProviderUnreachable,
)
from mashfinder.domain.ports import VideoProvider
from mashfinder.infrastructure.session import get_session

logger = logging.getLogger(__name__)

PROVIDER = 'youtube'
API_BASE = 'https://www.googleapis.com/youtube/v3'
MAX_RESULTS = 5
MUSIC_CATEGORY_ID = '10'

# Data API quota costs
SEARCH_COST = 100
VIDEOS_LIST_COST = 1

_QUOTA_REASONS = {'quotaExceeded', 'dailyLimitExceeded', 'rateLimitExceeded', 'userRateLimitExceeded'}
_ISO_DURATION = re.compile(r"PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?")


def format_iso_duration(iso: Optional[str]) -> str:
    """Convert an ISO 8601 duration to m:ss or h:mm:ss (PT4M13S -> 4:13)."""
    m = _ISO_DURATION.match(iso or '')
    if not m:
        return '0:00'
    h = int(m.group(1) or 0)
    mn = int(m.group(2) or 0)
    s = int(m.group(3) or 0)
    if h > 0:
        return f"{h}:{mn:02d}:{s:02d}"
    return f"{mn}:{s:02d}"


def decorate_query(query: str, video_type: str) -> str:
    if video_type == 'acapella':
        return f"{query} acapella vocals only -karaoke -cover"
    return f"{query} instrumental -karaoke -cover -lyrics -acapella"


def _title(item: Dict[str, Any]) -> str:
    return ((item.get('snippet') or {}).get('title') or '').lower()


def keep_video(item: Dict[str, Any], video_type: str) -> bool:
    title = _title(item)
    if 'reaction' in title or 'review' in title:
        return False
    if video_type == 'instrumental':
        return 'acapella' not in title and 'lyrics' not in title
    return ('acapella' in title or 'vocals only' in title) and 'instrumental' not in title


def quality_rank(item: Dict[str, Any], video_type: str) -> tuple:
    """Sort key: lower is better. Official uploads first, karaoke last."""
    title = _title(item)
    if video_type == 'instrumental':
        official = 'official' in title or 'instrumental' in title
        return (not official, 'karaoke' in title)
    return (not ('official' in title or 'studio' in title),)


def best_thumbnail(thumbnails: Dict[str, Any]) -> str:
    for key in ('medium', 'high', 'standard', 'maxres', 'default'):
        if key in thumbnails:
            return thumbnails[key].get('url', '')
    return ''


class YouTubeVideos(VideoProvider):
    """Video search against the YouTube Data API using an API key."""

    def __init__(self,
                 api_key: Optional[str],
                 session: Optional[requests.Session] = None,
                 request_timeout: int = 10,
                 quota=None):
        self.api_key = api_key
        self._session = session or get_session()
        self._request_timeout = request_timeout
        self._quota = quota

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _record_quota(self, units: int) -> None:
        if self._quota is not None:
            self._quota.record(units)

    def _get(self, resource: str, params: Dict[str, Any], cost: int) -> Dict[str, Any]:
        params = dict(params, key=self.api_key)
        try:
            response = self._session.get(f"{API_BASE}/{resource}", params=params, timeout=self._request_timeout)
        except requests.exceptions.RequestException as e:
            raise ProviderUnreachable(PROVIDER, f"{resource} request failed: {e}")
        self._record_quota(cost)

        if response.status_code == 200:
            try:
                data = response.json()
            except ValueError:
                data = None
            if not isinstance(data, dict):
                raise ProviderUnreachable(PROVIDER, f"{resource} returned malformed JSON", 200)
            return data
        raise self._error_for(resource, response)

    @staticmethod
    def _error_for(resource: str, response: requests.Response) -> ProviderError:
        status = response.status_code
        reason = None
        try:
            errors = (response.json().get('error') or {}).get('errors') or []
            reason = errors[0].get('reason') if errors else None
        except ValueError:
            pass

        if status == 429 or (status == 403 and reason in _QUOTA_REASONS):
            return ProviderRateLimited(PROVIDER, message=f"YouTube quota exceeded ({reason or status})", status=status)
        if status in (401, 403):
            return ProviderUnauthorized(PROVIDER, f"{resource} rejected: {status} {reason or ''}".strip(), status)
        return ProviderUnreachable(PROVIDER, f"{resource} failed: {status}", status)

    def search(self, query: str, video_type: str = 'instrumental') -> List[VideoResult]:
        """Search for videos of ``query`` of the given type.

        Args:
            query: Song description, usually "title artist"
            video_type: 'instrumental' or 'acapella'

        Returns:
            Up to MAX_RESULTS videos, best first

        Raises:
            InvalidRequest: unknown video type
            ConfigurationMissing: no API key
            ProviderError: any API failure
        """
        if video_type not in VIDEO_TYPES:
            raise InvalidRequest('type', f"type must be one of {', '.join(VIDEO_TYPES)}")
        if not self.api_key:
            raise ConfigurationMissing('YOUTUBE_API_KEY')

        data = self._get('search', {
            'part': 'snippet',
            'q': decorate_query(query, video_type),
            'type': 'video',
            'maxResults': MAX_RESULTS,
            'videoCategoryId': MUSIC_CATEGORY_ID,
            'order': 'relevance',
            'videoEmbeddable': 'true',
            'videoSyndicated': 'true',
        }, SEARCH_COST)

        items = [i for i in data.get('items') or [] if (i.get('id') or {}).get('videoId')]
        candidates = [i for i in items if keep_video(i, video_type)]
        candidates.sort(key=lambda i: quality_rank(i, video_type))
        best = candidates[:MAX_RESULTS]
        if not best:
            return []

        ids = [i['id']['videoId'] for i in best]
        details = self._get('videos', {'part': 'contentDetails', 'id': ','.join(ids)}, VIDEOS_LIST_COST)
        durations = {
            d.get('id'): (d.get('contentDetails') or {}).get('duration')
            for d in details.get('items') or []
        }

        logger.debug(f"YouTube returned {len(items)} videos, kept {len(best)} for '{query}' ({video_type})")
        return [
            VideoResult(
                id=vid,
                title=(item.get('snippet') or {}).get('title', ''),
                duration=format_iso_duration(durations.get(vid)),
                thumbnail=best_thumbnail((item.get('snippet') or {}).get('thumbnails') or {}),
            )
            for vid, item in zip(ids, best)
        ]
