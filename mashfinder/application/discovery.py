import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from mashfinder.application.fallback import compatible_fallback, paginate, search_fallback
from mashfinder.application.matching import TempoMatch
from mashfinder.application.ranking import ResultRanker
from mashfinder.application.sequencing import RequestSequencer
from mashfinder.application.videos import VideoLookup
from mashfinder.crosscutting.logging import log_fallback
from mashfinder.crosscutting.metrics import ProviderMetrics
from mashfinder.domain.entities import Track, VideoResult
from mashfinder.domain.errors import (
    ConfigurationMissing, InvalidRequest, ProviderError, ProviderRateLimited,
)
from mashfinder.domain.keys import compatible_keys
from mashfinder.domain.ports import MetadataProvider

logger = logging.getLogger(__name__)

SOURCE_LIVE = 'spotify'
SOURCE_FALLBACK = 'fallback'
WARNING_RATE_LIMITED = 'rate_limited'


@dataclass(frozen=True)
class SearchOutcome:
    """Tracks handed to the interface layer, plus where they came from."""

    tracks: List[Track]
    source: str
    matches: List[TempoMatch] = field(default_factory=list)
    warning: Optional[str] = None
    stale: bool = False
    total: Optional[int] = None
    page: int = 1


def parse_bpm(raw: Any) -> int:
    """Validate the bpm request parameter.

    Raises:
        InvalidRequest: missing, non-numeric, or not positive
    """
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise InvalidRequest('bpm', 'BPM parameter is required')
    if isinstance(raw, bool):
        raise InvalidRequest('bpm', 'BPM must be a positive integer')
    try:
        bpm = raw if isinstance(raw, int) else int(str(raw).strip())
    except ValueError:
        raise InvalidRequest('bpm', 'BPM must be a positive integer')
    if bpm <= 0:
        raise InvalidRequest('bpm', 'BPM must be a positive integer')
    return bpm


class DiscoveryService:
    """Entry point used by the HTTP and CLI interfaces.

    Provider failures never escape this class: they are logged, counted and
    answered from the fallback catalog (tracks) or placeholders (videos). Only
    InvalidRequest is raised to callers.
    """

    def __init__(self,
                 catalog: Optional[MetadataProvider],
                 videos: Optional[VideoLookup] = None,
                 ranker: Optional[ResultRanker] = None,
                 metrics: Optional[ProviderMetrics] = None,
                 sequencer: Optional[RequestSequencer] = None):
        self.catalog = catalog
        self.metrics = metrics or ProviderMetrics()
        self.videos = videos or VideoLookup(None, metrics=self.metrics)
        self.ranker = ranker or ResultRanker()
        self.sequencer = sequencer or RequestSequencer()

    @staticmethod
    def _warning_for(error: Exception) -> Optional[str]:
        return WARNING_RATE_LIMITED if isinstance(error, ProviderRateLimited) else None

    def _stale(self, panel: Optional[str], seq: Optional[int]) -> bool:
        return panel is not None and seq is not None and not self.sequencer.is_current(panel, seq)

    def _track_sequence(self, panel: Optional[str], seq: Optional[int]) -> None:
        if panel is not None and seq is not None:
            self.sequencer.observe(panel, seq)

    def search(self,
               query: str,
               panel: Optional[str] = None,
               seq: Optional[int] = None,
               page: int = 1,
               limit: Optional[int] = None) -> SearchOutcome:
        """Free-text search with fallback to the sample catalog.

        ``page`` and ``limit`` select a 1-based page of the results; ``total``
        on the outcome counts every match.
        """
        query = (query or '').strip()
        if not query:
            raise InvalidRequest('q', 'Query parameter is required')
        if isinstance(page, bool) or not isinstance(page, int) or page < 1:
            raise InvalidRequest('page', 'page must be a positive integer')
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 1):
            raise InvalidRequest('limit', 'limit must be a positive integer')
        self._track_sequence(panel, seq)

        warning = None
        if self.catalog is None:
            tracks, source = search_fallback(query), SOURCE_FALLBACK
        else:
            try:
                with self.metrics.timed(SOURCE_LIVE):
                    tracks = self.catalog.search(query)
                logger.info(f"Found {len(tracks)} tracks for '{query}'")
                source = SOURCE_LIVE
            except (ConfigurationMissing, ProviderError) as e:
                log_fallback(logger, SOURCE_LIVE, e, query=query)
                tracks, source = search_fallback(query), SOURCE_FALLBACK
                warning = self._warning_for(e)

        if self._stale(panel, seq):
            logger.info(f"Discarding stale search response for panel {panel} (seq {seq})")
            return SearchOutcome(tracks=[], source=source, stale=True, total=0, page=page)
        return SearchOutcome(
            tracks=paginate(tracks, page, limit),
            source=source,
            warning=warning,
            total=len(tracks),
            page=page,
        )

    def compatible(self,
                   bpm: Any,
                   key: Optional[str] = None,
                   exclude_id: Optional[str] = None,
                   genre: Optional[str] = None,
                   search_terms: Optional[str] = None,
                   strict_key: bool = False,
                   panel: Optional[str] = None,
                   seq: Optional[int] = None) -> SearchOutcome:
        """Ranked tracks whose tempo is compatible with ``bpm``.

        Raises:
            InvalidRequest: bpm missing or not a positive integer
        """
        target_bpm = parse_bpm(bpm)
        key = key or None
        self._track_sequence(panel, seq)

        matches: List[TempoMatch]
        source = SOURCE_LIVE
        warning = None
        if self.catalog is None:
            matches = compatible_fallback(target_bpm, key, exclude_id, self.ranker, strict_key)
            source = SOURCE_FALLBACK
        else:
            try:
                with self.metrics.timed(SOURCE_LIVE):
                    pool = self.catalog.fetch_by_tempo_and_key(
                        target_bpm, key=key, exclude_id=exclude_id, genre=genre, search_terms=search_terms)
                matches = self.ranker.rank_matches(
                    pool, target_bpm, key, exclude_id, strict_key=strict_key)
                logger.info(f"Found {len(matches)} tracks with compatible BPM (target: {target_bpm})")
                if matches:
                    sample = ', '.join(f"{m.track.title} by {m.track.artist} ({m.track.bpm} BPM)" for m in matches[:3])
                    logger.debug(f"Sample results: {sample}")
            except (ConfigurationMissing, ProviderError) as e:
                log_fallback(logger, SOURCE_LIVE, e, bpm=target_bpm, key=key)
                matches = compatible_fallback(target_bpm, key, exclude_id, self.ranker, strict_key)
                source = SOURCE_FALLBACK
                warning = self._warning_for(e)

        if self._stale(panel, seq):
            logger.info(f"Discarding stale compatibility response for panel {panel} (seq {seq})")
            return SearchOutcome(tracks=[], source=source, stale=True)
        return SearchOutcome(
            tracks=[m.track for m in matches],
            source=source,
            matches=matches,
            warning=warning,
        )

    def find_videos(self, title: str, artist: str = '', video_type: str = 'instrumental') -> List[VideoResult]:
        return self.videos.find(title, artist, video_type)

    @staticmethod
    def compatible_keys(key: str) -> List[str]:
        return compatible_keys(key)

