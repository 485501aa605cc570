from __future__ import annotations

from typing import List, Optional, Protocol

from .entities import Track, VideoResult


class MetadataProvider(Protocol):
    """Port defining the contract for music metadata catalogs.

    Implementations map provider-specific shapes into domain Tracks and raise
    ProviderError subclasses on failure; they never return fallback data themselves.
    """

    def search(self, query: str, limit: int = 20) -> List[Track]:
        """Return tracks matching a free-text query."""

    def fetch_by_tempo_and_key(self,
                               bpm: int,
                               key: Optional[str] = None,
                               exclude_id: Optional[str] = None,
                               genre: Optional[str] = None,
                               search_terms: Optional[str] = None) -> List[Track]:
        """Return a candidate pool for tempo matching (unranked)."""


class VideoProvider(Protocol):
    """Port for video search (instrumental / acapella previews)."""

    def search(self, query: str, video_type: str = 'instrumental') -> List[VideoResult]:
        """Return up to 5 video descriptors for the query."""
