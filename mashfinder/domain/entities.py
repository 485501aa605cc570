from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .keys import UNKNOWN_KEY, is_valid_key


class DataSource(str, Enum):
    """Where a track's tempo and key came from."""

    MEASURED = "measured"
    ESTIMATED = "estimated"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class Track:
    """Domain entity representing a track with tempo and key, independent of providers."""

    id: str
    title: str = ""
    artist: str = ""
    bpm: Optional[int] = None
    key: str = UNKNOWN_KEY
    duration: int = 0
    data_source: DataSource = DataSource.ESTIMATED
    youtube_id: Optional[str] = None
    spotify_id: Optional[str] = None
    album: Optional[str] = None
    album_art: Optional[str] = None
    preview_url: Optional[str] = None
    spotify_url: Optional[str] = None

    def __post_init__(self):
        if self.bpm is not None:
            if isinstance(self.bpm, bool) or not isinstance(self.bpm, int) or self.bpm <= 0:
                raise ValueError(f"bpm must be a positive integer, got {self.bpm!r}")
        if not is_valid_key(self.key):
            raise ValueError(f"Unrecognised key: {self.key!r}")

    @property
    def has_measured_tempo(self) -> bool:
        return self.data_source == DataSource.MEASURED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "artist": self.artist,
            "bpm": self.bpm,
            "key": self.key,
            "duration": self.duration,
            "youtubeId": self.youtube_id,
            "spotifyId": self.spotify_id,
            "album": self.album,
            "albumArt": self.album_art,
            "previewUrl": self.preview_url,
            "spotifyUrl": self.spotify_url,
            "dataSource": self.data_source.value,
        }


PLACEHOLDER_PREFIX = "mock"
VIDEO_TYPES = ("instrumental", "acapella")


@dataclass(frozen=True)
class VideoResult:
    """Video descriptor returned by the video provider."""

    id: str
    title: str
    duration: str
    thumbnail: str

    @property
    def is_placeholder(self) -> bool:
        return self.id.startswith(PLACEHOLDER_PREFIX)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "duration": self.duration,
            "thumbnail": self.thumbnail,
        }

