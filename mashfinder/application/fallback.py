from typing import List, Optional, Tuple

from mashfinder.application.matching import TempoMatch
from mashfinder.application.ranking import ResultRanker
from mashfinder.domain.entities import DataSource, Track


def _fallback(id: str, title: str, artist: str, bpm: int, key: str,
              duration: int, youtube_id: str) -> Track:
    return Track(
        id=id,
        title=title,
        artist=artist,
        bpm=bpm,
        key=key,
        duration=duration,
        youtube_id=youtube_id,
        data_source=DataSource.FALLBACK,
    )


# Used when the metadata provider is unreachable or unconfigured
FALLBACK_TRACKS: Tuple[Track, ...] = (
    _fallback('1', 'Blinding Lights', 'The Weeknd', 171, 'F# minor', 200, '4NRXx6U8ABQ'),
    _fallback('2', 'Watermelon Sugar', 'Harry Styles', 95, 'C major', 174, 'E07s5ZYygMg'),
    _fallback('3', 'Levitating', 'Dua Lipa', 103, 'B major', 203, 'TUVcZfQe-Kw'),
    _fallback('4', 'Good 4 U', 'Olivia Rodrigo', 166, 'A major', 178, 'gNi_6U5Pm_o'),
    _fallback('5', 'Stay', 'The Kid LAROI & Justin Bieber', 95, 'C major', 141, 'kTJczUoc26U'),
    _fallback('6', 'Bad Habits', 'Ed Sheeran', 126, 'B minor', 231, 'orJSJGHjBLI'),
    _fallback('7', 'Industry Baby', 'Lil Nas X ft. Jack Harlow', 150, 'D minor', 212, 'UTHLKHL_whs'),
    _fallback('8', 'Heat Waves', 'Glass Animals', 80, 'E minor', 238, 'mRD0-GxqHVo'),
)


def search_fallback(query: str) -> List[Track]:
    """Case-insensitive substring match over title and artist."""
    needle = (query or '').strip().lower()
    if not needle:
        return list(FALLBACK_TRACKS)
    return [
        t for t in FALLBACK_TRACKS
        if needle in t.title.lower() or needle in t.artist.lower()
    ]


def paginate(tracks: List[Track], page: int = 1, limit: Optional[int] = None) -> List[Track]:
    """Slice one 1-based page out of ``tracks``; no limit means a single page holding everything."""
    if limit is None:
        return list(tracks) if page == 1 else []
    start = (page - 1) * limit
    return list(tracks[start:start + limit])


def compatible_fallback(bpm: int,
                        key: Optional[str] = None,
                        exclude_id: Optional[str] = None,
                        ranker: Optional[ResultRanker] = None,
                        strict_key: bool = False) -> List[TempoMatch]:
    """Rank the fallback catalog with the same rules as live results."""
    ranker = ranker or ResultRanker()
    return ranker.rank_matches(FALLBACK_TRACKS, bpm, key, exclude_id, strict_key=strict_key)
