from dataclasses import dataclass
from typing import Optional

from mashfinder.domain.entities import Track
from mashfinder.domain.errors import InvalidRequest
from mashfinder.domain.keys import is_key_compatible

BPM_TOLERANCE = 5


def half_tempo(bpm: int) -> int:
    """Half of ``bpm`` rounded half up (61 -> 31), unlike Python's banker's round()."""
    return (bpm + 1) // 2


@dataclass(frozen=True)
class MatchResult:
    """Result of comparing one tempo against a target."""

    match: bool
    distance: int
    relation: str = 'none'


NO_MATCH = MatchResult(match=False, distance=0)


@dataclass(frozen=True)
class TempoMatch:
    """A candidate track paired with its tempo comparison, used while ranking."""

    track: Track
    is_match: bool
    distance: int
    has_measured_tempo: bool
    key_compatible: bool = False


class TempoMatcher:
    """Tempo compatibility for mashups.

    Two tempos are compatible when they are equal, when one is the double or half
    of the other, or when they fall within ``tolerance`` BPM of the target, its
    double or its half. Rules are tried in that order and the first one wins:

    1. exact                     -> distance 0
    2. double / half             -> distance 0
    3. |c - t| <= tolerance      -> |c - t|
    4. |c - 2t| <= tolerance     -> |c - 2t|
    5. |c - t/2| <= tolerance    -> |c - t/2|
    """

    def __init__(self, tolerance: int = BPM_TOLERANCE):
        self.tolerance = tolerance

    def is_compatible(self, candidate_bpm: Optional[int], target_bpm: int) -> MatchResult:
        """Compare ``candidate_bpm`` against ``target_bpm``.

        Args:
            candidate_bpm: Tempo of the candidate track, None when unknown
            target_bpm: Tempo of the selected track, must be positive

        Returns:
            MatchResult; unknown candidate tempo is a non-match

        Raises:
            InvalidRequest: if target_bpm is not a positive integer
        """
        if not isinstance(target_bpm, int) or isinstance(target_bpm, bool) or target_bpm <= 0:
            raise InvalidRequest('bpm', f"Target BPM must be a positive integer, got {target_bpm!r}")
        if candidate_bpm is None:
            return NO_MATCH

        double = target_bpm * 2
        half = half_tempo(target_bpm)

        if candidate_bpm == target_bpm:
            return MatchResult(True, 0, 'exact')
        if candidate_bpm == double or candidate_bpm == half:
            return MatchResult(True, 0, 'double' if candidate_bpm == double else 'half')

        diff = abs(candidate_bpm - target_bpm)
        if diff <= self.tolerance:
            return MatchResult(True, diff, 'near')
        diff = abs(candidate_bpm - double)
        if diff <= self.tolerance:
            return MatchResult(True, diff, 'near_double')
        diff = abs(candidate_bpm - half)
        if diff <= self.tolerance:
            return MatchResult(True, diff, 'near_half')
        return NO_MATCH

    def evaluate(self, track: Track, target_bpm: int, target_key: Optional[str] = None) -> TempoMatch:
        """Build the TempoMatch record for one track."""
        result = self.is_compatible(track.bpm, target_bpm)
        return TempoMatch(
            track=track,
            is_match=result.match,
            distance=result.distance,
            has_measured_tempo=track.has_measured_tempo,
            key_compatible=bool(target_key) and is_key_compatible(track.key, target_key),
        )


_default_matcher = TempoMatcher()


def is_compatible(candidate_bpm: Optional[int], target_bpm: int) -> MatchResult:
    """Module-level shortcut using the default tolerance."""
    return _default_matcher.is_compatible(candidate_bpm, target_bpm)
