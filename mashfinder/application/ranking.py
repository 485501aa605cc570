from typing import Iterable, List, Optional

from mashfinder.application.matching import TempoMatch, TempoMatcher
from mashfinder.domain.entities import Track

MAX_RESULTS = 25


class ResultRanker:
    """Filters a candidate pool by tempo compatibility and orders it for display.

    Key compatibility is advisory: it is reported on every match but only used as a
    filter when ``strict_key`` is requested.
    """

    def __init__(self, matcher: Optional[TempoMatcher] = None, max_results: int = MAX_RESULTS):
        self.matcher = matcher or TempoMatcher()
        self.max_results = min(max_results, MAX_RESULTS)

    def rank_matches(self,
                     candidates: Iterable[Track],
                     target_bpm: int,
                     target_key: Optional[str] = None,
                     exclude_id: Optional[str] = None,
                     limit: Optional[int] = None,
                     strict_key: bool = False) -> List[TempoMatch]:
        """Return matching candidates as TempoMatch records, best first.

        Ordering is by tempo distance, then measured tempo before estimated or
        fallback data. Ties keep the provider's original order.
        """
        bound = self.max_results if limit is None else max(0, min(limit, self.max_results))

        matches: List[TempoMatch] = []
        for track in candidates:
            if exclude_id and track.id == exclude_id:
                continue
            evaluated = self.matcher.evaluate(track, target_bpm, target_key)
            if not evaluated.is_match:
                continue
            if strict_key and target_key and not evaluated.key_compatible:
                continue
            matches.append(evaluated)

        matches.sort(key=lambda m: (m.distance, not m.has_measured_tempo))
        return matches[:bound]

    def rank(self,
             candidates: Iterable[Track],
             target_bpm: int,
             target_key: Optional[str] = None,
             exclude_id: Optional[str] = None,
             limit: Optional[int] = None,
             strict_key: bool = False) -> List[Track]:
        """Same as rank_matches but returns only the tracks."""
        return [m.track for m in self.rank_matches(
            candidates, target_bpm, target_key, exclude_id, limit, strict_key)]


def rank(candidates: Iterable[Track],
         target_bpm: int,
         target_key: Optional[str] = None,
         exclude_id: Optional[str] = None) -> List[Track]:
    return ResultRanker().rank(candidates, target_bpm, target_key, exclude_id)
