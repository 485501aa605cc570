import pytest

from mashfinder.application.matching import (
    NO_MATCH, TempoMatcher, half_tempo, is_compatible,
)
from mashfinder.domain.entities import DataSource, Track
from mashfinder.domain.errors import InvalidRequest


class TestTempoMatcher:
    """Tests for tempo compatibility."""

    def setup_method(self):
        """Set up test fixtures."""
        self.matcher = TempoMatcher()

    def test_exact_match(self):
        result = self.matcher.is_compatible(120, 120)
        assert (result.match, result.distance, result.relation) == (True, 0, 'exact')

    def test_double_and_half_are_distance_zero(self):
        double = self.matcher.is_compatible(240, 120)
        half = self.matcher.is_compatible(60, 120)

        assert (double.match, double.distance, double.relation) == (True, 0, 'double')
        assert (half.match, half.distance, half.relation) == (True, 0, 'half')

    def test_half_tempo_rounds_half_up(self):
        assert half_tempo(61) == 31
        assert half_tempo(120) == 60
        assert self.matcher.is_compatible(31, 61).relation == 'half'
        assert self.matcher.is_compatible(30, 61).distance == 1

    def test_within_tolerance(self):
        result = self.matcher.is_compatible(125, 120)
        assert (result.match, result.distance, result.relation) == (True, 5, 'near')

    def test_just_outside_tolerance(self):
        assert self.matcher.is_compatible(126, 120) == NO_MATCH
        assert not self.matcher.is_compatible(114, 120).match

    def test_near_double(self):
        result = self.matcher.is_compatible(243, 120)
        assert (result.match, result.distance, result.relation) == (True, 3, 'near_double')

    def test_near_half(self):
        result = self.matcher.is_compatible(58, 120)
        assert (result.match, result.distance, result.relation) == (True, 2, 'near_half')

    def test_first_rule_wins(self):
        # 7 is 3 away from the target and 2 away from its half; the direct rule is tried first
        result = self.matcher.is_compatible(7, 10)
        assert (result.distance, result.relation) == (3, 'near')

    def test_unrelated_tempo(self):
        assert self.matcher.is_compatible(200, 120) == NO_MATCH

    def test_unknown_candidate_tempo(self):
        assert self.matcher.is_compatible(None, 120) == NO_MATCH

    @pytest.mark.parametrize("target", [0, -10, None, True, 120.0])
    def test_invalid_target(self, target):
        with pytest.raises(InvalidRequest) as exc_info:
            self.matcher.is_compatible(120, target)
        assert exc_info.value.field == 'bpm'

    def test_custom_tolerance(self):
        strict = TempoMatcher(tolerance=2)
        assert not strict.is_compatible(124, 120).match
        assert strict.is_compatible(122, 120).match

    def test_module_level_shortcut(self):
        assert is_compatible(118, 120).distance == 2


class TestEvaluate:
    """Tests for TempoMatch records."""

    def setup_method(self):
        """Set up test fixtures."""
        self.matcher = TempoMatcher()

    def test_evaluate_measured_track(self):
        track = Track(id='a', bpm=122, key='A minor', data_source=DataSource.MEASURED)

        match = self.matcher.evaluate(track, 120, 'C major')

        assert match.is_match
        assert match.distance == 2
        assert match.has_measured_tempo
        assert match.key_compatible

    def test_evaluate_without_target_key(self):
        track = Track(id='a', bpm=120, key='A minor')

        match = self.matcher.evaluate(track, 120)

        assert match.is_match
        assert not match.key_compatible
        assert not match.has_measured_tempo

    def test_evaluate_track_without_tempo(self):
        match = self.matcher.evaluate(Track(id='a'), 120)
        assert not match.is_match
