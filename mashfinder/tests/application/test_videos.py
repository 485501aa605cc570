from unittest.mock import Mock

import pytest

from mashfinder.application.videos import (
    VideoLookup, failure_placeholders, unconfigured_placeholders,
)
from mashfinder.crosscutting.metrics import ProviderMetrics
from mashfinder.domain.entities import VideoResult
from mashfinder.domain.errors import (
    ConfigurationMissing, InvalidRequest, ProviderRateLimited, ProviderUnreachable,
)
from mashfinder.infrastructure.cache import LRUCache
from mashfinder.infrastructure.providers.youtube import YouTubeVideos


class TestPlaceholders:
    """Tests for placeholder video descriptors."""

    def test_unconfigured_placeholders(self):
        videos = unconfigured_placeholders('Song Artist', 'instrumental')

        assert [v.id for v in videos] == ['mock1', 'mock2']
        assert videos[0].title == 'Song Artist (Instrumental)'
        assert videos[1].title == 'Song Artist instrumental version'
        assert videos[0].duration == '3:45'
        assert videos[0].thumbnail == 'https://img.youtube.com/vi/mock1/mqdefault.jpg'
        assert all(v.is_placeholder for v in videos)

    def test_failure_placeholders(self):
        videos = failure_placeholders('Song', 'acapella', 1700000000000)

        assert [v.id for v in videos] == ['mock_1700000000000_1', 'mock_1700000000000_2']
        assert videos[0].title == 'Song (Acapella) - Mock'
        assert videos[1].duration == '4:12'


class TestVideoLookup:
    """Tests for cached video lookup."""

    def setup_method(self):
        """Set up test fixtures."""
        self.provider = Mock()
        self.provider.search.return_value = [VideoResult('abc', 'Song (Instrumental)', '3:10', 'thumb')]
        self.metrics = ProviderMetrics()
        self.lookup = VideoLookup(self.provider, cache=LRUCache(2), metrics=self.metrics, clock=lambda: 1.5)

    def test_results_are_cached(self):
        first = self.lookup.find('Song', 'Artist', 'instrumental')
        second = self.lookup.find('  song ', 'ARTIST', 'instrumental')

        assert first == second
        self.provider.search.assert_called_once_with('Song Artist', 'instrumental')
        assert self.metrics.get('youtube').successes == 1

    def test_cached_results_are_copies(self):
        first = self.lookup.find('Song', 'Artist', 'instrumental')
        first.clear()

        second = self.lookup.find('Song', 'Artist', 'instrumental')
        second.append(VideoResult('extra', 'Other', '1:00', ''))

        assert [v.id for v in self.lookup.find('Song', 'Artist', 'instrumental')] == ['abc']
        self.provider.search.assert_called_once()

    def test_cache_key_includes_type(self):
        self.lookup.find('Song', 'Artist', 'instrumental')
        self.lookup.find('Song', 'Artist', 'acapella')
        assert self.provider.search.call_count == 2

    def test_no_provider_returns_unconfigured_placeholders(self):
        lookup = VideoLookup(None)
        videos = lookup.find('Song', '', 'instrumental')
        assert [v.id for v in videos] == ['mock1', 'mock2']

    def test_missing_key_returns_unconfigured_placeholders(self):
        self.provider.search.side_effect = ConfigurationMissing('YOUTUBE_API_KEY')

        videos = self.lookup.find('Song', 'Artist')

        assert [v.id for v in videos] == ['mock1', 'mock2']
        assert videos[0].title == 'Song Artist (Instrumental)'

    def test_provider_failure_returns_failure_placeholders(self):
        self.provider.search.side_effect = ProviderUnreachable('youtube', 'boom')

        videos = self.lookup.find('Song', 'Artist')

        assert [v.id for v in videos] == ['mock_1500_1', 'mock_1500_2']
        assert self.metrics.get('youtube').fallbacks == 1

    def test_placeholders_are_not_cached(self):
        self.provider.search.side_effect = [ProviderRateLimited('youtube'), [VideoResult('real', 't', '1:00', '')]]

        first = self.lookup.find('Song', 'Artist')
        second = self.lookup.find('Song', 'Artist')

        assert first[0].is_placeholder
        assert second[0].id == 'real'

    def test_invalid_type(self):
        with pytest.raises(InvalidRequest) as exc_info:
            self.lookup.find('Song', 'Artist', 'karaoke')
        assert exc_info.value.field == 'type'

    def test_empty_query(self):
        with pytest.raises(InvalidRequest):
            self.lookup.find('  ', '')

    def test_malformed_provider_response_returns_failure_placeholders(self):
        response = Mock(status_code=200)
        response.json.side_effect = ValueError('Expecting value')
        session = Mock()
        session.get.return_value = response
        lookup = VideoLookup(YouTubeVideos('key', session=session), cache=LRUCache(2), clock=lambda: 2.0)

        videos = lookup.find('Song', 'Artist')

        assert [v.id for v in videos] == ['mock_2000_1', 'mock_2000_2']
        assert len(lookup.cache) == 0
