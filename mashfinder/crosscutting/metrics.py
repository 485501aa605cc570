import threading
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Callable, Dict, Optional

from mashfinder.domain.errors import (
    ConfigurationMissing, ProviderRateLimited, ProviderUnauthorized, ProviderUnreachable,
)


@dataclass
class ProviderStats:
    """Counters for calls made to one external provider."""
    provider: str
    calls: int = 0
    successes: int = 0
    fallbacks: int = 0
    rate_limited: int = 0
    total_duration_ms: int = 0
    errors: Dict[str, int] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        """Fraction of calls that succeeded."""
        if self.calls == 0:
            return 0.0
        return self.successes / self.calls

    @property
    def fallback_rate(self) -> float:
        """Fraction of calls answered from fallback data."""
        if self.calls == 0:
            return 0.0
        return self.fallbacks / self.calls

    @property
    def average_duration_ms(self) -> float:
        if self.calls == 0:
            return 0.0
        return self.total_duration_ms / self.calls


class ProviderMetrics:
    """Collects per-provider call metrics for the discovery service."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._stats: Dict[str, ProviderStats] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def _get(self, provider: str) -> ProviderStats:
        stats = self._stats.get(provider)
        if stats is None:
            stats = ProviderStats(provider=provider)
            self._stats[provider] = stats
        return stats

    def record_success(self, provider: str, duration_ms: int = 0) -> None:
        with self._lock:
            stats = self._get(provider)
            stats.calls += 1
            stats.successes += 1
            stats.total_duration_ms += duration_ms

    def record_failure(self, provider: str, error: Exception, duration_ms: int = 0) -> None:
        """Record a failed call that was answered with fallback data."""
        with self._lock:
            stats = self._get(provider)
            stats.calls += 1
            stats.fallbacks += 1
            stats.total_duration_ms += duration_ms
            if isinstance(error, ProviderRateLimited):
                stats.rate_limited += 1
            name = type(error).__name__
            stats.errors[name] = stats.errors.get(name, 0) + 1

    @contextmanager
    def timed(self, provider: str):
        """Time a provider call; the outcome is recorded when the block exits.

        Provider and configuration errors are recorded as fallbacks and re-raised.
        """
        start = self._clock()
        try:
            yield
        except (ConfigurationMissing, ProviderUnauthorized, ProviderRateLimited, ProviderUnreachable) as e:
            self.record_failure(provider, e, int((self._clock() - start) * 1000))
            raise
        else:
            self.record_success(provider, int((self._clock() - start) * 1000))

    def get(self, provider: str) -> Optional[ProviderStats]:
        with self._lock:
            return self._stats.get(provider)

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to dictionary for JSON serialization."""
        with self._lock:
            result = {}
            for name, stats in self._stats.items():
                entry = asdict(stats)
                entry['success_rate'] = stats.success_rate
                entry['fallback_rate'] = stats.fallback_rate
                entry['average_duration_ms'] = stats.average_duration_ms
                result[name] = entry
            return result

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()


class QuotaTracker:
    """Daily usage estimate for the YouTube Data API quota (units reset each day)."""

    def __init__(self, daily_limit: int = 10000, today: Callable[[], date] = date.today):
        self.daily_limit = daily_limit
        self._today = today
        self._day = today()
        self._used = 0
        self._lock = threading.Lock()

    def _roll(self) -> None:
        current = self._today()
        if current != self._day:
            self._day = current
            self._used = 0

    def record(self, units: int) -> None:
        with self._lock:
            self._roll()
            self._used += units

    @property
    def used(self) -> int:
        with self._lock:
            self._roll()
            return self._used

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            self._roll()
            percentage = (self._used / self.daily_limit) * 100 if self.daily_limit else 0.0
            return {
                'date': self._day.isoformat(),
                'used': self._used,
                'limit': self.daily_limit,
                'percentage': percentage,
                'near_limit': percentage > 80,
                'over_limit': percentage > 100,
            }
