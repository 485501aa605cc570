import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import dotenv_values

from mashfinder.domain.errors import ConfigurationMissing


class ConfigError(Exception):
    """Configuration error."""
    pass


@dataclass(frozen=True)
class Settings:
    """Resolved application settings."""
    spotify_client_id: Optional[str] = None
    spotify_client_secret: Optional[str] = None
    youtube_api_key: Optional[str] = None
    market: str = 'US'
    search_limit: int = 20
    request_timeout: int = 10
    token_refresh_margin: int = 300
    video_cache_size: int = 256
    result_limit: int = 25
    youtube_daily_quota: int = 10000
    log_level: str = 'INFO'
    commit: str = 'unknown'


def _preview(value: Optional[str]) -> str:
    return f"{value[:4]}..." if value else 'undefined'


class ConfigManager:
    """Reads settings from the environment, with an optional .env file underneath.

    Real environment variables win over values in the .env file.
    """

    def __init__(self, env_file: Optional[str] = None, environ: Optional[Mapping[str, str]] = None):
        """Initialize config manager."""
        self.env_file = Path(env_file) if env_file else Path.cwd() / '.env'
        self._environ = environ
        self._settings: Optional[Settings] = None

    def load_env_vars(self) -> Dict[str, str]:
        """Load variables from the .env file, if it exists."""
        if not self.env_file.exists():
            return {}
        try:
            return {k: v for k, v in dotenv_values(self.env_file).items() if v is not None}
        except OSError as e:
            raise ConfigError(f"Failed to load .env file {self.env_file}: {e}")

    def _merged(self) -> Dict[str, str]:
        merged = self.load_env_vars()
        merged.update(os.environ if self._environ is None else self._environ)
        return merged

    @staticmethod
    def _int(values: Mapping[str, str], name: str, default: int) -> int:
        raw = values.get(name)
        if raw is None or raw == '':
            return default
        try:
            return int(raw)
        except ValueError:
            raise ConfigError(f"{name} must be an integer, got {raw!r}")

    def load(self) -> Settings:
        """Resolve settings from .env and the environment."""
        values = self._merged()
        settings = Settings(
            spotify_client_id=values.get('SPOTIFY_CLIENT_ID') or values.get('NEXT_PUBLIC_SPOTIFY_CLIENT_ID') or None,
            spotify_client_secret=values.get('SPOTIFY_CLIENT_SECRET') or None,
            youtube_api_key=values.get('YOUTUBE_API_KEY') or values.get('NEXT_PUBLIC_YOUTUBE_API_KEY') or None,
            market=values.get('MASHFINDER_MARKET') or 'US',
            search_limit=self._int(values, 'MASHFINDER_SEARCH_LIMIT', 20),
            request_timeout=self._int(values, 'MASHFINDER_REQUEST_TIMEOUT', 10),
            token_refresh_margin=max(60, min(self._int(values, 'MASHFINDER_TOKEN_REFRESH_MARGIN', 300), 300)),
            video_cache_size=self._int(values, 'MASHFINDER_VIDEO_CACHE_SIZE', 256),
            result_limit=max(1, min(self._int(values, 'MASHFINDER_RESULT_LIMIT', 25), 25)),
            youtube_daily_quota=self._int(values, 'MASHFINDER_YOUTUBE_DAILY_QUOTA', 10000),
            log_level=(values.get('MASHFINDER_LOG_LEVEL') or 'INFO').upper(),
            commit=values.get('GIT_COMMIT') or 'unknown',
        )
        if settings.request_timeout <= 0:
            raise ConfigError("MASHFINDER_REQUEST_TIMEOUT must be positive")
        if settings.video_cache_size < 1:
            raise ConfigError("MASHFINDER_VIDEO_CACHE_SIZE must be at least 1")
        self._settings = settings
        return settings

    def get_settings(self) -> Settings:
        if self._settings is None:
            return self.load()
        return self._settings

    def reload(self) -> Settings:
        self._settings = None
        return self.load()

    def get_spotify_credentials(self) -> Dict[str, str]:
        """Get Spotify client credentials."""
        settings = self.get_settings()
        if not settings.spotify_client_id:
            raise ConfigurationMissing('SPOTIFY_CLIENT_ID')
        if not settings.spotify_client_secret:
            raise ConfigurationMissing('SPOTIFY_CLIENT_SECRET')
        return {
            'client_id': settings.spotify_client_id,
            'client_secret': settings.spotify_client_secret,
        }

    def get_youtube_api_key(self) -> str:
        settings = self.get_settings()
        if not settings.youtube_api_key:
            raise ConfigurationMissing('YOUTUBE_API_KEY')
        return settings.youtube_api_key

    def validate_configuration(self) -> Dict[str, bool]:
        """Report which credentials are present."""
        settings = self.get_settings()
        return {
            'spotify_client_id': bool(settings.spotify_client_id),
            'spotify_client_secret': bool(settings.spotify_client_secret),
            'youtube_api_key': bool(settings.youtube_api_key),
        }

    def get_config_summary(self) -> Dict[str, Any]:
        """Get configuration summary (without sensitive data)."""
        settings = self.get_settings()
        return {
            'env_file': str(self.env_file),
            'validation': self.validate_configuration(),
            'spotify': {
                'clientIdLength': len(settings.spotify_client_id or ''),
                'clientSecretLength': len(settings.spotify_client_secret or ''),
                'clientIdPreview': _preview(settings.spotify_client_id),
                'clientSecretPreview': _preview(settings.spotify_client_secret),
            },
            'youtube': {
                'apiKeyLength': len(settings.youtube_api_key or ''),
                'apiKeyPreview': _preview(settings.youtube_api_key),
            },
            'market': settings.market,
            'request_timeout': settings.request_timeout,
            'video_cache_size': settings.video_cache_size,
            'result_limit': settings.result_limit,
        }


# Global instance
config_manager = ConfigManager()


def get_config_manager() -> ConfigManager:
    """Get global config manager instance."""
    return config_manager


def setup_config(env_file: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> ConfigManager:
    """Setup configuration with a custom .env file or environment mapping."""
    global config_manager
    config_manager = ConfigManager(env_file, environ)
    return config_manager
