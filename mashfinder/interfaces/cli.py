import argparse
import json
import logging
import signal
import sys
import time
from typing import Any, List, Optional

from mashfinder.application.discovery import DiscoveryService, SearchOutcome
from mashfinder.crosscutting.config import ConfigError, ConfigManager, setup_config
from mashfinder.crosscutting.logging import setup_logging
from mashfinder.crosscutting.metrics import QuotaTracker
from mashfinder.domain.entities import VIDEO_TYPES
from mashfinder.domain.errors import InvalidRequest
from mashfinder.domain.keys import compatible_keys, is_valid_key
from mashfinder.interfaces.http import HTTPServer, create_service

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INVALID = 2
EXIT_INTERRUPTED = 130

LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR']


class CLI:
    """Command Line Interface for mashfinder."""

    def __init__(self, config: Optional[ConfigManager] = None,
                 service: Optional[DiscoveryService] = None,
                 out=None):
        """Initialize CLI.

        ``config`` and ``service`` are built from the environment on first use
        when not supplied.
        """
        self.parser = self._create_parser()
        self._setup_signal_handlers()
        self._start_time = None
        self._config = config
        self._service = service
        self._out = out or sys.stdout

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser."""
        parser = argparse.ArgumentParser(
            prog='mashfinder',
            description='Find tempo- and key-compatible tracks for mashups'
        )
        parser.add_argument(
            '--env-file',
            default=None,
            help='Path to a .env file (default: ./.env)'
        )

        common = argparse.ArgumentParser(add_help=False)
        common.add_argument(
            '--log-level',
            choices=LOG_LEVELS,
            default='WARNING',
            help='Set logging level'
        )
        common.add_argument(
            '--json',
            action='store_true',
            help='Print results as JSON'
        )

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        search_parser = subparsers.add_parser('search', parents=[common], help='Search tracks')
        search_parser.add_argument('query', help='Free-text query (title, artist)')
        search_parser.add_argument(
            '--page',
            type=int,
            default=1,
            help='Result page, starting at 1'
        )
        search_parser.add_argument(
            '--limit',
            type=int,
            default=None,
            help='Results per page (default: all)'
        )

        compatible_parser = subparsers.add_parser(
            'compatible', parents=[common], help='Find tracks with a compatible tempo')
        compatible_parser.add_argument(
            '--bpm',
            required=True,
            help='Target tempo in BPM'
        )
        compatible_parser.add_argument(
            '--key',
            default=None,
            help='Target key, e.g. "A minor"'
        )
        compatible_parser.add_argument(
            '--exclude-id',
            default=None,
            help='Track ID to leave out of the results'
        )
        compatible_parser.add_argument(
            '--genre',
            default=None,
            help='Restrict candidate searches to a genre'
        )
        compatible_parser.add_argument(
            '--search',
            default=None,
            help='Free-text terms to seed candidate searches'
        )
        compatible_parser.add_argument(
            '--strict-key',
            action='store_true',
            help='Only return tracks in a compatible key'
        )
        compatible_parser.add_argument(
            '--limit',
            type=int,
            default=None,
            help='Maximum number of results (at most 25)'
        )

        keys_parser = subparsers.add_parser('keys', parents=[common], help='Show compatible keys')
        keys_parser.add_argument('key', help='Key name, e.g. "C major"')

        videos_parser = subparsers.add_parser(
            'videos', parents=[common], help='Find instrumental or acapella videos')
        videos_parser.add_argument('query', help='Song title, optionally followed by the artist')
        videos_parser.add_argument(
            '--type',
            choices=list(VIDEO_TYPES),
            default='instrumental',
            help='Video type (default: instrumental)'
        )

        serve_parser = subparsers.add_parser('serve', parents=[common], help='Run the HTTP API')
        serve_parser.add_argument('--host', default='localhost', help='Bind address')
        serve_parser.add_argument('--port', type=int, default=3000, help='Port (default: 3000)')
        serve_parser.add_argument('--debug', action='store_true', help='Enable Flask debug mode')

        subparsers.add_parser('config', parents=[common], help='Show configuration summary')

        return parser

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            logger = logging.getLogger(__name__)
            logger.warning(f"Received signal {signum}, shutting down gracefully...")
            self._cleanup_resources()
            sys.exit(EXIT_INTERRUPTED)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def _cleanup_resources(self) -> None:
        logger = logging.getLogger(__name__)
        if self._start_time:
            duration = time.time() - self._start_time
            logger.info(f"CLI execution time: {duration:.2f}s")

    def _get_config(self, args: argparse.Namespace) -> ConfigManager:
        if self._config is None:
            self._config = setup_config(getattr(args, 'env_file', None))
        return self._config

    def _get_service(self, args: argparse.Namespace) -> DiscoveryService:
        if self._service is None:
            self._service = create_service(self._get_config(args))
        return self._service

    def _print(self, text: str = '') -> None:
        print(text, file=self._out)

    def _print_json(self, data: Any) -> None:
        self._print(json.dumps(data, indent=2, ensure_ascii=False))

    def _print_outcome(self, outcome: SearchOutcome, as_json: bool, show_distance: bool = False) -> None:
        if as_json:
            tracks = []
            for match in outcome.matches or []:
                entry = match.track.to_dict()
                entry['bpmDistance'] = match.distance
                entry['keyCompatible'] = match.key_compatible
                tracks.append(entry)
            if not outcome.matches:
                tracks = [t.to_dict() for t in outcome.tracks]
            body = {'tracks': tracks, 'source': outcome.source}
            if outcome.total is not None:
                body['total'] = outcome.total
                body['page'] = outcome.page
            if outcome.warning:
                body['warning'] = outcome.warning
            self._print_json(body)
            return

        self._print(f"Source: {outcome.source}" + (f" ({outcome.warning})" if outcome.warning else ''))
        self._print("-" * 50)
        if not outcome.tracks:
            self._print("No tracks found")
            return
        if show_distance:
            for match in outcome.matches:
                t = match.track
                key_flag = ' *' if match.key_compatible else ''
                self._print(f"{t.title} - {t.artist} | {t.bpm} BPM (+{match.distance}) | {t.key}{key_flag}"
                            f" [{t.data_source.value}]")
        else:
            for t in outcome.tracks:
                self._print(f"{t.id}: {t.title} - {t.artist} | {t.bpm} BPM | {t.key} [{t.data_source.value}]")

    def _search(self, args: argparse.Namespace) -> int:
        outcome = self._get_service(args).search(args.query, page=args.page, limit=args.limit)
        self._print_outcome(outcome, args.json)
        return EXIT_OK

    def _compatible(self, args: argparse.Namespace) -> int:
        if args.limit is not None and args.limit <= 0:
            raise InvalidRequest('limit', 'limit must be a positive integer')
        outcome = self._get_service(args).compatible(
            args.bpm,
            key=args.key,
            exclude_id=args.exclude_id,
            genre=args.genre,
            search_terms=args.search,
            strict_key=args.strict_key,
        )
        if args.limit is not None:
            outcome = SearchOutcome(
                tracks=outcome.tracks[:args.limit],
                source=outcome.source,
                matches=outcome.matches[:args.limit],
                warning=outcome.warning,
            )
        self._print_outcome(outcome, args.json, show_distance=True)
        return EXIT_OK

    def _keys(self, args: argparse.Namespace) -> int:
        keys = compatible_keys(args.key)
        if args.json:
            self._print_json({'key': args.key, 'known': is_valid_key(args.key), 'compatibleKeys': keys})
        else:
            self._print(f"Compatible with {args.key}:")
            for key in keys:
                self._print(f"  {key}")
        return EXIT_OK

    def _videos(self, args: argparse.Namespace) -> int:
        videos = self._get_service(args).find_videos(args.query, '', args.type)
        if args.json:
            self._print_json([v.to_dict() for v in videos])
        else:
            for video in videos:
                marker = ' (placeholder)' if video.is_placeholder else ''
                self._print(f"{video.id}: {video.title} [{video.duration}]{marker}")
        return EXIT_OK

    def _config_summary(self, args: argparse.Namespace) -> int:
        summary = self._get_config(args).get_config_summary()
        if args.json:
            self._print_json(summary)
        else:
            for name, present in summary['validation'].items():
                self._print(f"{name}: {'configured' if present else 'missing'}")
            self._print(f"market: {summary['market']}")
            self._print(f"request_timeout: {summary['request_timeout']}s")
        return EXIT_OK

    def _serve(self, args: argparse.Namespace) -> int:
        config = self._get_config(args)
        quota = QuotaTracker(config.get_settings().youtube_daily_quota)
        server = HTTPServer(
            host=args.host,
            port=args.port,
            debug=args.debug,
            config=config,
            service=self._service or create_service(config, quota=quota),
            quota=quota,
        )
        server.run()
        return EXIT_OK

    def run(self, argv: Optional[List[str]] = None) -> int:
        """Run the CLI and return the process exit code."""
        self._start_time = time.time()
        logger = logging.getLogger(__name__)

        args = self.parser.parse_args(argv)
        if not args.command:
            self.parser.print_help()
            return EXIT_ERROR

        setup_logging(args.log_level)

        commands = {
            'search': self._search,
            'compatible': self._compatible,
            'keys': self._keys,
            'videos': self._videos,
            'serve': self._serve,
            'config': self._config_summary,
        }

        try:
            return commands[args.command](args)
        except InvalidRequest as e:
            logger.error(f"Invalid {e.field}: {e}")
            print(f"error: {e}", file=sys.stderr)
            return EXIT_INVALID
        except ConfigError as e:
            logger.error(f"Configuration error: {e}")
            print(f"error: {e}", file=sys.stderr)
            return EXIT_ERROR
        except KeyboardInterrupt:
            logger.warning("Operation cancelled by user")
            return EXIT_INTERRUPTED
        finally:
            self._cleanup_resources()


def main():
    """Main entry point."""
    cli = CLI()
    sys.exit(cli.run())


if __name__ == '__main__':
    main()
