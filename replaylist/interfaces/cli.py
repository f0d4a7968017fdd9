import argparse
import sys
import time
from typing import List, Optional

from replaylist.application.migration import MigrationSession
from replaylist.application.session_codec import decode, location_of
from replaylist.crosscutting.config import ConfigError, Settings, get_settings
from replaylist.crosscutting.logging import get_logger, setup_logging
from replaylist.domain.entities import Stage
from replaylist.domain.providers import Provider, all_providers, metadata_of
from replaylist.infrastructure.backend import create_backend

PROVIDER_CHOICES = [p.value for p in all_providers()]


class CLI:
    """Command Line Interface for Replaylist."""

    def __init__(self, settings: Optional[Settings] = None, session: Optional[MigrationSession] = None):
        """Initialize CLI."""
        self.parser = self._create_parser()
        self._settings = settings
        self._session = session
        self._start_time = None

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser."""
        parser = argparse.ArgumentParser(
            prog='replaylist',
            description='Move playlists between music providers'
        )
        parser.add_argument(
            '--log-level',
            choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
            default='WARNING',
            help='Set logging level'
        )
        parser.add_argument(
            '--url',
            default=None,
            help='Session location, e.g. "/?left=youtube,apple&right=spotify&li=1" (default: $REPLAYLIST_URL)'
        )
        parser.add_argument(
            '--timeout',
            type=float,
            default=30.0,
            help='Seconds to wait for backend responses (default: 30)'
        )

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        subparsers.add_parser('status', help='Show the provider pair and login status')

        login_parser = subparsers.add_parser('login', help='Print the login URL for a provider')
        login_parser.add_argument('provider', choices=PROVIDER_CHOICES, help='Provider to log in to')

        subparsers.add_parser('playlists', help='List playlists of the active source provider')

        transfer_parser = subparsers.add_parser('transfer', help='Transfer playlists to the active destination')
        selection = transfer_parser.add_mutually_exclusive_group(required=True)
        selection.add_argument('--all', action='store_true', help='Transfer every playlist')
        selection.add_argument('--playlists', nargs='+', help='Playlist IDs to transfer')
        transfer_parser.add_argument(
            '--wait',
            action='store_true',
            help='Wait for transfer responses and report failures'
        )

        logout_parser = subparsers.add_parser('logout', help='Log out of providers')
        logout_parser.add_argument(
            '--provider',
            choices=PROVIDER_CHOICES,
            help='Only log out of this provider (default: all)'
        )

        serve_parser = subparsers.add_parser('serve', help='Run the web shell')
        serve_parser.add_argument('--host', default='localhost')
        serve_parser.add_argument('--port', type=int, default=3000)

        return parser

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    def _get_session(self) -> MigrationSession:
        if self._session is None:
            self._session = MigrationSession(create_backend(self.settings), settings=self.settings)
        return self._session

    def _start(self, args: argparse.Namespace, stage: Stage = Stage.HOME) -> MigrationSession:
        """Navigate to the requested session at ``stage`` and wait for the responses."""
        session = self._get_session()
        url = args.url or self.settings.start_url
        session.navigate(location_of(decode(url), stage))
        if not session.settle(timeout=args.timeout):
            get_logger(__name__).warning("Timed out waiting for backend responses")
        return session

    def _print_session(self, session: MigrationSession) -> None:
        source = metadata_of(session.session.active_source)
        destination = metadata_of(session.session.active_destination)
        print(f"Source:      {source.name} ({'logged in' if session.gate.is_authenticated(session.session.active_source) else 'not logged in'})")
        print(f"Destination: {destination.name} ({'logged in' if session.gate.is_authenticated(session.session.active_destination) else 'not logged in'})")
        print(f"Location:    {session.location()}")

    def _status(self, args: argparse.Namespace) -> int:
        session = self._start(args)
        self._print_session(session)
        print("-" * 50)
        for provider in all_providers():
            marker = "[x]" if session.gate.is_authenticated(provider) else "[ ]"
            print(f"{marker} {metadata_of(provider).name}")
        if session.gate.last_error:
            print(f"Status refresh failed: {session.gate.last_error}")
        return 0

    def _login(self, args: argparse.Namespace) -> int:
        provider = Provider(args.provider)
        session = self._get_session()
        session.navigate(args.url or self.settings.start_url)
        if provider is Provider.APPLE:
            print("Apple Music logs in through the native app bridge; run 'replaylist serve' and log in from the app.")
            return 0
        url = session.login_url(provider)
        if not url:
            print(f"{metadata_of(provider).name} OAuth client is not configured "
                  f"(set {provider.value.upper()}_CLIENT_ID and {provider.value.upper()}_REDIRECT_URI)", file=sys.stderr)
            return 1
        print(f"{metadata_of(provider).login_label}:")
        print(url)
        return 0

    def _playlists(self, args: argparse.Namespace) -> int:
        session = self._start(args, Stage.LIST)
        source = session.session.active_source
        coll = session.playlists.collection(source)

        print(f"Available playlists from {metadata_of(source).name}:")
        print("-" * 50)
        if coll.last_error:
            print(f"Could not load playlists: {coll.last_error}")
        for item in coll.items:
            print(f"{item.id}: {item.name} (tracks: {item.track_count})")
        return 0

    def _transfer(self, args: argparse.Namespace) -> int:
        logger = get_logger(__name__)
        session = self._start(args)
        if not session.proceed():
            self._print_session(session)
            print("Both providers must be logged in before transferring", file=sys.stderr)
            return 1
        session.settle(timeout=args.timeout)

        if args.all:
            session.toggle_all(True)
        else:
            known = {item.id for item in session.playlists.items(session.session.active_source)}
            for playlist_id in args.playlists:
                if playlist_id not in known:
                    logger.warning(f"Playlist '{playlist_id}' not found; skipping")
                session.toggle_one(playlist_id, True)

        batch = session.submit()
        if not len(batch):
            print("No playlists to transfer")
            return 0

        print(f"Requested transfer of {len(batch)} playlist(s) to {metadata_of(batch.destination).name}")
        if args.wait:
            outcomes = batch.wait(timeout=args.timeout)
            session.settle(timeout=args.timeout)
            failed = [o for o in outcomes if not o.ok]
            for outcome in failed:
                print(f"  {outcome.playlist_id}: {outcome.error}")
            print(f"Accepted: {len(outcomes) - len(failed)}, failed: {len(failed)}, "
                  f"no response: {len(batch) - len(outcomes)}")
        return 0

    def _logout(self, args: argparse.Namespace) -> int:
        session = self._start(args)
        if args.provider:
            session.logout(Provider(args.provider))
        else:
            session.logout_all()
        session.settle(timeout=args.timeout)
        print("Logged out")
        return 0

    def _serve(self, args: argparse.Namespace) -> int:
        from replaylist.interfaces.http import HTTPServer
        HTTPServer(session=self._session, settings=self.settings, host=args.host, port=args.port).run()
        return 0

    def run(self, argv: Optional[List[str]] = None) -> int:
        """Run the CLI and return the exit code."""
        self._start_time = time.time()
        logger = get_logger(__name__)

        args = self.parser.parse_args(argv)
        if not args.command:
            self.parser.print_help()
            return 1

        setup_logging(args.log_level, structured=args.log_level == 'DEBUG')

        handlers = {
            'status': self._status,
            'login': self._login,
            'playlists': self._playlists,
            'transfer': self._transfer,
            'logout': self._logout,
            'serve': self._serve,
        }
        try:
            return handlers[args.command](args)
        except ConfigError as e:
            logger.error(f"Configuration error: {e}")
            print(f"Configuration error: {e}", file=sys.stderr)
            return 1
        except KeyboardInterrupt:
            logger.warning("Operation cancelled by user")
            return 130
        finally:
            if self._session is not None and args.command != 'serve':
                self._session.close()
            logger.debug(f"CLI execution time: {time.time() - self._start_time:.2f}s")


def main():
    """Main entry point."""
    sys.exit(CLI().run())


if __name__ == '__main__':
    main()
