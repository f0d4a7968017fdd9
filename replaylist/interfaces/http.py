import os
import logging
from datetime import datetime
from typing import Optional

from flask import Flask, request, jsonify, redirect

from replaylist.application.migration import MigrationSession
from replaylist.application.session_codec import redirect_location_from_state
from replaylist.crosscutting.config import Settings, get_settings
from replaylist.domain.errors import BACKEND_ERRORS
from replaylist.domain.providers import Provider, provider_of
from replaylist.infrastructure.backend import create_backend
from replaylist.infrastructure.native_bridge import PollingBridge


class HTTPServer:
    """Web shell over a single migration session.

    Stage routes return the session's JSON view. The server must run
    single-threaded: the session is owned by the request-handling thread.
    """

    def __init__(self, session: Optional[MigrationSession] = None,
                 settings: Optional[Settings] = None,
                 host: str = 'localhost', port: int = 3000, debug: bool = False):
        """Initialize HTTP server."""
        self.host = host
        self.port = port
        self.debug = debug
        self.settings = settings or get_settings()
        self.bridge = PollingBridge()
        self.session = session or MigrationSession(
            create_backend(self.settings), bridge=self.bridge, settings=self.settings
        )
        if isinstance(self.session.bridge, PollingBridge):
            self.bridge = self.session.bridge
        self.app = Flask(__name__)
        self.logger = logging.getLogger(__name__)

        self.version = "0.1.0"
        self.commit = os.getenv('GIT_COMMIT', 'unknown')

        self._setup_routes()

    def _view(self):
        self.session.pump()
        return jsonify(self.session.view()), 200

    def _setup_routes(self) -> None:
        """Setup Flask routes."""

        @self.app.route('/health', methods=['GET'])
        def health_check():
            """Health check endpoint."""
            return jsonify({
                'status': 'healthy',
                'version': self.version,
                'commit': self.commit,
                'timestamp': datetime.now().isoformat()
            }), 200

        @self.app.route('/', methods=['GET'])
        @self.app.route('/list', methods=['GET'])
        @self.app.route('/done', methods=['GET'])
        def stage():
            """Navigate to the requested location and return the stage view."""
            self.session.navigate(request.full_path)
            return self._view()

        @self.app.route('/view', methods=['GET'])
        def current_view():
            """Current view without navigating; pending responses are applied first."""
            return self._view()

        @self.app.route('/prev', methods=['POST'])
        def previous():
            return jsonify({'location': self.session.previous()}), 200

        @self.app.route('/next', methods=['POST'])
        def next_candidate():
            return jsonify({'location': self.session.next()}), 200

        @self.app.route('/swap', methods=['POST'])
        def swap():
            return jsonify({'location': self.session.swap()}), 200

        @self.app.route('/proceed', methods=['POST'])
        def proceed():
            self.session.pump()
            if not self.session.proceed():
                return jsonify({
                    'error': 'Both providers must be logged in',
                    'location': self.session.location()
                }), 409
            return jsonify({'location': self.session.location()}), 200

        @self.app.route('/select', methods=['POST'])
        def select():
            body = request.get_json(silent=True) or {}
            active = body.get('active', True)
            if not isinstance(active, bool):
                return jsonify({'error': 'active must be a boolean'}), 400
            playlist_id = body.get('id')
            self.session.pump()
            if playlist_id is None:
                self.session.toggle_all(active)
            else:
                self.session.toggle_one(str(playlist_id), active)
            return jsonify({'selected': [item.id for item in self.session.selected_items()]}), 200

        @self.app.route('/submit', methods=['POST'])
        def submit():
            self.session.pump()
            batch = self.session.submit()
            return jsonify({
                'location': self.session.location(),
                'dispatched': len(batch),
                'destination': batch.destination.value
            }), 202

        @self.app.route('/logout', methods=['POST'])
        def logout():
            body = request.get_json(silent=True) or {}
            key = body.get('provider')
            if key is None:
                self.session.logout_all()
            else:
                provider = provider_of(key)
                if provider is None:
                    return jsonify({'error': f'Unknown provider: {key}'}), 404
                self.session.logout(provider)
            return jsonify({'status': 'ok'}), 200

        @self.app.route('/login/<key>', methods=['GET'])
        def login(key: str):
            """Authorize URL for OAuth providers; Apple goes through the native bridge."""
            provider = provider_of(key)
            if provider is None:
                return jsonify({'error': f'Unknown provider: {key}'}), 404
            if provider is Provider.APPLE:
                self.session.start_apple_login()
                return jsonify({'native': True, 'state': self.session.apple.state.value}), 202
            auth_url = self.session.login_url(provider)
            if not auth_url:
                return jsonify({'error': f'{provider.value} OAuth client not configured'}), 500
            return jsonify({'auth_url': auth_url}), 200

        @self.app.route('/login/<key>/callback', methods=['GET'])
        def login_callback(key: str):
            """Send the browser back to the session encoded in ``state``.

            Records no login; provider redirect URIs point at the backend callback,
            which records it. This route only restores the session.
            """
            return redirect(redirect_location_from_state(request.args.get('state')), code=302)

        @self.app.route('/bridge/apple/requests', methods=['GET'])
        def bridge_requests():
            """Polled by the native wrapper: how many login prompts to show."""
            self.session.pump()
            return jsonify({'requested': self.bridge.take_requests()}), 200

        @self.app.route('/bridge/apple/devtoken', methods=['GET'])
        def bridge_devtoken():
            """Developer token the native wrapper needs before showing the Apple login."""
            try:
                token = self.session.apple_developer_token()
            except BACKEND_ERRORS as e:
                self.logger.warning(f"Apple developer token unavailable: {e}")
                return jsonify({'error': str(e)}), 502
            return jsonify({'token': token}), 200

        @self.app.route('/bridge/apple/token', methods=['POST'])
        def bridge_token():
            """Token delivered by the native wrapper."""
            body = request.get_json(silent=True) or {}
            token = body.get('token')
            if not isinstance(token, str) or not token:
                return jsonify({'error': 'Missing token'}), 400
            self.session.deliver_apple_token(token)
            self.session.pump()
            return jsonify({'state': self.session.apple.state.value}), 202

    def run(self) -> None:
        """Run the HTTP server."""
        self.logger.info(f"Starting Replaylist web shell on {self.host}:{self.port}")
        self.session.navigate(self.settings.start_url)
        self.app.run(
            host=self.host,
            port=self.port,
            debug=self.debug,
            threaded=False,
            use_reloader=False
        )


def create_app(session: Optional[MigrationSession] = None, settings: Optional[Settings] = None) -> Flask:
    """Create Flask app for testing."""
    server = HTTPServer(session=session, settings=settings)
    return server.app


if __name__ == '__main__':
    HTTPServer().run()
