"""
Flask web application for Script Healer

JSON API over a HealerRuntime:

- POST   /api/sessions              start a monitored run
- GET    /api/sessions              active sessions
- GET    /api/sessions/<id>         one session (falls back to the archive)
- POST   /api/sessions/<id>/stop    request a stop
- DELETE /api/sessions/<id>         evict a finished session from memory
- GET    /api/history               archived sessions
"""
import os
from datetime import datetime

from flask import Flask, request, jsonify
from flask_cors import CORS

from script_healer.exceptions import SessionNotFound, SessionOptionsError
from script_healer.logger import get_logger
from script_healer.runtime import HealerRuntime

logger = get_logger('flask_app')


def create_app(runtime: HealerRuntime) -> Flask:
    """Build the Flask app around an already started runtime"""
    app = Flask(__name__)
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
    app.config['HEALER_RUNTIME'] = runtime

    # Enable CORS for API endpoints
    CORS(app, origins=['*'])

    @app.route('/api/sessions', methods=['POST'])
    def start_session():
        """Start a monitored run

        JSON body:
        - script: Script source (required)
        - intent: Description string or {description, image_ref}
        - options: {max_attempts, capture_timeout, advisory_timeout, session_timeout, ...}
        """
        payload = request.get_json(silent=True) or {}
        try:
            session_id = runtime.start_session(
                payload.get('script'),
                payload.get('intent'),
                payload.get('options'),
            )
            return jsonify({'session_id': session_id}), 201

        except SessionOptionsError as e:
            return jsonify({'error': str(e)}), 400
        except Exception as e:
            logger.error(f"Error starting session: {e}")
            return jsonify({'error': str(e)}), 500

    @app.route('/api/sessions')
    def list_sessions():
        """Sessions that are still running"""
        try:
            sessions = runtime.list_active_sessions()
            return jsonify({'sessions': [s.to_dict() for s in sessions], 'count': len(sessions)})
        except Exception as e:
            logger.error(f"Error listing sessions: {e}")
            return jsonify({'error': str(e)}), 500

    @app.route('/api/sessions/<session_id>')
    def get_session(session_id):
        """Live session, or its archived copy once evicted"""
        try:
            return jsonify(runtime.get_session(session_id).to_dict())
        except SessionNotFound:
            record = runtime.archived_session(session_id)
            if record:
                return jsonify(record)
            return jsonify({'error': 'Session not found'}), 404
        except Exception as e:
            logger.error(f"Error in get_session route: {e}")
            return jsonify({'error': str(e)}), 500

    @app.route('/api/sessions/<session_id>/stop', methods=['POST'])
    def stop_session(session_id):
        try:
            accepted = runtime.stop_session(session_id)
            session = runtime.get_session(session_id)
            return jsonify({
                'session_id': session_id,
                'stop_requested': accepted,
                'status': session.status.value,
            }), 202
        except SessionNotFound:
            return jsonify({'error': 'Session not found'}), 404
        except Exception as e:
            logger.error(f"Error stopping session {session_id}: {e}")
            return jsonify({'error': str(e)}), 500

    @app.route('/api/sessions/<session_id>', methods=['DELETE'])
    def evict_session(session_id):
        try:
            if not runtime.evict_session(session_id):
                return jsonify({'error': 'Session is still running'}), 409
            return jsonify({'session_id': session_id, 'evicted': True})
        except SessionNotFound:
            return jsonify({'error': 'Session not found'}), 404
        except Exception as e:
            logger.error(f"Error evicting session {session_id}: {e}")
            return jsonify({'error': str(e)}), 500

    @app.route('/api/history')
    def history():
        """Archived sessions, newest first

        Query Parameters:
        - limit: Number of sessions (default: 50, max: 500)
        """
        try:
            limit = min(request.args.get('limit', 50, type=int), 500)
            sessions = runtime.history(limit)
            return jsonify({'sessions': sessions, 'count': len(sessions)})
        except Exception as e:
            logger.error(f"Error loading history: {e}")
            return jsonify({'error': str(e)}), 500

    @app.route('/health')
    def health_check():
        """Health check endpoint"""
        try:
            active = runtime.list_active_sessions()
            return jsonify({
                'status': 'healthy',
                'active_sessions': len(active),
                'timestamp': datetime.utcnow().isoformat(),
            })
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return jsonify({'status': 'unhealthy', 'error': str(e)}), 500

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'error': 'Not found'}), 404

    return app
