"""
Authentication utilities for the Flask application
"""
import logging
from datetime import datetime, timezone as tz
from functools import wraps

from flask import current_app, jsonify, request, session

logger = logging.getLogger(__name__)

MAX_SESSION_SECONDS = 4 * 60 * 60  # 4 hours


def current_user():
    """Email of the signed-in user, or None."""
    if current_app.config.get('AUTH_DISABLED'):
        return session.get('user_email') or 'local-dev@localhost'
    return session.get('user_email')


def login_required(f):
    """Decorator to require an authenticated session for JSON routes (401 otherwise)"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if current_app.config.get('AUTH_DISABLED'):
            return f(*args, **kwargs)

        # Check if user has valid access token and email
        if not session.get('access_token') or not session.get('user_email'):
            logger.info(f"Unauthenticated request to {request.endpoint}")
            return jsonify({'error': 'Not authenticated'}), 401

        # Check absolute session timeout
        login_time_str = session.get('login_time')
        if login_time_str:
            try:
                login_time = datetime.fromisoformat(login_time_str)
                session_age = (datetime.now(tz.utc) - login_time).total_seconds()
            except (ValueError, TypeError) as e:
                logger.warning(f"Unreadable login_time in session: {e}")
                session.clear()
                return jsonify({'error': 'Not authenticated'}), 401

            if session_age > MAX_SESSION_SECONDS:
                logger.info(f"Session expired after {session_age:.0f} seconds")
                session.clear()
                return jsonify({'error': 'Session expired'}), 401

        return f(*args, **kwargs)
    return decorated_function
