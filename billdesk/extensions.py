"""
Deferred extension instances.

Created here, bound to the app in create_app() via init_app().
"""

from flask import jsonify
from flask_caching import Cache
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_wtf.csrf import CSRFProtect
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
csrf = CSRFProtect()
cache = Cache()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # No global limit; limits are per-route
    storage_uri="memory://",
)

# The session cookie only carries the opaque UserSession token; revocation
# happens by deleting the row, so Flask-Login's own protection is not used.
login_manager.session_protection = None


@login_manager.user_loader
def load_user(session_token):
    """Load user from the session token. Imports lazily to avoid circular deps."""
    from billdesk.services.auth_service import load_user_from_token

    return load_user_from_token(session_token)


@login_manager.unauthorized_handler
def unauthorized():
    """JSON 401 instead of a redirect to a login page."""
    return jsonify({
        "error": "Unauthorized",
        "message": "Please log in to access this resource.",
    }), 401
