"""
Actor decorator for JSON actions.

Authentication happens upstream (reverse proxy or session layer); actions
only need the id of the user performing them, passed in X-User-Id.
"""

from functools import wraps
from flask import g, request

from gestock.exceptions import UnauthorizedError

ACTOR_HEADER = 'X-User-Id'


def require_actor(f):
    """Store the acting user id in g.actor_id, or refuse the request."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor_id = (request.headers.get(ACTOR_HEADER) or '').strip()
        if not actor_id:
            raise UnauthorizedError()
        g.actor_id = actor_id
        return f(*args, **kwargs)

    return decorated_function
