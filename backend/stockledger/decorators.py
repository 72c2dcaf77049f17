# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, g

ACTOR_HEADER = "X-Actor"


def with_actor(f):
    """
    Resolve the audit label for the request into g.actor.

    The header is an opaque label recorded on history entries. It is not
    authenticated; a missing or blank header leaves g.actor as None.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor = (request.headers.get(ACTOR_HEADER) or "").strip()
        g.actor = actor[:255] or None
        return f(*args, **kwargs)

    return decorated_function
