"""
Custom route decorators for access control.

- territory_required: ensures user is logged in and resolves their
  territory scope onto g.scope (fail-closed, see territory_service).
- role_required: ensures user is logged in AND holds one of the given roles.
- admin_required: ensures user is logged in AND has the admin role.
"""

from functools import wraps

from flask import abort, g
from flask_login import current_user, login_required

from crm.services.territory_service import resolve_scope


def territory_required(f):
    """Require login and attach the user's TerritoryScope to g.scope."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        g.scope = resolve_scope(current_user.id)
        return f(*args, **kwargs)

    return decorated


def role_required(*roles):
    """Require login + one of `roles`. Admins always pass."""

    def wrapper(f):
        @wraps(f)
        @login_required
        def decorated(*args, **kwargs):
            if not current_user.is_admin and current_user.role not in roles:
                abort(403)
            return f(*args, **kwargs)

        return decorated

    return wrapper


def admin_required(f):
    """Require login + admin role."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not current_user.is_admin:
            abort(403)
        return f(*args, **kwargs)

    return decorated
