"""Territory service — which pincodes a user may see.

Admins see everything. Everyone else sees exactly the pincodes mapped to
their email in pincode_persona_map; an empty mapping sees nothing. A
failed lookup also resolves to nothing (fail-closed), never to full access.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy import false
from sqlalchemy.exc import SQLAlchemyError

from crm.extensions import db
from crm.models.lookup import PincodePersonaMap
from crm.models.user import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TerritoryScope:
    is_unrestricted: bool = False
    pincodes: frozenset = field(default_factory=frozenset)

    def allows(self, pincode):
        """True if a record in `pincode` is visible under this scope."""
        return self.is_unrestricted or pincode in self.pincodes

    def to_dict(self):
        return {
            "is_unrestricted": self.is_unrestricted,
            "pincodes": sorted(self.pincodes),
        }


NO_ACCESS = TerritoryScope(is_unrestricted=False, pincodes=frozenset())


def resolve_scope(user_id):
    """Resolve the territory scope of a user.

    Args:
        user_id: User UUID string.

    Returns:
        TerritoryScope. Unknown users and lookup failures get NO_ACCESS.
    """
    try:
        user = db.session.get(User, user_id) if user_id else None
        if user is None:
            return NO_ACCESS

        mappings = (
            PincodePersonaMap.query
            .filter(db.func.lower(PincodePersonaMap.user_email) == user.email.lower())
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Territory lookup failed for user {user_id}: {e}")
        db.session.rollback()
        return NO_ACCESS

    if user.is_admin or any(m.role == "admin" for m in mappings):
        return TerritoryScope(is_unrestricted=True, pincodes=frozenset())

    return TerritoryScope(
        is_unrestricted=False,
        pincodes=frozenset(m.pincode for m in mappings),
    )


def apply_scope(query, pincode_column, scope):
    """Narrow `query` to rows whose `pincode_column` is inside `scope`."""
    if scope.is_unrestricted:
        return query
    if not scope.pincodes:
        return query.filter(false())
    return query.filter(pincode_column.in_(sorted(scope.pincodes)))
