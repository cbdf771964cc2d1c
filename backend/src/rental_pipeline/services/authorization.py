"""Capability checks for property-side pipeline operations.

Counter, accept, reject and complete-visit are reserved to property-side
roles. The check is injected into the pipeline service so the privileged-role
set can change without touching pipeline logic.
"""

import logging

from rental_pipeline.domain.models import Property, User

logger = logging.getLogger(__name__)


class NegotiationAuthorizer:
    """Decides whether a user may act on the property side of a deal.

    ``global_roles`` may act on any property; other ``privileged_roles`` only
    on properties they own.
    """

    def __init__(self, privileged_roles: set[str], global_roles: set[str] | None = None):
        self.privileged_roles = set(privileged_roles)
        self.global_roles = set(global_roles or ()) & self.privileged_roles

    def sees_all_properties(self, user: User) -> bool:
        return bool(user and user.is_active and user.role in self.global_roles)

    def is_property_side(self, user: User) -> bool:
        return bool(user and user.is_active and user.role in self.privileged_roles)

    def can_negotiate(self, user: User, property_: Property | None) -> bool:
        if not user or not user.is_active:
            return False
        if user.role in self.global_roles:
            return True
        if user.role not in self.privileged_roles:
            return False
        return property_ is not None and property_.owner_id == user.id


def get_default_authorizer() -> NegotiationAuthorizer:
    """Build the authorizer from configured role sets."""
    from rental_pipeline.app.config import get_settings

    settings = get_settings()
    return NegotiationAuthorizer(settings.privileged_roles_set, settings.global_roles_set)
