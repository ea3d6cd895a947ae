"""
Role based access control with dealer delegation.

Effective permissions are the union of a role's baseline capabilities and the
identity's explicit grants. Dealer sub-accounts additionally receive delegated
capabilities, and both their capabilities and their resource scope are
narrowed to what the parent dealer holds at resolution time.

The resolver is pure: it performs no I/O and keeps no mutable state, so equal
inputs always yield equal results.
"""

from collections.abc import Mapping
from dataclasses import replace
from types import MappingProxyType

from .exceptions import AUTHORIZATION_ERRORS
from .types import (
    ADMIN_CAPABILITIES,
    DEALER_CAPABILITIES,
    STAFF_ROLES,
    AccessScope,
    ActionPolicy,
    AuthorizationResult,
    Capability,
    DealerAccountRole,
    DenyReason,
    EffectivePermissions,
    Identity,
    Resource,
    Role,
    RouteClass,
)

ALL_ROLES = frozenset(Role)

ROLE_BASELINE: Mapping[Role, frozenset[Capability]] = MappingProxyType(
    {
        Role.SUPER_ADMIN: ADMIN_CAPABILITIES | DEALER_CAPABILITIES,
        Role.ADMIN: ADMIN_CAPABILITIES
        - {
            Capability.SYSTEM_CONFIG,
            Capability.CAPABILITY_ASSIGNMENT,
            Capability.PLATFORM_SETTINGS,
        },
        Role.MODERATOR: frozenset(
            {
                Capability.CONTENT_MODERATION,
                Capability.ANALYTICS_VIEW,
                Capability.SUPPORT_ACCESS,
            }
        ),
        Role.SUPPORT: frozenset({Capability.SUPPORT_ACCESS}),
        Role.USER: frozenset(),
    }
)

_READ_CAPABILITIES = {
    Capability.ANALYTICS_VIEW,
    Capability.AUDIT_LOG_VIEW,
    Capability.SUPPORT_ACCESS,
}

_SCOPE_AREAS = {
    Capability.LEAD_MANAGEMENT: "leads",
    Capability.INVENTORY_MANAGEMENT: "inventory",
    Capability.PRICING_MANAGEMENT: "pricing",
}


def _capability_policy(capability: Capability) -> ActionPolicy:
    return ActionPolicy(
        capability=capability,
        allowed_roles=STAFF_ROLES if capability in ADMIN_CAPABILITIES else ALL_ROLES,
        route_class=(
            RouteClass.READ if capability in _READ_CAPABILITIES else RouteClass.MUTATION
        ),
        scope_area=_SCOPE_AREAS.get(capability),
    )


def _staff(capability: Capability, route_class: RouteClass) -> ActionPolicy:
    return ActionPolicy(capability, STAFF_ROLES, route_class)


def _dealer(
    capability: Capability, route_class: RouteClass, scope_area: str | None = None
) -> ActionPolicy:
    return ActionPolicy(capability, ALL_ROLES, route_class, scope_area)


ACTION_POLICIES: Mapping[str, ActionPolicy] = MappingProxyType(
    {
        **{capability.value: _capability_policy(capability) for capability in Capability},
        "user_suspend": _staff(Capability.USER_MANAGEMENT, RouteClass.MUTATION),
        "user_ban": _staff(Capability.USER_MANAGEMENT, RouteClass.MUTATION),
        "session_revoke": _staff(Capability.USER_MANAGEMENT, RouteClass.MUTATION),
        "listing_approve": _staff(Capability.CONTENT_MODERATION, RouteClass.MUTATION),
        "listing_reject": _staff(Capability.CONTENT_MODERATION, RouteClass.MUTATION),
        "financial_view": _staff(Capability.FINANCIAL_ACCESS, RouteClass.READ),
        "settings_update": _staff(Capability.PLATFORM_SETTINGS, RouteClass.MUTATION),
        "tier_update": _staff(Capability.TIER_MANAGEMENT, RouteClass.MUTATION),
        "audit_log_export": _staff(Capability.AUDIT_LOG_VIEW, RouteClass.READ),
        "listing_view": _dealer(Capability.LISTING_MANAGEMENT, RouteClass.READ),
        "listing_update": _dealer(Capability.LISTING_MANAGEMENT, RouteClass.MUTATION),
        "lead_view": _dealer(Capability.LEAD_MANAGEMENT, RouteClass.READ, "leads"),
        "inventory_update": _dealer(
            Capability.INVENTORY_MANAGEMENT, RouteClass.MUTATION, "inventory"
        ),
        "pricing_update": _dealer(
            Capability.PRICING_MANAGEMENT, RouteClass.MUTATION, "pricing"
        ),
    }
)


class RbacResolver:
    """Resolves effective permissions and authorizes actions."""

    def __init__(self, action_policies: Mapping[str, ActionPolicy] | None = None):
        self.action_policies = MappingProxyType(
            dict(ACTION_POLICIES if action_policies is None else action_policies)
        )

    def policy_for(self, action: str) -> ActionPolicy | None:
        return self.action_policies.get(action)

    def resolve(
        self, identity: Identity, parent: Identity | None = None
    ) -> EffectivePermissions:
        """
        Compute the effective permissions of an identity.

        Args:
            identity: Identity to resolve
            parent: Parent dealer account, required for sub-accounts

        Returns:
            Effective capabilities and scope. A sub-account without its parent
            resolves to no capabilities and an empty scope.
        """
        own = ROLE_BASELINE[identity.role] | identity.permissions
        delegation = identity.delegation
        if delegation is None:
            return EffectivePermissions(capabilities=own, scope=identity.access_scope)

        if parent is None or parent.id != delegation.parent_dealer_id:
            return EffectivePermissions(
                capabilities=frozenset(),
                scope=AccessScope.empty(),
                delegated=True,
                dealer_account_role=delegation.dealer_account_role,
            )

        parent_permissions = self.resolve(_as_top_level(parent))
        parent_scope = parent_permissions.scope or AccessScope.full()

        match delegation.dealer_account_role:
            case DealerAccountRole.ADMIN:
                capabilities = parent_permissions.capabilities
                scope = AccessScope.full()
            case DealerAccountRole.MANAGER:
                capabilities = (
                    own | delegation.delegated_permissions | {Capability.PRICING_MANAGEMENT}
                )
                scope = _with_pricing(delegation.access_scope)
            case _:
                capabilities = own | delegation.delegated_permissions
                scope = delegation.access_scope

        return EffectivePermissions(
            capabilities=frozenset(capabilities) & parent_permissions.capabilities,
            scope=scope.intersect(parent_scope),
            delegated=True,
            dealer_account_role=delegation.dealer_account_role,
        )

    def authorize(
        self,
        identity: Identity,
        action: str,
        resource: Resource,
        parent: Identity | None = None,
    ) -> AuthorizationResult:
        """
        Decide whether ``identity`` may perform ``action`` on ``resource``.

        Checks run in a fixed order and the first failure wins: account
        status, role baseline, capability, then resource scope.
        """
        if not identity.is_active:
            return _deny(
                DenyReason.STATUS_NOT_ACTIVE,
                f"Identity status is {identity.status.value}",
            )

        if identity.delegation is not None and (
            parent is None
            or parent.id != identity.delegation.parent_dealer_id
            or not parent.is_active
        ):
            return _deny(DenyReason.STATUS_NOT_ACTIVE, "Parent dealer is not active")

        policy = self.policy_for(action)
        if policy is None:
            return _deny(DenyReason.PERMISSION_NOT_GRANTED, f"Unknown action '{action}'")

        if identity.role not in policy.allowed_roles:
            return _deny(
                DenyReason.INSUFFICIENT_ROLE,
                f"Role '{identity.role.value}' may not perform '{action}'",
            )

        permissions = self.resolve(identity, parent)
        if not permissions.has(policy.capability):
            return _deny(
                DenyReason.PERMISSION_NOT_GRANTED,
                f"Missing capability '{policy.capability.value}'",
            )

        scope = permissions.scope
        if scope is not None:
            if policy.scope_area is not None and not scope.covers(policy.scope_area):
                return _deny(
                    DenyReason.SCOPE_EXCEEDED,
                    f"Scope does not include {policy.scope_area}",
                )
            if not scope.allows(resource):
                return _deny(
                    DenyReason.SCOPE_EXCEEDED, f"Resource '{resource}' is out of scope"
                )

        return AuthorizationResult(allowed=True)

    def require(
        self,
        identity: Identity,
        action: str,
        resource: Resource,
        parent: Identity | None = None,
    ) -> EffectivePermissions:
        """Like ``authorize`` but raises the matching AuthorizationError on denial."""
        result = self.authorize(identity, action, resource, parent)
        if not result.allowed:
            raise AUTHORIZATION_ERRORS[result.reason](
                result.detail,
                {"user_id": identity.id, "action": action, "resource": str(resource)},
            )
        return self.resolve(identity, parent)


def _deny(reason: DenyReason, detail: str) -> AuthorizationResult:
    return AuthorizationResult(allowed=False, reason=reason, detail=detail)


def _as_top_level(identity: Identity) -> Identity:
    # Delegation is one level deep; a parent's own delegation is ignored
    if identity.delegation is None:
        return identity
    return replace(identity, delegation=None)


def _with_pricing(scope: AccessScope) -> AccessScope:
    return replace(scope, pricing=True)
