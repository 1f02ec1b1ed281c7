from __future__ import annotations

from dataclasses import dataclass

CREATE_CERTIFICATES = "create_certificates"
VERIFY_CERTIFICATES = "verify_certificates"
ISSUE_CERTIFICATES = "issue_certificates"
VIEW_ALL_CERTIFICATES = "view_all_certificates"

ALL_PERMISSIONS = frozenset(
    {
        CREATE_CERTIFICATES,
        VERIFY_CERTIFICATES,
        ISSUE_CERTIFICATES,
        VIEW_ALL_CERTIFICATES,
    }
)


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated actor extracted from a validated bearer token.

    Transition guards ask ``has_permission``; the ``admin`` role implies
    every permission.
    """

    user_id: str
    roles: frozenset[str] = frozenset()
    permissions: frozenset[str] = frozenset()

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def is_admin(self) -> bool:
        return "admin" in self.roles

    def has_permission(self, permission: str) -> bool:
        return self.is_admin() or permission in self.permissions
