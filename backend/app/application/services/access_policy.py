from enum import StrEnum

from app.core.config import settings
from app.core.errors import ForbiddenError
from app.domain.models.user import User, UserRole


class Permission(StrEnum):
    BLUEPRINT_READ = "blueprint.read"
    BLUEPRINT_WRITE = "blueprint.write"
    ISSUE_READ = "issue.read"
    ISSUE_GENERATE = "issue.generate"
    ISSUE_EDIT = "issue.edit"
    ISSUE_PUBLISH = "issue.publish"
    ISSUE_RETRY = "issue.retry"
    ISSUE_CANCEL = "issue.cancel"
    ANALYTICS_READ = "analytics.read"
    MAGAZINE_MANAGE = "magazine.manage"
    MEMBERS_MANAGE = "members.manage"
    BILLING_MANAGE = "billing.manage"


_CONTENT_ROLES = frozenset({UserRole.OWNER, UserRole.ADMIN, UserRole.EDITOR})
_MANAGEMENT_ROLES = frozenset({UserRole.OWNER, UserRole.ADMIN})

POLICY: dict[Permission, frozenset[UserRole]] = {
    Permission.BLUEPRINT_READ: _CONTENT_ROLES,
    Permission.BLUEPRINT_WRITE: _CONTENT_ROLES,
    Permission.ISSUE_READ: frozenset(UserRole),
    Permission.ISSUE_GENERATE: _CONTENT_ROLES,
    Permission.ISSUE_EDIT: _CONTENT_ROLES,
    Permission.ISSUE_PUBLISH: _CONTENT_ROLES,
    Permission.ISSUE_RETRY: _CONTENT_ROLES,
    Permission.ISSUE_CANCEL: frozenset({UserRole.ADMIN}),
    Permission.ANALYTICS_READ: _CONTENT_ROLES,
    Permission.MAGAZINE_MANAGE: _MANAGEMENT_ROLES,
    Permission.MEMBERS_MANAGE: _MANAGEMENT_ROLES,
    Permission.BILLING_MANAGE: frozenset({UserRole.OWNER}),
}

# Platform operators bypass tenant roles for these permissions only.
PLATFORM_ADMIN_PERMISSIONS = frozenset({Permission.ISSUE_CANCEL})


def is_platform_admin(user: User) -> bool:
    return user.email.lower() in settings.platform_admin_email_list


def is_allowed(user: User, permission: Permission) -> bool:
    if permission in PLATFORM_ADMIN_PERMISSIONS and is_platform_admin(user):
        return True
    return user.role in {role.value for role in POLICY[permission]}


def ensure_allowed(user: User, permission: Permission) -> None:
    if is_allowed(user, permission):
        return
    allowed = sorted(role.value for role in POLICY[permission])
    raise ForbiddenError(f"Required role: {' or '.join(allowed)}")
