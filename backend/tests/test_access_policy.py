from uuid import uuid4

import pytest

from app.application.services.access_policy import Permission, ensure_allowed, is_allowed
from app.core.config import settings
from app.core.errors import ForbiddenError
from app.domain.models.user import User, UserRole


def _user(role: UserRole, email: str = "someone@acme.test") -> User:
    return User(id=uuid4(), tenant_id=uuid4(), email=email, password_hash="x", role=role.value)


@pytest.mark.parametrize("role", list(UserRole))
def test_every_role_can_read_issues(role):
    assert is_allowed(_user(role), Permission.ISSUE_READ)


def test_viewer_cannot_generate_or_publish():
    viewer = _user(UserRole.VIEWER)
    assert not is_allowed(viewer, Permission.ISSUE_GENERATE)
    assert not is_allowed(viewer, Permission.ISSUE_PUBLISH)


def test_editor_manages_content_but_not_magazines():
    editor = _user(UserRole.EDITOR)
    assert is_allowed(editor, Permission.BLUEPRINT_WRITE)
    assert is_allowed(editor, Permission.ISSUE_RETRY)
    assert not is_allowed(editor, Permission.MAGAZINE_MANAGE)


def test_billing_is_owner_only():
    assert is_allowed(_user(UserRole.OWNER), Permission.BILLING_MANAGE)
    with pytest.raises(ForbiddenError) as exc_info:
        ensure_allowed(_user(UserRole.ADMIN), Permission.BILLING_MANAGE)
    assert exc_info.value.detail["message"] == "Required role: owner"


def test_cancel_requires_admin_or_platform_operator(monkeypatch):
    assert is_allowed(_user(UserRole.ADMIN), Permission.ISSUE_CANCEL)
    assert not is_allowed(_user(UserRole.OWNER), Permission.ISSUE_CANCEL)

    monkeypatch.setattr(settings, "platform_admin_emails", "ops@magazinify.ai")
    operator = _user(UserRole.VIEWER, email="OPS@magazinify.ai")
    assert is_allowed(operator, Permission.ISSUE_CANCEL)
    assert not is_allowed(operator, Permission.ISSUE_PUBLISH)
