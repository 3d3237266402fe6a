"""
Tests for organization and workspace role enums.
"""
import pytest

from saas_core.models.enums import OrganizationRole, WorkspaceRole


@pytest.mark.unit
class TestOrganizationRole:
    """Organization role ordering and capabilities"""

    def test_hierarchy(self):
        assert OrganizationRole.OWNER.is_higher_than(OrganizationRole.ADMIN)
        assert OrganizationRole.ADMIN.is_higher_than(OrganizationRole.MEMBER)
        assert not OrganizationRole.MEMBER.is_higher_than(OrganizationRole.MEMBER)
        assert OrganizationRole.ADMIN.is_at_least(OrganizationRole.ADMIN)
        assert not OrganizationRole.MEMBER.is_at_least(OrganizationRole.ADMIN)

    def test_capabilities(self):
        assert OrganizationRole.OWNER.can_manage_billing()
        assert not OrganizationRole.ADMIN.can_manage_billing()
        assert OrganizationRole.ADMIN.can_manage_organization()
        assert OrganizationRole.ADMIN.can_invite_users()
        assert not OrganizationRole.MEMBER.can_invite_users()
        assert OrganizationRole.OWNER.can_transfer_ownership()
        assert not OrganizationRole.ADMIN.can_transfer_ownership()

    def test_implicit_workspace_access(self):
        assert OrganizationRole.OWNER.has_implicit_workspace_access()
        assert OrganizationRole.ADMIN.has_implicit_workspace_access()
        assert not OrganizationRole.MEMBER.has_implicit_workspace_access()

    def test_assignable_roles(self):
        assert OrganizationRole.OWNER.assignable_roles() == [OrganizationRole.ADMIN, OrganizationRole.MEMBER]
        assert OrganizationRole.ADMIN.assignable_roles() == [OrganizationRole.MEMBER]
        assert OrganizationRole.MEMBER.assignable_roles() == []

    def test_label_and_value_lookup(self):
        assert OrganizationRole("admin") is OrganizationRole.ADMIN
        assert OrganizationRole.OWNER.label() == "Owner"
        with pytest.raises(ValueError):
            OrganizationRole("superuser")


@pytest.mark.unit
class TestWorkspaceRole:

    def test_hierarchy(self):
        assert WorkspaceRole.MANAGER.is_higher_than(WorkspaceRole.EDITOR)
        assert WorkspaceRole.EDITOR.is_higher_than(WorkspaceRole.VIEWER)
        assert WorkspaceRole.VIEWER.is_at_least(WorkspaceRole.VIEWER)

    def test_capabilities(self):
        assert WorkspaceRole.MANAGER.can_manage_workspace()
        assert not WorkspaceRole.EDITOR.can_manage_workspace()
        assert WorkspaceRole.EDITOR.can_edit_content()
        assert not WorkspaceRole.VIEWER.can_edit_content()
        assert all(role.can_view() for role in WorkspaceRole)
        assert WorkspaceRole.MANAGER.can_invite_users()
        assert not WorkspaceRole.EDITOR.can_invite_users()

    def test_assignable_roles(self):
        assert WorkspaceRole.MANAGER.assignable_roles() == [WorkspaceRole.EDITOR, WorkspaceRole.VIEWER]
        assert WorkspaceRole.EDITOR.assignable_roles() == []
        assert WorkspaceRole.VIEWER.assignable_roles() == []
