"""
Exception types raised by tenancy management operations.

Resolvers (access, entitlement, usage) never raise for expected business
outcomes; they return None/False. These exceptions cover management
operations that a caller explicitly asked to perform and infrastructure
conflicts.
"""


class SaaSCoreError(Exception):
    """Base error for the package"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConcurrencyConflictError(SaaSCoreError):
    """A concurrent writer won the race; the transaction was rolled back and may be retried."""


class OrganizationError(SaaSCoreError):
    """Organization membership or ownership rule violation"""

    @classmethod
    def not_owner(cls) -> "OrganizationError":
        return cls("Only the organization owner can perform this action")

    @classmethod
    def cannot_remove_owner(cls) -> "OrganizationError":
        return cls("Cannot remove the organization owner")

    @classmethod
    def cannot_remove_yourself(cls) -> "OrganizationError":
        return cls("Cannot remove yourself from the organization")

    @classmethod
    def user_not_member(cls) -> "OrganizationError":
        return cls("User is not a member of this organization")

    @classmethod
    def cannot_change_owner_role(cls) -> "OrganizationError":
        return cls("Cannot change the organization owner's role")

    @classmethod
    def cannot_change_own_role(cls) -> "OrganizationError":
        return cls("Cannot change your own role")

    @classmethod
    def cannot_promote_to_owner(cls) -> "OrganizationError":
        return cls("Cannot promote to owner. Use transfer ownership instead")

    @classmethod
    def transfer_requires_access(cls) -> "OrganizationError":
        return cls("New owner must have access to the organization")

    @classmethod
    def cannot_transfer_to_self(cls) -> "OrganizationError":
        return cls("Cannot transfer ownership to yourself")

    @classmethod
    def last_owner(cls) -> "OrganizationError":
        return cls("Cannot demote the last owner of the organization")

    @classmethod
    def permission_denied(cls) -> "OrganizationError":
        return cls("You do not have permission to manage this member")

    @classmethod
    def workspace_limit_reached(cls) -> "OrganizationError":
        return cls("Organization has reached workspace limit")


class WorkspaceError(SaaSCoreError):
    """Workspace membership or lifecycle rule violation"""

    @classmethod
    def cannot_delete(cls) -> "WorkspaceError":
        return cls("Cannot delete workspace")

    @classmethod
    def last_workspace(cls) -> "WorkspaceError":
        return cls("Cannot delete the last workspace of an organization")

    @classmethod
    def member_not_found(cls) -> "WorkspaceError":
        return cls("Member not found in workspace")

    @classmethod
    def cannot_remove_self(cls) -> "WorkspaceError":
        return cls("Cannot remove yourself from workspace")

    @classmethod
    def duplicate_name(cls) -> "WorkspaceError":
        return cls("Workspace name already exists in organization")

    @classmethod
    def permission_denied(cls) -> "WorkspaceError":
        return cls("You do not have permission to perform this action in the workspace")
