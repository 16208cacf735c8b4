from typing import Optional

from modules.organizations.models.organization import OrganizationRole

ROLE_PERMISSIONS = {
    OrganizationRole.OWNER: ["view", "edit", "manage"],
    OrganizationRole.ADMIN: ["view", "edit", "manage"],
    OrganizationRole.MEMBER: ["view", "edit"],
    OrganizationRole.VIEWER: ["view"],
}


def can_perform_action(role: Optional[OrganizationRole], action: str) -> bool:
    if role is None:
        return False
    return action in ROLE_PERMISSIONS.get(role, [])
