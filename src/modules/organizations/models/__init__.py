from .user import User
from .organization import Organization, OrganizationMember, OrganizationRole

__all__ = ['User', 'Organization', 'OrganizationMember', 'OrganizationRole']
