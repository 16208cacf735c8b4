from .permission import ROLE_PERMISSIONS, can_perform_action

__all__ = ['ROLE_PERMISSIONS', 'can_perform_action']
