"""
Authentication and role capabilities.
"""

from storefront.auth.roles import CUSTOMER, SELLER, Role, role_for
from storefront.auth.session import AuthSession, SessionManager

__all__ = ['AuthSession', 'SessionManager', 'Role', 'CUSTOMER', 'SELLER', 'role_for']
