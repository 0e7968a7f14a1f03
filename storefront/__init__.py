"""
Storefront - two-sided marketplace core

Customers browse, keep a cart and check out; sellers manage listings,
move orders through their lifecycle and read sales analytics:
- Atomic checkout with conditional stock decrements
- Role capabilities carried on an explicit AuthSession
- In-process change feed for live product views
"""

from storefront.core.config import StorefrontConfig, get_config, set_config
from storefront.core.errors import StorefrontError

__all__ = [
    'StorefrontConfig',
    'get_config',
    'set_config',
    'StorefrontError',
]

__version__ = '0.1.0'
