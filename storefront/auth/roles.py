"""
Role capability sets.

A profile's ``role`` column holds a tag; ``role_for`` turns it into one of
two Role implementations so callers ask "can this session purchase?" rather
than comparing strings.
"""
from dataclasses import dataclass
from typing import Dict

from storefront.core.errors import ValidationError


@dataclass(frozen=True)
class Role:
    tag: str
    label: str
    can_purchase: bool = False
    can_manage_catalog: bool = False
    can_manage_orders: bool = False
    can_view_analytics: bool = False
    sees_all_orders: bool = False


class CustomerRole(Role):
    def __init__(self):
        super().__init__(tag="customer", label="customers", can_purchase=True)


class SellerRole(Role):
    def __init__(self):
        super().__init__(
            tag="seller",
            label="sellers",
            can_manage_catalog=True,
            can_manage_orders=True,
            can_view_analytics=True,
            sees_all_orders=True,
        )


CUSTOMER = CustomerRole()
SELLER = SellerRole()

ROLES: Dict[str, Role] = {CUSTOMER.tag: CUSTOMER, SELLER.tag: SELLER}

# capability -> role that holds it, for "Only sellers can ..." messages
CAPABILITY_OWNERS: Dict[str, Role] = {
    "can_purchase": CUSTOMER,
    "can_manage_catalog": SELLER,
    "can_manage_orders": SELLER,
    "can_view_analytics": SELLER,
}


def role_for(tag: str) -> Role:
    """Resolve a stored role tag."""
    try:
        return ROLES[(tag or "").strip().lower()]
    except KeyError:
        raise ValidationError(f"Unknown role '{tag}'", {"allowed": sorted(ROLES)}) from None
