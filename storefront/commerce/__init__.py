"""
Cart, stock validation and the order workflow.
"""

from storefront.commerce.cart import CartService
from storefront.commerce.orders import OrderStatus, OrderWorkflow

__all__ = ['CartService', 'OrderStatus', 'OrderWorkflow']
