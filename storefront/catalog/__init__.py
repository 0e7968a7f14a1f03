"""Product catalog and seller image uploads."""

from storefront.catalog.store import CatalogStore, ProductForm

__all__ = ['CatalogStore', 'ProductForm']
