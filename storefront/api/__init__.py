"""HTTP API for the storefront."""
