"""
Configuration management for the storefront core.

Loads settings from YAML config file and provides typed access.
Connection settings (database, Supabase) come from the environment.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import yaml

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()


def _project_root() -> Path:
    """Return project root (parent of storefront package)."""
    return Path(__file__).resolve().parent.parent.parent


DEFAULT_CONFIG_PATH = _project_root() / "config" / "default.yaml"


@dataclass
class StorefrontConfig:
    """Configuration for the storefront."""

    # Inventory rules
    low_stock_threshold: int = 3        # stock <= threshold counts as "low"

    # Seller image uploads
    image_bucket: str = "product-images"
    max_image_bytes: int = 5 * 1024 * 1024
    placeholder_image: str = "https://via.placeholder.com/150"

    # Checkout contact fallbacks
    anonymous_name: str = "Anonymous"
    not_provided: str = "Not provided"

    # Realtime reconnect policy (seconds)
    realtime_backoff_base: float = 1.0
    realtime_backoff_factor: float = 2.0
    realtime_backoff_cap: float = 30.0
    realtime_max_attempts: Optional[int] = None

    # Backend connection (environment only)
    database_url: str = ""
    supabase_url: str = ""
    supabase_key: str = ""

    @classmethod
    def from_yaml(cls, config_path: Optional[Path] = None) -> "StorefrontConfig":
        """Load configuration from YAML file."""
        path = config_path or DEFAULT_CONFIG_PATH
        env = dict(
            database_url=os.getenv("DATABASE_URL", ""),
            supabase_url=os.getenv("SUPABASE_URL", ""),
            supabase_key=os.getenv("SUPABASE_KEY", ""),
        )
        if not path.exists():
            return cls(**env)

        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}

        inventory_config = data.get('inventory', {})
        images_config = data.get('images', {})
        checkout_config = data.get('checkout', {})
        realtime_config = data.get('realtime', {})

        return cls(
            low_stock_threshold=inventory_config.get('low_stock_threshold', 3),
            image_bucket=images_config.get('bucket', 'product-images'),
            max_image_bytes=images_config.get('max_bytes', 5 * 1024 * 1024),
            placeholder_image=images_config.get('placeholder', 'https://via.placeholder.com/150'),
            anonymous_name=checkout_config.get('anonymous_name', 'Anonymous'),
            not_provided=checkout_config.get('not_provided', 'Not provided'),
            realtime_backoff_base=realtime_config.get('backoff_base', 1.0),
            realtime_backoff_factor=realtime_config.get('backoff_factor', 2.0),
            realtime_backoff_cap=realtime_config.get('backoff_cap', 30.0),
            realtime_max_attempts=realtime_config.get('max_attempts'),
            **env,
        )


# Global config instance
_config: Optional[StorefrontConfig] = None


def get_config() -> StorefrontConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = StorefrontConfig.from_yaml()
    return _config


def set_config(config: StorefrontConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
