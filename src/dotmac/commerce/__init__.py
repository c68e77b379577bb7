"""
DotMac Commerce - subscription checkout and billing cart engine.

This package prices checkout attempts for a multi-tenant subscription
platform:
- Cart classification (new, retry, upgrade, downgrade, addon)
- Line item pricing with setup fees, discounts, taxes and prorated credits
- Transactional order processing and gateway hand-off
"""

__version__ = "1.0.0"
__author__ = "DotMac Team"
__email__ = "dev@dotmac.com"


def get_version() -> str:
    """Get package version."""
    return __version__


__all__ = ["__version__", "get_version"]
