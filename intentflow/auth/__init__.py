"""Authentication and caller identity."""
from .api_key import APIKeyRegistry, verify_api_key
from .identity import Identity, identity_for

__all__ = ["APIKeyRegistry", "verify_api_key", "Identity", "identity_for"]
