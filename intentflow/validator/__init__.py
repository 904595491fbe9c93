"""Global validator: permission and policy decisions for requested intents."""
from .engine import GlobalValidator, intent_origin, resolve_request_id
from .models import Decision, PermissionRequirement, ValidationOutcome, ValidationStatus

__all__ = [
    "GlobalValidator",
    "Decision",
    "PermissionRequirement",
    "ValidationOutcome",
    "ValidationStatus",
    "intent_origin",
    "resolve_request_id",
]
