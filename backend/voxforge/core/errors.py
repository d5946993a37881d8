"""Domain exceptions shared by services and routers.

Services raise these; ``voxforge.exceptions`` turns them into the common JSON
error envelope. Routers only catch them where a flow needs a different
outcome (for example the Opaybd callback, which always answers with a redirect).
"""
from __future__ import annotations

from typing import Any, Mapping, Optional


class VoxForgeError(Exception):
    """Base class for expected, user-facing failures."""

    code = "error"
    status_code = 400

    def __init__(self, message: str, *, details: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = dict(details) if details else None


class ConfigurationError(VoxForgeError):
    """Required credentials or settings are missing.

    The message names the remediation step (where to configure the value).
    """

    code = "configuration_error"
    status_code = 503

    def __init__(self, message: str, *, setting: Optional[str] = None) -> None:
        super().__init__(message, details={"setting": setting} if setting else None)
        self.setting = setting


class PlanValidationError(VoxForgeError):
    """Admin form input failed validation; carries the submitted form for re-population."""

    code = "validation_error"
    status_code = 400

    def __init__(self, message: str, *, field: Optional[str] = None, form: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message, details={"field": field, "form": dict(form or {})})
        self.field = field
        self.form = dict(form or {})


class SettingsValidationError(PlanValidationError):
    pass


class PaymentVerificationError(VoxForgeError):
    """The provider did not confirm the payment (status mismatch or unusable metadata)."""

    code = "payment_verification_failed"
    status_code = 402


class PaymentOwnershipError(VoxForgeError):
    code = "forbidden"
    status_code = 403


class UsageLimitError(VoxForgeError):
    """Monthly quota for a usage category is exhausted."""

    code = "usage_limit_exceeded"
    status_code = 429

    def __init__(self, category: str, *, limit: int, used: int) -> None:
        message = (
            f"You have reached your monthly {category} generation limit ({limit}). "
            "Upgrade your plan to continue."
        )
        self.category = category
        self.limit = limit
        self.used = used
        self.remaining_quota = 0
        super().__init__(
            message,
            details={
                "category": category,
                "limit": limit,
                "used": used,
                "remaining_quota": self.remaining_quota,
            },
        )


class UpstreamProviderError(VoxForgeError):
    """A payment or AI provider call failed. The public message never carries provider internals."""

    code = "upstream_error"
    status_code = 502

    def __init__(self, provider: str, message: str = "The request failed. Please try again.") -> None:
        super().__init__(message, details={"provider": provider})
        self.provider = provider


class NotFoundError(VoxForgeError):
    code = "not_found"
    status_code = 404
