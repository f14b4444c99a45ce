"""ASGI middleware."""

from shopgate.middleware.verification import VerificationMiddleware

__all__ = ["VerificationMiddleware"]
