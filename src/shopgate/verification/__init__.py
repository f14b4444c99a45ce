"""Request verification — one verifier per trust protocol plus the dispatcher."""

from shopgate.verification.base import BaseProtocolVerifier
from shopgate.verification.factory import VerifierFactory
from shopgate.verification.install import (
    InstallHmacVerifier,
    build_install_message,
    sign_install_query,
)
from shopgate.verification.proxy import (
    ProxySignatureVerifier,
    build_proxy_message,
    sign_proxy_query,
)
from shopgate.verification.session_token import SessionTokenVerifier
from shopgate.verification.shared_secret import SharedSecretVerifier
from shopgate.verification.verifier import SignatureVerifier
from shopgate.verification.webhook import WebhookHmacVerifier, compute_webhook_digest

__all__ = [
    "BaseProtocolVerifier",
    "InstallHmacVerifier",
    "ProxySignatureVerifier",
    "SessionTokenVerifier",
    "SharedSecretVerifier",
    "SignatureVerifier",
    "VerifierFactory",
    "WebhookHmacVerifier",
    "build_install_message",
    "build_proxy_message",
    "compute_webhook_digest",
    "sign_install_query",
    "sign_proxy_query",
]
