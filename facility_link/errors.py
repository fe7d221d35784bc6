"""
Facility Link Custom Exceptions

Structured errors for the telemetry link. Every error carries a machine
readable ``code`` and the ``component`` that raised it, so fatal diagnostics
can name the failing component without parsing messages.
"""

from enum import Enum
from typing import Optional


class KeyLoadReason(Enum):
    """Why a key file could not be turned into a key object."""
    NOT_FOUND = "not_found"
    MALFORMED = "malformed"
    WRONG_KEY_KIND = "wrong_key_kind"


class DecryptReason(Enum):
    """Why an inbound payload was rejected."""
    AUTHENTICATION = "authentication"  # wrong key, wrong IV or corrupt ciphertext
    MALFORMED_PAYLOAD = "malformed_payload"  # decrypted, but not a telemetry record
    KEY_AGREEMENT = "key_agreement"  # embedded session key unusable


class FacilityLinkError(Exception):
    """Base exception for facility link errors."""

    def __init__(self, message: str, code: Optional[str] = None, component: Optional[str] = None):
        self.message = message
        self.code = code or 'facility_link_error'
        self.component = component
        super().__init__(self.message)

    def diagnostic(self, name: Optional[str] = None) -> str:
        """Render as ``<name>: <component>: <message>`` for fatal reporting."""
        parts = [p for p in (name, self.component) if p]
        return ": ".join(parts + [self.message])


class ConfigurationError(FacilityLinkError):
    """Raised when configuration is missing or invalid."""

    def __init__(self, message: str = "Configuration error", field: Optional[str] = None):
        self.field = field
        super().__init__(message, "config_error", "config")


class KeyLoadError(FacilityLinkError):
    """Raised when a key file is missing, unparseable or of the wrong kind."""

    def __init__(self, reason: KeyLoadReason, path: str, detail: str = ""):
        self.reason = reason
        self.path = path
        message = f"{path}: {reason.value.replace('_', ' ')}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message, f"key_{reason.value}", "identity")


class KeyAgreementError(FacilityLinkError):
    """Raised when ECDH cannot produce a shared secret (curve/strength mismatch)."""

    def __init__(self, message: str = "Failed to generate session key"):
        super().__init__(message, "key_agreement_failed", "session")


class DecryptError(FacilityLinkError):
    """Raised when a payload cannot be turned back into a telemetry record."""

    def __init__(self, reason: DecryptReason, message: str = "Failed to decrypt payload"):
        self.reason = reason
        super().__init__(message, f"decrypt_{reason.value}", "codec")


class PacketFormatError(FacilityLinkError):
    """Raised when an inbound packet is not a well-formed wire document."""

    def __init__(self, message: str = "Malformed packet"):
        super().__init__(message, "packet_format", "protocol")


class TransportError(FacilityLinkError):
    """Raised when the tunnel fails to send or receive."""

    def __init__(self, message: str = "Transport failure"):
        super().__init__(message, "transport_error", "transport")


class CollectionError(FacilityLinkError):
    """Raised when a subnetwork cannot be read."""

    def __init__(self, subnetwork_id: str, message: str = "Failed to read subnetwork"):
        self.subnetwork_id = subnetwork_id
        super().__init__(f"{subnetwork_id}: {message}", "collection_error", "collector")
