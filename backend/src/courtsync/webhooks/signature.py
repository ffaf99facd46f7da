import hashlib
import hmac
from typing import Mapping, Optional, Protocol

from courtsync.main.config import Settings
from courtsync.main.exceptions import SignatureError


class SignatureVerifier(Protocol):
    def verify(self, body: bytes, headers: Mapping[str, str]) -> None:
        """Raise SignatureError unless the delivery is authentic."""


class HmacSignatureVerifier:
    """HMAC over the raw request body, compared in constant time.

    With ``sign_timestamp`` the signed message is ``"{timestamp}.{body}"``,
    taking the timestamp from ``timestamp_header``.
    """

    def __init__(
        self,
        secret: Optional[str],
        header_name: str = "X-Signature",
        algorithm: str = "sha256",
        prefix: Optional[str] = "sha256=",
        sign_timestamp: bool = False,
        timestamp_header: str = "X-Timestamp",
    ):
        if algorithm not in hashlib.algorithms_available:
            raise ValueError(f"Unsupported webhook signature algorithm: {algorithm}")

        self.secret = secret
        self.header_name = header_name
        self.algorithm = algorithm
        self.prefix = prefix or ""
        self.sign_timestamp = sign_timestamp
        self.timestamp_header = timestamp_header

    @classmethod
    def from_settings(cls, settings: Settings) -> "HmacSignatureVerifier":
        return cls(
            secret=settings.webhook_secret,
            header_name=settings.webhook_signature_header,
            algorithm=settings.webhook_signature_algorithm,
            prefix=settings.webhook_signature_prefix,
            sign_timestamp=settings.webhook_sign_timestamp,
            timestamp_header=settings.webhook_timestamp_header,
        )

    @staticmethod
    def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
        value = headers.get(name)
        if value is None:
            # Plain dicts are case sensitive, starlette headers are not
            lowered = name.lower()
            value = next((v for k, v in headers.items() if k.lower() == lowered), None)
        return value

    def _message(self, body: bytes, headers: Mapping[str, str]) -> bytes:
        if not self.sign_timestamp:
            return body

        timestamp = self._header(headers, self.timestamp_header)
        if not timestamp:
            raise SignatureError(f"Missing {self.timestamp_header} header")
        return timestamp.encode("utf-8") + b"." + body

    def sign(self, body: bytes, headers: Optional[Mapping[str, str]] = None) -> str:
        if not self.secret:
            raise SignatureError("Webhook secret is not configured")

        digest = hmac.new(
            self.secret.encode("utf-8"),
            self._message(body, headers or {}),
            self.algorithm,
        ).hexdigest()
        return f"{self.prefix}{digest}"

    def verify(self, body: bytes, headers: Mapping[str, str]) -> None:
        if not self.secret:
            raise SignatureError("Webhook secret is not configured")

        provided = self._header(headers, self.header_name)
        if not provided:
            raise SignatureError(f"Missing {self.header_name} header")

        expected = self.sign(body, headers)
        if not hmac.compare_digest(provided.strip().encode("utf-8"), expected.encode("utf-8")):
            raise SignatureError("Webhook signature mismatch")
