# =============================================================================
# tracker_core/sync/envelope.py
# Encrypted Envelope Codec for Sync Packets
# =============================================================================
"""
EnvelopeCodec - turns a SyncPacket into an opaque text envelope and back.

The packet is serialized to canonical JSON and encrypted with Fernet
(AES-128-CBC + HMAC-SHA256), keyed by a SHA-256 derivation of the
application-wide sync secret. The transport subject carries only a tag, the
packet type and the timestamp; the body carries only the ciphertext.
"""

from __future__ import annotations
import base64
import hashlib
import json
from typing import Any, Optional, Tuple
import logging

from cryptography.fernet import Fernet, InvalidToken

from tracker_core.errors import ConfigMissingError, DecodeFailureError
from tracker_core.models import PacketType, SyncPacket

logger = logging.getLogger(__name__)

SYNC_SUBJECT_PREFIX = "[ST_SYNC]"


def derive_key(secret: str) -> bytes:
    """Derive a Fernet key (32 url-safe base64 bytes) from a passphrase."""
    return base64.urlsafe_b64encode(hashlib.sha256(secret.encode("utf-8")).digest())


class EnvelopeCodec:
    """
    Usage:
        codec = EnvelopeCodec(settings.sync_secret)
        body = codec.encode(packet)
        subject = codec.subject_for(packet)
        packet = codec.decode(body)   # None for foreign or damaged text
    """

    def __init__(self, secret: Optional[str], prefix: str = SYNC_SUBJECT_PREFIX):
        if not secret:
            raise ConfigMissingError(
                "A sync secret is required to encrypt email envelopes",
                config_key="TRACKER_SYNC_SECRET",
            )
        self._fernet = Fernet(derive_key(secret))
        self.prefix = prefix

    @staticmethod
    def canonical(packet: SyncPacket) -> str:
        """Canonical text form of a packet (sorted keys, compact separators)."""
        return json.dumps(packet.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    def encode(self, packet: SyncPacket) -> str:
        token = self._fernet.encrypt(self.canonical(packet).encode("utf-8"))
        return token.decode("ascii")

    def decode(self, envelope: Any) -> Optional[SyncPacket]:
        """Decrypt and parse an envelope; returns None on any failure."""
        try:
            return self.decode_strict(envelope)
        except DecodeFailureError as e:
            logger.debug(f"Envelope rejected: {e.message}")
            return None

    def decode_strict(self, envelope: Any, message_id: Optional[str] = None) -> SyncPacket:
        """
        Raises:
            DecodeFailureError: for foreign, truncated or tampered text
        """
        if isinstance(envelope, bytes):
            try:
                envelope = envelope.decode("ascii")
            except UnicodeDecodeError:
                raise DecodeFailureError("Envelope is not ASCII text", message_id=message_id) from None
        if not isinstance(envelope, str) or not envelope.strip():
            raise DecodeFailureError("Empty envelope", message_id=message_id)

        try:
            plaintext = self._fernet.decrypt(envelope.strip().encode("ascii"))
            return SyncPacket.from_dict(json.loads(plaintext.decode("utf-8")))
        except (InvalidToken, UnicodeError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise DecodeFailureError(
                f"Envelope rejected: {e.__class__.__name__}", message_id=message_id
            ) from None

    # =========================================================================
    # SUBJECT FRAMING
    # =========================================================================

    def subject_for(self, packet: SyncPacket) -> str:
        return f"{self.prefix} {packet.type.value} {packet.timestamp}"

    def parse_subject(self, subject: Optional[str]) -> Optional[Tuple[PacketType, str]]:
        """Return (packet type, timestamp) for a tagged subject, else None."""
        if not subject:
            return None
        parts = subject.strip().split()
        if len(parts) != 3 or parts[0] != self.prefix:
            return None
        try:
            return PacketType(parts[1]), parts[2]
        except ValueError:
            return None

    def search_query(self) -> str:
        """Server-side filter matching tagged subjects."""
        return f'subject:"{self.prefix}"'
