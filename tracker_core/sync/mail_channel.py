# =============================================================================
# tracker_core/sync/mail_channel.py
# Email Transport Channel
# =============================================================================
"""
EmailTransportChannel - propagates changes between devices over a shared
mailbox, independently of the remote document store.

Outgoing: one encrypted envelope per change, addressed to the acting user
with the rest of the hierarchy blind-copied.
Incoming: the newest page of tagged messages is decoded; foreign or damaged
messages are skipped and counted, re-deliveries are dropped.
"""

from __future__ import annotations
import base64
import binascii
from typing import Any, Dict, FrozenSet, Iterator, List, Optional
import logging

from tracker_core.errors import AuthRequiredError, DecodeFailureError, handle_error
from tracker_core.logging import LogContext
from tracker_core.models import SyncPacket, User, normalize_email
from tracker_core.offline.local_database import LocalDatabase
from tracker_core.offline.replica_store import LocalReplicaStore, Mutation
from tracker_core.sync.envelope import EnvelopeCodec
from tracker_core.sync.gmail_client import MailTransport
from tracker_core.sync.hierarchy import is_address, resolve_recipients

logger = logging.getLogger(__name__)


def _decode_base64url(data: str) -> Optional[str]:
    try:
        padded = data + "=" * (-len(data) % 4)
        return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (binascii.Error, ValueError, UnicodeError):
        return None


def _walk_parts(payload: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
    for part in payload.get("parts") or []:
        yield part
        yield from _walk_parts(part)


def extract_body(message: Dict[str, Any]) -> str:
    """
    Best available body text of a listed message.

    Order: single-part body, first ``text/plain`` part, then the snippet,
    which the provider may truncate.
    """
    payload = message.get("payload") or {}

    data = (payload.get("body") or {}).get("data")
    if data:
        text = _decode_base64url(data)
        if text is not None:
            return text

    for part in _walk_parts(payload):
        if part.get("mimeType") == "text/plain":
            data = (part.get("body") or {}).get("data")
            text = _decode_base64url(data) if data else None
            if text is not None:
                return text

    return message.get("snippet") or ""


class EmailTransportChannel:
    """
    Usage:
        channel = EmailTransportChannel(GmailTransport(secrets), EnvelopeCodec(secret))
        if channel.authenticate():
            channel.broadcast(SyncPacket.build(customer, user.email), user)
            channel.merge_into(store, channel.fetch_recent())
    """

    SEEN_KEY = "sales_tracker_mail_seen"

    def __init__(
        self,
        transport: MailTransport,
        codec: EnvelopeCodec,
        page_size: int = 50,
        device: Optional[LocalDatabase] = None,
        seen_limit: int = 1000,
    ):
        self.transport = transport
        self.codec = codec
        self.page_size = page_size
        self.device = device
        self.seen_limit = seen_limit
        self.decode_failures = 0
        self._auth_attempted = False
        self._authenticated = False
        self._seen_ids: List[str] = []
        self._seen_fingerprints: List[str] = []
        self._load_seen()

    # =========================================================================
    # AUTHENTICATION
    # =========================================================================

    @property
    def is_authenticated(self) -> bool:
        return self._authenticated

    def authenticate(self) -> bool:
        """Run the consent flow once per session. A failure is final."""
        if self._auth_attempted:
            return self._authenticated
        self._auth_attempted = True
        try:
            self._authenticated = bool(self.transport.request_token())
        except Exception as e:
            logger.error(f"Mail authentication failed: {e}")
            self._authenticated = False
        if not self._authenticated:
            logger.warning("Mail channel not authenticated; broadcasts and polling are disabled")
        return self._authenticated

    def _require_auth(self) -> None:
        if not self._authenticated:
            raise AuthRequiredError()

    # =========================================================================
    # OUTGOING
    # =========================================================================

    def broadcast(self, packet: SyncPacket, acting_user: User) -> FrozenSet[str]:
        """
        Send ``packet`` to the acting user's hierarchy.

        Returns:
            The recipient set; empty when there was nobody to send to
        """
        self._require_auth()

        recipients = resolve_recipients(acting_user)
        if not recipients:
            logger.info(f"No recipients for {packet.type.value} {packet.record_id}; broadcast skipped")
            return recipients

        own = normalize_email(acting_user.email) if is_address(acting_user.email) else None
        to = own if own in recipients else sorted(recipients)[0]
        bcc = sorted(recipients - {to})

        with LogContext(logger, f"Broadcast {packet.type.value} to {len(recipients)} recipients"):
            self.transport.send_message(to, bcc, self.codec.subject_for(packet), self.codec.encode(packet))
        return recipients

    # =========================================================================
    # INCOMING
    # =========================================================================

    def fetch_recent(self, limit: Optional[int] = None) -> List[SyncPacket]:
        """
        Decode the newest tagged messages not seen before.

        Only one page is read; messages beyond it are not visited. A failing
        mailbox is logged and yields no packets.

        Raises:
            AuthRequiredError: if the channel has not been authenticated
        """
        self._require_auth()

        max_results = min(limit or self.page_size, self.page_size)
        try:
            messages = self.transport.list_messages(self.codec.search_query(), max_results)
        except Exception as e:
            handle_error(e, context="Mail polling failed", log_traceback=False)
            return []

        packets: List[SyncPacket] = []
        for message in messages:
            message_id = message.get("id")
            if message_id and message_id in self._seen_ids:
                continue
            subject = message.get("subject")
            if subject is not None and self.codec.parse_subject(subject) is None:
                continue

            if message_id:
                self._seen_ids.append(message_id)
            try:
                packet = self.codec.decode_strict(extract_body(message), message_id=message_id)
            except DecodeFailureError as e:
                self.decode_failures += 1
                logger.debug(f"Skipping message {message_id}: {e.message}")
                continue
            if packet.fingerprint in self._seen_fingerprints:
                continue
            self._seen_fingerprints.append(packet.fingerprint)
            packets.append(packet)

        self._save_seen()
        if packets:
            logger.info(f"Fetched {len(packets)} new sync packets")
        return packets

    def merge_into(self, store: LocalReplicaStore, packets: List[SyncPacket]) -> int:
        """Fold packets into the store as unconfirmed field-level merges."""
        merged = 0
        for packet in packets:
            existing = store.get(packet.collection, packet.record_id)
            if existing is not None and existing.merged(packet.payload.to_dict()) == existing:
                continue
            store.apply_local(Mutation.upsert(packet.collection, packet.payload), confirmed=False)
            merged += 1
        return merged

    # =========================================================================
    # SEEN SET
    # =========================================================================

    def _load_seen(self) -> None:
        if self.device is None:
            return
        try:
            raw = self.device.get_blob(self.SEEN_KEY, default={}) or {}
            self._seen_ids = [str(i) for i in raw.get("ids", [])]
            self._seen_fingerprints = [str(f) for f in raw.get("fingerprints", [])]
        except Exception as e:
            logger.warning(f"Could not read mail seen-set: {e}")

    def _save_seen(self) -> None:
        self._seen_ids = self._seen_ids[-self.seen_limit:]
        self._seen_fingerprints = self._seen_fingerprints[-self.seen_limit:]
        if self.device is None:
            return
        try:
            self.device.set_blob(self.SEEN_KEY, {
                "ids": self._seen_ids,
                "fingerprints": self._seen_fingerprints,
            })
        except Exception as e:
            logger.warning(f"Could not save mail seen-set: {e}")
