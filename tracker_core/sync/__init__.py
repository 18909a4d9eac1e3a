"""
Email relay for changes the remote store did not confirm: recipient
resolution over the hierarchy, the encrypted envelope codec and the
mailbox channel.
"""

from tracker_core.sync.envelope import EnvelopeCodec, SYNC_SUBJECT_PREFIX, derive_key
from tracker_core.sync.hierarchy import HierarchyGraph, is_address, resolve_recipients

__all__ = [
    "EnvelopeCodec",
    "SYNC_SUBJECT_PREFIX",
    "derive_key",
    "HierarchyGraph",
    "is_address",
    "resolve_recipients",
]
