"""
Central constants for the IP verification application.
"""
from __future__ import annotations

# Status Registry workflow
STATUS_UNVERIFIED = "Unverified"
STATUS_PENDING = "Pending"
STATUS_APPROVED = "Approved"
STATUS_REJECTED = "Rejected"

STATUSES = frozenset({STATUS_UNVERIFIED, STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED})
DECISIONS = frozenset({STATUS_APPROVED, STATUS_REJECTED})

# Allowed status transitions (from -> to)
TRANSITIONS = {
    STATUS_UNVERIFIED: frozenset({STATUS_PENDING}),
    STATUS_PENDING: frozenset({STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED}),
    STATUS_APPROVED: frozenset({STATUS_PENDING}),
    STATUS_REJECTED: frozenset({STATUS_PENDING}),
}

# Attachment sequences
ATTACHMENT_PRIMARY = "primary"
ATTACHMENT_SUPPORTING = "supporting"
ATTACHMENT_KINDS = frozenset({ATTACHMENT_PRIMARY, ATTACHMENT_SUPPORTING})

# Upload form field -> attachment sequence
UPLOAD_FIELDS = {
    "images": ATTACHMENT_PRIMARY,
    "receipts": ATTACHMENT_SUPPORTING,
}
ALLOWED_UPLOAD_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "pdf"})

# Action Ledger
ACTION_ENCRYPT = "encrypt"
ACTION_DECRYPT = "decrypt"
LEDGER_ACTIONS = (ACTION_ENCRYPT, ACTION_DECRYPT)

# Names accepted by the delete-image route for each sequence
ATTACHMENT_ALIASES = {
    "primary": ATTACHMENT_PRIMARY,
    "card": ATTACHMENT_PRIMARY,
    "supporting": ATTACHMENT_SUPPORTING,
    "receipt": ATTACHMENT_SUPPORTING,
}
