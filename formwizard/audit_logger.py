"""
Audit logging module for a session's action trail.

Every significant session action is recorded with an integrity hash
chained to the previous entry. The trail is append-only - entries are
never modified or deleted, and it outlives a form reset.
Entries are also written to the "formwizard.audit" logger.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from formwizard.utils import calculate_sha256, canonical_json


audit_log = logging.getLogger('formwizard.audit')


class AuditAction:
    """Constants for audit actions."""
    # Answer actions
    FIELD_CHANGED = 'field_changed'
    ROW_REJECTED = 'row_rejected'
    ANSWERS_IMPORTED = 'answers_imported'
    IMPORT_FAILED = 'import_failed'
    ANSWERS_EXPORTED = 'answers_exported'

    # Navigation actions
    NAVIGATED = 'navigated'
    NAVIGATION_BLOCKED = 'navigation_blocked'

    # Submission actions
    SUBMITTED = 'submitted'
    SUBMISSION_REJECTED = 'submission_rejected'
    SINK_FAILED = 'sink_failed'
    RESET = 'reset'

    # Option source actions
    OPTIONS_LOADED = 'options_loaded'
    OPTIONS_FAILED = 'options_failed'


class AuditCategory:
    """Constants for audit action categories."""
    UPDATE = 'update'
    NAVIGATE = 'navigate'
    SUBMIT = 'submit'
    FETCH = 'fetch'
    SYSTEM = 'system'


@dataclass
class AuditEntry:
    """A single audit record."""
    sequence: int
    action: str
    action_category: str
    resource_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    success: bool = True
    error_message: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    previous_hash: str = ''
    integrity_hash: str = ''

    def compute_integrity_hash(self) -> str:
        """Hash of the entry's content and the previous entry's hash."""
        data = {
            'sequence': self.sequence,
            'action': self.action,
            'action_category': self.action_category,
            'resource_id': self.resource_id,
            'details': self.details,
            'success': self.success,
            'error_message': self.error_message,
            'timestamp': self.timestamp.isoformat(),
            'previous_hash': self.previous_hash,
        }
        return calculate_sha256(canonical_json(data).encode('utf-8'))

    def verify_integrity(self) -> bool:
        return self.integrity_hash == self.compute_integrity_hash()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sequence': self.sequence,
            'action': self.action,
            'action_category': self.action_category,
            'resource_id': self.resource_id,
            'details': self.details,
            'success': self.success,
            'error_message': self.error_message,
            'timestamp': self.timestamp.isoformat(),
            'integrity_hash': self.integrity_hash,
        }


class AuditTrail:
    """Append-only, hash-chained list of audit entries for one session."""

    def __init__(self, session_id: str = ''):
        self.session_id = session_id
        self._entries: List[AuditEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    def log_action(
        self,
        action: str,
        action_category: str,
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        success: bool = True,
        error_message: Optional[str] = None
    ) -> AuditEntry:
        """
        Append an action to the trail.

        Args:
            action: The action performed (use AuditAction constants)
            action_category: Category of action (use AuditCategory constants)
            resource_id: Field id, section index or source name affected
            details: Additional structured details
            success: Whether the action succeeded
            error_message: Error message if action failed

        Returns:
            The appended AuditEntry
        """
        previous_hash = self._entries[-1].integrity_hash if self._entries else ''
        entry = AuditEntry(
            sequence=len(self._entries) + 1,
            action=action,
            action_category=action_category,
            resource_id=str(resource_id) if resource_id is not None else None,
            details=dict(details or {}),
            success=success,
            error_message=error_message,
            previous_hash=previous_hash
        )
        entry.integrity_hash = entry.compute_integrity_hash()
        self._entries.append(entry)

        level = logging.INFO if success else logging.WARNING
        audit_log.log(level, '[%s] %s %s %s', self.session_id or '-', action,
                      entry.resource_id or '', error_message or '')
        return entry

    def verify_integrity(self) -> tuple:
        """
        Verify integrity of all entries and of the chain.

        Returns:
            Tuple of (valid_count, invalid_count, invalid_sequences)
        """
        valid_count = 0
        invalid_sequences = []
        previous_hash = ''

        for entry in self._entries:
            if entry.verify_integrity() and entry.previous_hash == previous_hash:
                valid_count += 1
            else:
                invalid_sequences.append(entry.sequence)
            previous_hash = entry.integrity_hash

        return valid_count, len(invalid_sequences), invalid_sequences

    def to_list(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self._entries]
