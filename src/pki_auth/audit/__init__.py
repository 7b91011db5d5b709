"""Audit trail for issuance and authentication events."""
from __future__ import annotations

from pki_auth.audit.logger import AuditEvent, AuditLogger

__all__ = ["AuditEvent", "AuditLogger"]
