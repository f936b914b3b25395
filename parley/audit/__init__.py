from parley.audit.audit_log import AuditEntry, AuditLogger

__all__ = ["AuditEntry", "AuditLogger"]
