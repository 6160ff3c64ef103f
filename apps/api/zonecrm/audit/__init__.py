from zonecrm.audit.models import AuditLog

__all__ = ["AuditLog"]
