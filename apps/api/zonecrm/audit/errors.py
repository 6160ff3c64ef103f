from __future__ import annotations


class AuditImmutableError(Exception):
    """Raised when code tries to change or remove a stored audit row."""

    def __init__(self, entry_id: int | None, operation: str) -> None:
        self.entry_id = entry_id
        self.operation = operation
        super().__init__(f"audit entry {entry_id} is append-only; {operation} rejected")
