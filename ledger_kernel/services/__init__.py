"""Kernel services: ledger reads, role policy and cursor persistence."""

from ledger_kernel.services.base import BaseService
from ledger_kernel.services.invoice_repository import InvoiceRepository, invoice_from_record
from ledger_kernel.services.role_guard import RoleAssessment, RoleGuard
from ledger_kernel.services.sync_cursor_service import SyncCursorService, SyncScope

__all__ = [
    "BaseService",
    "InvoiceRepository",
    "RoleAssessment",
    "RoleGuard",
    "SyncCursorService",
    "SyncScope",
    "invoice_from_record",
]
