"""Infrastructure models package exports."""
from .base import Base, metadata
from .ticket import CustomerModel, TicketModel, AttachmentModel
from .payment import PaymentModel
from .audit_log import AuditLogModel

__all__ = [
    "Base",
    "metadata",
    "CustomerModel",
    "TicketModel",
    "AttachmentModel",
    "PaymentModel",
    "AuditLogModel",
]
