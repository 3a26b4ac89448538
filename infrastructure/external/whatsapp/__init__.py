"""WhatsApp gateway integration."""
from .client import WhatsAppClient, build_ticket_message

__all__ = ["WhatsAppClient", "build_ticket_message"]
