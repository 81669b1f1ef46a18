"""Outbound message delivery channel.

The booking engine only needs ``send(destination, body)``. Transport details
(WhatsApp Business API, SMS gateway) live behind a provider implementation.
"""

import logging
from abc import ABC, abstractmethod
from uuid import uuid4

logger = logging.getLogger(__name__)


class DeliveryFailureError(Exception):
    """Raised by a provider when a message could not be delivered.

    Transient by nature: the dispatcher counts it against the reminder's
    attempt budget and never lets it affect the appointment.
    """

    pass


class MessageProvider(ABC):
    """Abstract base class for messaging providers."""

    name: str = "abstract"

    @abstractmethod
    async def send(self, destination: str, body: str) -> str:
        """Send a message and return the provider's message id.

        Raises DeliveryFailureError on failure.
        """
        pass


class LoggingProvider(MessageProvider):
    """Provider that only logs the message.

    Used in development and as the default until a real channel is wired in.
    """

    name = "logging"

    async def send(self, destination: str, body: str) -> str:
        """Log the message and return a synthetic id."""
        if not destination:
            raise DeliveryFailureError("No destination for message")

        logger.info(f"Sending message to {destination}: {body[:50]}...")
        return f"log_{uuid4().hex[:16]}"
