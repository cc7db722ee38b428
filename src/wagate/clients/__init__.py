"""
External chat clients.

The session subsystem depends only on the ChatClient interface in ``base``;
``browser`` provides the Playwright-backed WhatsApp Web implementation.
"""

from wagate.clients.base import (
    CLIENT_EVENTS,
    ChatClient,
    ChatSummary,
    ClientFactory,
    IncomingMessage,
)

__all__ = [
    "CLIENT_EVENTS",
    "ChatClient",
    "ChatSummary",
    "ClientFactory",
    "IncomingMessage",
]
