"""
Input validation utilities for wagate.

Validates identifiers and message payloads before they reach the session
subsystem or the external client.
"""
import re

from wagate.logger import get_logger

logger = get_logger(__name__)

SESSION_ID_PATTERN = re.compile(r'^[a-zA-Z0-9\-_]+$')
SESSION_ID_MIN_LENGTH = 3
SESSION_ID_MAX_LENGTH = 100

PEER_SUFFIXES = ("@c.us", "@g.us", "@s.whatsapp.net", "@lid")
CONTACT_SUFFIX = "@c.us"
GROUP_SUFFIX = "@g.us"

MAX_MESSAGE_LENGTH = 65536


class ValidationError(Exception):
    """Raised when input validation fails."""
    pass


def validate_session_id(session_id: str) -> str:
    """
    Validate session ID format.

    Session IDs are letters, digits, hyphens and underscores, 3-100 chars.
    """
    if not session_id:
        raise ValidationError("Session ID cannot be empty")

    if not SESSION_ID_PATTERN.match(session_id):
        raise ValidationError(
            "Session ID can only contain letters, numbers, hyphens, and underscores"
        )

    if len(session_id) < SESSION_ID_MIN_LENGTH:
        raise ValidationError(
            f"Session ID too short (min {SESSION_ID_MIN_LENGTH} characters)"
        )

    if len(session_id) > SESSION_ID_MAX_LENGTH:
        raise ValidationError(
            f"Session ID too long (max {SESSION_ID_MAX_LENGTH} characters)"
        )

    return session_id


def normalize_peer(peer: str) -> str:
    """
    Turn a phone number or chat id into a chat id.

    ``"+57 300 123 4567"`` becomes ``"573001234567@c.us"``; ids that already
    carry a known suffix are returned unchanged.
    """
    if not peer or not isinstance(peer, str):
        raise ValidationError("Recipient cannot be empty")

    peer = peer.strip()
    if peer.endswith(PEER_SUFFIXES):
        return peer

    if "@" in peer:
        raise ValidationError(f"Unsupported chat id: {peer}")

    digits = re.sub(r'[\s\-\+\(\)]', '', peer)
    if not digits.isdigit():
        raise ValidationError("Phone number can only contain digits")

    if not 6 <= len(digits) <= 20:
        raise ValidationError("Phone number must have between 6 and 20 digits")

    return f"{digits}{CONTACT_SUFFIX}"


def is_group_chat(chat_id: str) -> bool:
    return chat_id.endswith(GROUP_SUFFIX)


def validate_message_body(body: str) -> str:
    """Validate an outgoing text message."""
    if not isinstance(body, str):
        raise ValidationError("Message must be a string")

    if not body.strip():
        raise ValidationError("Message cannot be empty")

    if len(body) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message too long (max {MAX_MESSAGE_LENGTH} characters)")

    return body

