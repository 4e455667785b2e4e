"""Input Validation Utilities.

Validators for identifiers and message content shared by the socket
and HTTP entry points.
"""

import re
from typing import Optional

from src.errors.config import ErrorCode
from src.errors.exceptions import ValidationError

# Opaque ids: Mongo ObjectIds, UUIDs (with or without dashes), slugs
USER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

MAX_TEXT_LENGTH = 10000
MAX_CHANNEL_LENGTH = 128


def validate_user_id(user_id: Optional[str], field: str = "user_id") -> str:
    """Validate an opaque user or chat identifier.

    Args:
        user_id: The identifier to validate.
        field: Field name reported in the error details.

    Returns:
        The stripped identifier.

    Raises:
        ValidationError: If the identifier is missing or malformed.
    """
    if not user_id or not isinstance(user_id, str) or user_id == "undefined":
        raise ValidationError(
            message=f"Missing {field}",
            error_code=ErrorCode.INVALID_USER_ID,
            field=field,
        )

    user_id = user_id.strip()
    if not USER_ID_PATTERN.match(user_id):
        raise ValidationError(
            message=f"Invalid {field}: '{user_id[:64]}'",
            error_code=ErrorCode.INVALID_USER_ID,
            field=field,
        )
    return user_id


def validate_message_content(
    text: Optional[str],
    image_url: Optional[str] = None,
    audio_url: Optional[str] = None,
) -> str:
    """Check that a message carries text or an attachment.

    Returns:
        The stripped text (possibly empty when an attachment is present).
    """
    text = (text or "").strip()
    if not text and not image_url and not audio_url:
        raise ValidationError(
            message="Message must contain text, an image or audio",
            error_code=ErrorCode.EMPTY_MESSAGE,
            field="text",
        )
    if len(text) > MAX_TEXT_LENGTH:
        raise ValidationError(
            message=f"Message text exceeds {MAX_TEXT_LENGTH} characters",
            field="text",
        )
    return text


def validate_channel(channel: Optional[str]) -> str:
    """Validate a call-signalling channel name."""
    if not channel or not isinstance(channel, str):
        raise ValidationError(message="Missing call channel", field="channel")
    channel = channel.strip()
    if not channel or len(channel) > MAX_CHANNEL_LENGTH:
        raise ValidationError(message="Invalid call channel", field="channel")
    return channel
