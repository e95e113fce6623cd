"""
Input validation and sanitization utilities.
Guards the edges of the pipeline (uploads, webhook payloads, API params).
"""

from typing import Iterable
import re

from shared_utils.constants import AUDIO_EXTENSIONS
from shared_utils.error_handler import ValidationError


class InputValidator:
    """Utility class for input validation."""

    @staticmethod
    def validate_non_empty_string(value: str, field_name: str) -> str:
        """Validate non-empty string.

        Args:
            value: String to validate
            field_name: Name of field for error messages

        Returns:
            Stripped string

        Raises:
            ValidationError: If validation fails
        """
        if not isinstance(value, str):
            raise ValidationError(f"{field_name} must be a string")

        if not value or not value.strip():
            raise ValidationError(f"{field_name} cannot be empty")

        return value.strip()

    @staticmethod
    def validate_positive_int(value: int, field_name: str, allow_zero: bool = False) -> int:
        """Validate positive integer.

        Raises:
            ValidationError: If validation fails
        """
        if not isinstance(value, int) or isinstance(value, bool):
            raise ValidationError(f"{field_name} must be an integer")

        min_val = 0 if allow_zero else 1
        if value < min_val:
            raise ValidationError(f"{field_name} must be >= {min_val}")

        return value

    @staticmethod
    def validate_uuid(value: str) -> str:
        """Validate UUID format.

        Raises:
            ValidationError: If validation fails
        """
        uuid_pattern = r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$'
        if not isinstance(value, str) or not re.match(uuid_pattern, value, re.IGNORECASE):
            raise ValidationError("Invalid UUID format", context={"value": str(value)})

        return value

    @staticmethod
    def validate_choice(value: str, field_name: str, choices: Iterable[str]) -> str:
        """Validate that a value belongs to a closed set (case-insensitive)."""
        allowed = {c.lower() for c in choices}
        if not isinstance(value, str) or value.lower() not in allowed:
            raise ValidationError(
                f"{field_name} must be one of {sorted(allowed)}",
                context={field_name: value},
            )
        return value.lower()

    @staticmethod
    def validate_audio_content_type(content_type: str) -> str:
        """Accept known audio MIME types and any ``audio/*`` type.

        Unknown audio subtypes are stored with the fallback extension.
        Parameters such as ``; codecs=opus`` are dropped.
        """
        if not content_type:
            raise ValidationError("content_type is required")
        base = content_type.split(";", 1)[0].strip().lower()
        if base in AUDIO_EXTENSIONS or base.startswith("audio/"):
            return base
        raise ValidationError(
            "Unsupported audio content type",
            context={"content_type": content_type},
        )

    @staticmethod
    def validate_non_empty_bytes(content: bytes, field_name: str) -> bytes:
        if not content:
            raise ValidationError(f"{field_name} is empty")
        return content
