"""
Validation utilities for common validation patterns.
Centralizes validation logic shared by the codec and the relay.
"""

from typing import Any, Dict, List, Optional


DESCRIPTION_TYPES = ('offer', 'answer')


class ValidationUtils:
    """Common validation utilities."""

    @staticmethod
    def validate_required_fields(data: Dict[str, Any], required_fields: List[str]) -> Optional[str]:
        """Validate that all required fields are present in the data."""
        missing_fields = [field for field in required_fields if field not in data or data[field] is None]
        if missing_fields:
            return f"Missing required fields: {', '.join(missing_fields)}"
        return None

    @staticmethod
    def validate_optional_string(data: Dict[str, Any], key: str) -> Optional[str]:
        """Validate that an optional field, when present, is a non-empty string."""
        value = data.get(key)
        if value is None:
            return None
        if not isinstance(value, str) or not value:
            return f"Field {key} must be a non-empty string"
        return None

    @staticmethod
    def validate_description(description: Any) -> Optional[str]:
        """Validate an offer/answer description object."""
        if not isinstance(description, dict):
            return "Description must be an object"

        error = ValidationUtils.validate_required_fields(description, ['type', 'sdp'])
        if error:
            return error

        if description['type'] not in DESCRIPTION_TYPES:
            return f"Invalid description type: {description['type']}"

        if not isinstance(description['sdp'], str):
            return "Description sdp must be a string"

        return None

    @staticmethod
    def is_stream_id(value: Any, length: int = 8) -> bool:
        """Check the shape of a generated stream id (lowercase letters)."""
        return (
            isinstance(value, str)
            and len(value) == length
            and value.isalpha()
            and value.islower()
        )
