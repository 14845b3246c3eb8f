from .errors import ValidationError


def parse_positive_int(name: str, value: int | str | None) -> int:
    """Parse a required positive integer field, raising ``ValidationError`` otherwise."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"Field '{name}' is required")
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Field '{name}' must be an integer, got {value!r}") from None
    if parsed <= 0:
        raise ValidationError(f"Field '{name}' must be positive, got {parsed}")
    return parsed
