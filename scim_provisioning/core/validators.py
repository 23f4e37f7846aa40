"""Input validation helpers for SCIM User and Group payloads."""
from __future__ import annotations
from typing import Any

from scim_provisioning.core.errors import ValidationError


def validate_email(email: str) -> str:
    """Validate email address.

    Args:
        email: Email address to validate

    Returns:
        Normalized email address

    Raises:
        ValueError: If email is invalid
    """
    email = email.strip().lower()
    if not email or "@" not in email:
        raise ValueError("Invalid email format")

    local, domain = email.rsplit("@", 1)
    if not local or not domain or "." not in domain:
        raise ValueError("Invalid email format")
    if len(email) > 254:
        raise ValueError("Email exceeds maximum length")

    return email


def validate_name(name: Any, field: str) -> str:
    """Validate given/family/display name fields.

    Args:
        name: Name to validate
        field: Field name for error messages (e.g., "name.givenName")

    Returns:
        Trimmed name

    Raises:
        ValueError: If name is invalid
    """
    if not isinstance(name, str):
        raise ValueError(f"{field} is required")
    name = name.strip()
    if not name:
        raise ValueError(f"{field} is required")
    if len(name) > 128:
        raise ValueError(f"{field} exceeds maximum length")

    # Prevent injection attacks
    if any(char in name for char in "<>\"`;&|$"):
        raise ValueError(f"{field} contains invalid characters")

    return name


def validate_scim_user_payload(payload: Any) -> None:
    """Check required User attributes: userName, name.givenName, name.familyName.

    Raises:
        ValidationError: first failing attribute, scimType invalidValue
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object", scim_type="invalidSyntax")

    user_name = payload.get("userName")
    if not isinstance(user_name, str) or not user_name.strip():
        raise ValidationError("userName is required")
    try:
        validate_email(user_name)
    except ValueError as exc:
        raise ValidationError(f"userName: {exc}")

    name = payload.get("name")
    if not isinstance(name, dict):
        raise ValidationError("name.givenName and name.familyName are required")
    try:
        validate_name(name.get("givenName"), "name.givenName")
        validate_name(name.get("familyName"), "name.familyName")
    except ValueError as exc:
        raise ValidationError(str(exc))

    if "active" in payload and not isinstance(payload["active"], bool):
        raise ValidationError("active must be a boolean")


def validate_scim_group_payload(payload: Any) -> None:
    """Check required Group attributes: displayName.

    Raises:
        ValidationError: missing or invalid displayName
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object", scim_type="invalidSyntax")
    try:
        validate_name(payload.get("displayName"), "displayName")
    except ValueError as exc:
        raise ValidationError(str(exc))
