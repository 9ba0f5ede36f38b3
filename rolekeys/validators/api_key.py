"""Validation rules for API key creation.

Each rule looks at a proposed key (``KeyDraft``) and returns the errors it
finds as ``(field, message)`` pairs. ``validate_api_key`` runs them in order
and groups the result by field. Lookups against existing keys (name and
type uniqueness) are resolved by the caller and handed in on the draft.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from rolekeys.accounts import Owner
from rolekeys.errors import ValidationError
from rolekeys.models.api_key import NAME_DEFAULT_PUBLIC, NAME_MASTER, VALID_TYPES, ApiKeyType
from rolekeys.models.grants import GrantSpec

FieldError = tuple[str, str]


@dataclass
class KeyDraft:
    """A key as proposed for creation."""

    owner: Owner
    type: str
    name: str | None
    grants: Any

    # Resolved against the store by the caller
    name_taken: bool = False
    type_taken: bool = False


def validate_grants(draft: KeyDraft) -> list[FieldError]:
    """Grants payload shape and section counts."""
    return [("grants", msg) for msg in GrantSpec.validate(draft.grants)]


def validate_name(draft: KeyDraft) -> list[FieldError]:
    if not draft.name or not draft.name.strip():
        return [("name", "can't be blank")]
    if draft.name_taken:
        return [("name", "has already been taken")]
    return []


def validate_type(draft: KeyDraft) -> list[FieldError]:
    if draft.type not in VALID_TYPES:
        return [("type", "is not included in the list")]
    if draft.type != ApiKeyType.REGULAR and draft.type_taken:
        return [("type", "has already been taken")]
    return []


def validate_name_for_type(draft: KeyDraft) -> list[FieldError]:
    """Reserved names belong to their key type only."""
    is_master = draft.type == ApiKeyType.MASTER
    is_default_public = draft.type == ApiKeyType.DEFAULT_PUBLIC
    if (not is_master and draft.name == NAME_MASTER) or (
        not is_default_public and draft.name == NAME_DEFAULT_PUBLIC
    ):
        return [("name", f"api_key name cannot be {NAME_MASTER} nor {NAME_DEFAULT_PUBLIC}")]
    return []


def validate_master_key(draft: KeyDraft) -> list[FieldError]:
    if draft.type != ApiKeyType.MASTER:
        return []
    return _canonical_key_errors(draft, NAME_MASTER, "master keys")


def validate_default_public_key(draft: KeyDraft) -> list[FieldError]:
    if draft.type != ApiKeyType.DEFAULT_PUBLIC:
        return []
    return _canonical_key_errors(draft, NAME_DEFAULT_PUBLIC, "default public keys")


def _canonical_key_errors(draft: KeyDraft, name: str, label: str) -> list[FieldError]:
    errors: list[FieldError] = []
    if draft.name != name:
        errors.append(("name", f"must be {name} for {label}"))
    if not isinstance(draft.grants, list) or not GrantSpec(draft.grants).is_all_apis():
        errors.append(("grants", "must grant all apis"))
    return errors


def validate_owned_tables(draft: KeyDraft) -> list[FieldError]:
    """Table grants must stay inside the owner's schema.

    Only meaningful on a payload that already passed validate_grants.
    """
    schema = draft.owner.database_schema
    table_permissions = GrantSpec(draft.grants).table_permissions()
    if any(tp.schema != schema for tp in table_permissions):
        return [("grants", "can only grant permissions over owned tables")]
    return []


RULES: list[Callable[[KeyDraft], list[FieldError]]] = [
    validate_grants,
    validate_name,
    validate_type,
    validate_name_for_type,
    validate_master_key,
    validate_default_public_key,
]


def validate_api_key(draft: KeyDraft) -> dict[str, list[str]]:
    """Run every rule and group messages by field (empty when valid)."""
    errors: dict[str, list[str]] = {}
    for rule in RULES:
        for field, message in rule(draft):
            errors.setdefault(field, []).append(message)

    # Skipped on broken grants, reporting it there would only add noise
    if not errors.get("grants"):
        for field, message in validate_owned_tables(draft):
            errors.setdefault(field, []).append(message)

    return errors


def ensure_valid_api_key(draft: KeyDraft) -> None:
    """Raise ValidationError if the draft breaks any rule."""
    errors = validate_api_key(draft)
    if errors:
        raise ValidationError(errors)
