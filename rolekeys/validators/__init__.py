"""Validation utilities for rolekeys."""

from rolekeys.validators.api_key import KeyDraft, ensure_valid_api_key, validate_api_key

__all__ = ["KeyDraft", "validate_api_key", "ensure_valid_api_key"]
