"""Manager layer - business logic."""

from rolekeys.managers.api_key import ApiKeyManager

__all__ = ["ApiKeyManager"]
