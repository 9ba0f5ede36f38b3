"""rolekeys services layer."""

from rolekeys.services.cache import ApiKeyCache
from rolekeys.services.credentials import CredentialGenerator
from rolekeys.services.provisioning import RoleProvisioner

__all__ = ["ApiKeyCache", "CredentialGenerator", "RoleProvisioner"]
