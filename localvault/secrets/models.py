"""
Secret Models.

Pydantic models for versioned secrets, their properties and soft-deleted
secrets.

Author: LocalVault Team
Date: 2026-10-19
"""

import re
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


SECRET_NAME_PATTERN = re.compile(r"^[0-9a-zA-Z-]+$")
MAX_SECRET_NAME_LENGTH = 127


class SecretState(str, Enum):
    """Lifecycle state of a secret."""
    ACTIVE = "active"
    DELETING = "deleting"
    RECOVERING = "recovering"
    SOFT_DELETED = "soft_deleted"
    PURGED = "purged"


class RecoveryLevel(str, Enum):
    """Deletion recovery level reported on secret properties."""
    RECOVERABLE_PURGEABLE = "Recoverable+Purgeable"
    RECOVERABLE = "Recoverable"
    PURGEABLE = "Purgeable"


class SecretProperties(BaseModel):
    """Metadata attached to one secret version.

    Never carries the secret value.

    Attributes:
        name: Secret name
        version: Version identifier
        enabled: Whether the version can be read
        not_before: Activation date
        expires_on: Expiration date
        created_on: Creation timestamp
        updated_on: Last properties update timestamp
        content_type: MIME type hint
        tags: User-defined tags
        recovery_level: Deletion recovery level
        deleted: Whether the owning secret is soft-deleted
    """

    name: Optional[str] = None
    version: Optional[str] = None
    enabled: bool = True
    not_before: Optional[datetime] = Field(default=None, alias="nbf")
    expires_on: Optional[datetime] = Field(default=None, alias="exp")
    created_on: Optional[datetime] = Field(default=None, alias="created")
    updated_on: Optional[datetime] = Field(default=None, alias="updated")
    content_type: Optional[str] = Field(default=None, alias="contentType")
    tags: Dict[str, str] = Field(default_factory=dict)
    recovery_level: Optional[RecoveryLevel] = Field(default=None, alias="recoveryLevel")
    deleted: bool = False

    model_config = ConfigDict(populate_by_name=True)


class SecretVersion(BaseModel):
    """An immutable secret version: value plus properties.

    Attributes:
        name: Secret name
        version: Version identifier
        value: Secret payload
        properties: Version metadata
    """

    name: str
    version: str
    value: str
    properties: SecretProperties

    model_config = ConfigDict(frozen=True)


class SecretPropertiesUpdate(BaseModel):
    """Partial update of a version's mutable properties.

    ``value`` exists only so that an attempt to change the payload through
    an update can be detected and rejected.
    """

    enabled: Optional[bool] = None
    not_before: Optional[datetime] = Field(default=None, alias="nbf")
    expires_on: Optional[datetime] = Field(default=None, alias="exp")
    content_type: Optional[str] = Field(default=None, alias="contentType")
    tags: Optional[Dict[str, str]] = None
    value: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    @classmethod
    def from_properties(cls, properties: SecretProperties) -> "SecretPropertiesUpdate":
        """Build an update carrying every mutable field of ``properties``."""
        return cls(
            enabled=properties.enabled,
            not_before=properties.not_before,
            expires_on=properties.expires_on,
            content_type=properties.content_type,
            tags=dict(properties.tags),
        )


class DeletedSecret(BaseModel):
    """A secret removed by a completed delete operation.

    Attributes:
        name: Secret name
        recovery_id: Recovery identifier (None when soft-delete is disabled)
        deleted_on: When the deletion completed
        scheduled_purge_date: When the retention window ends
        properties: Properties of the current version at deletion time
    """

    name: str
    recovery_id: Optional[str] = Field(default=None, alias="recoveryId")
    deleted_on: Optional[datetime] = Field(default=None, alias="deletedDate")
    scheduled_purge_date: Optional[datetime] = Field(default=None, alias="scheduledPurgeDate")
    properties: SecretProperties

    model_config = ConfigDict(populate_by_name=True)


class PropertiesPage(BaseModel):
    """One page of a properties listing.

    Attributes:
        items: Properties on this page
        continuation_token: Token for the next page, None on the last page
    """
    items: List[SecretProperties]
    continuation_token: Optional[str] = None


class DeletedSecretPage(BaseModel):
    """One page of a deleted secrets listing."""
    items: List[DeletedSecret]
    continuation_token: Optional[str] = None


def validate_secret_name(name: str) -> Optional[str]:
    """Check a secret name against the naming rules.

    Rules:
    - 1-127 characters
    - Alphanumeric characters and hyphens only

    Args:
        name: Secret name

    Returns:
        None if the name is valid, otherwise the reason it is not
    """
    if not name:
        return "Secret name cannot be empty"
    if len(name) > MAX_SECRET_NAME_LENGTH:
        return f"Secret name must be {MAX_SECRET_NAME_LENGTH} characters or less"
    if not SECRET_NAME_PATTERN.match(name):
        return "Secret name may contain only alphanumeric characters and hyphens"
    return None
