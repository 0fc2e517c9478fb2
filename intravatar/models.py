"""
Data model for avatar lookups and uploads, plus the pydantic response
models of the HTTP API.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Optional

from pydantic import BaseModel, Field

from .config import D404, DEFAULT_SIZE, MAX_SIZE, MIN_SIZE, REMOTE_KEYWORDS
from .imaging import ImageFormat


def clamp_size(size: int) -> int:
    return max(min(size, MAX_SIZE), MIN_SIZE)


def valid_default(value: Optional[str]) -> Optional[str]:
    """
    Return ``value`` if it is a default option we honour, otherwise None.

    Only the ``404`` sentinel and the builtin remote keywords are accepted.
    """
    if value is None:
        return None
    value = value.strip().lower()
    if value == D404 or value in REMOTE_KEYWORDS:
        return value
    return None


@dataclass(frozen=True)
class AvatarRequest:
    """
    Parameters of a single avatar lookup.

    Attributes:
        hash: Identity hash (alphanumeric)
        size: Side length in pixels, clamped to [MIN_SIZE, MAX_SIZE]
        format: Requested output format, or None to keep the stored one
        default: Per-request default option (``"404"`` for a strict lookup)
    """
    hash: str
    size: int = DEFAULT_SIZE
    format: Optional[ImageFormat] = None
    default: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "size", clamp_size(self.size))

    @classmethod
    def from_query(
        cls,
        hash: str,
        size: Optional[str] = None,
        default: Optional[str] = None,
        extension: Optional[str] = None,
    ) -> "AvatarRequest":
        """
        Build a request from raw query values.

        An unparsable size falls back to DEFAULT_SIZE. An unknown extension
        raises UnsupportedFormatError.
        """
        parsed_size = DEFAULT_SIZE
        if size:
            try:
                parsed_size = int(size)
            except ValueError:
                parsed_size = DEFAULT_SIZE
        fmt = ImageFormat.parse(extension) if extension else None
        return cls(hash=hash, size=parsed_size, format=fmt, default=valid_default(default))

    @property
    def strict(self) -> bool:
        """True when the caller asked for not-found instead of a default image."""
        return self.default == D404


@dataclass
class AvatarImage:
    """An encoded avatar ready to be written to a response."""
    data: bytes
    format: ImageFormat
    size: int
    cache_control: str = ""
    last_modified: str = ""

    @property
    def media_type(self) -> str:
        return self.format.media_type


@dataclass(frozen=True)
class PendingUpload:
    """
    An upload staged until its token is confirmed.

    Attributes:
        token: 128-bit random value, hex encoded
        identity_hash: Hash of the submitter's email address
        staged_key: Blob key of the staged image
        created_at: Unix timestamp when the upload was staged
    """
    token: str
    identity_hash: str
    staged_key: str
    created_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class UploadOutcome:
    """Result of submitting an upload."""
    token: str
    identity_hash: str
    email: str
    confirmed: bool


# ---------------------------------------------------------------------------
# API responses
# ---------------------------------------------------------------------------


class IndexResponse(BaseModel):
    avatar_link: str = Field(..., description="Base URL for avatar lookups")
    host_name: str = Field(..., description="Host name of this service")


class UploadResponse(BaseModel):
    """Response returned after an upload was staged."""
    status: str = Field(..., description="'pending' until confirmed, then 'confirmed'")
    email: str = Field(..., description="Address the confirmation was sent to")
    avatar: Optional[str] = Field(default=None, description="Avatar path once confirmed")
    uniq: Optional[str] = Field(default=None, description="Cache breaker for the avatar URL")


class ConfirmResponse(BaseModel):
    status: str = Field(default="confirmed")
    avatar: str = Field(..., description="Path of the published avatar")
    uniq: str = Field(..., description="Cache breaker for the avatar URL")


class HealthResponse(BaseModel):
    status: str = Field(..., description="Service status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    remotes: list[str] = Field(default_factory=list, description="Configured remote services")
    email_confirmation: bool = Field(..., description="Whether uploads need email confirmation")
