"""
Intravatar errors.
"""

from __future__ import annotations


class AvatarError(Exception):
    """Base class for all avatar service errors."""


class DecodeError(AvatarError):
    """Bytes are not a JPEG, PNG or GIF image."""


class UnsupportedFormatError(DecodeError):
    """Requested image format is not one of JPEG, PNG or GIF."""


class TransformError(AvatarError):
    """Cropping, resizing or encoding an image failed."""


class StorageError(AvatarError):
    """I/O failure while reading, writing or renaming a blob."""


class BlobNotFound(StorageError):
    """No blob exists for the requested key."""


class RemoteLookupError(AvatarError):
    """A remote avatar service failed or returned an unusable response."""


class ConfirmationError(AvatarError):
    """No staged upload matches the confirmation token."""


class ValidationError(AvatarError):
    """Upload submission is missing a field or uses a disallowed email."""


class NotificationError(AvatarError):
    """Confirmation email could not be delivered."""
