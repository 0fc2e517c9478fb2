"""
Upload and confirmation workflow.

An upload is validated, cropped to a square, staged under a random token
and published to the canonical store once the token is confirmed:

    validated -> staged -> confirmed

Without an SMTP host uploads are confirmed right away. Otherwise a link
containing the token is emailed to the submitter.
"""

from __future__ import annotations

import hashlib
import logging
import re
import secrets
from typing import Any, Callable, Optional

from .blobstore import UNCONFIRMED_DIR, BlobStore, avatar_key, unconfirmed_key
from .config import Settings
from .errors import BlobNotFound, ConfirmationError, NotificationError, ValidationError
from .imaging import Transformed, crop_and_scale
from .mailer import ConfirmationMailer
from .models import PendingUpload, UploadOutcome
from .pending import PendingUploadStore

logger = logging.getLogger("intravatar.upload")

TOKEN_RE = re.compile(r"^[0-9a-f]{32}$")

Dispatch = Callable[..., Any]


def create_hash(email: str) -> str:
    """Identity hash of an email address (md5 of the trimmed, lower-cased address)."""
    return hashlib.md5(email.strip().lower().encode("utf-8")).hexdigest()


def create_token() -> str:
    """128-bit random confirmation token, hex encoded."""
    return secrets.token_hex(16)


def validate_and_resize(data: bytes) -> Transformed:
    """Strictly decode an uploaded image and turn it into a canonical avatar."""
    return crop_and_scale(data)


class UploadWorkflow:
    """Stages uploaded avatars and publishes them on confirmation."""

    def __init__(
        self,
        settings: Settings,
        store: BlobStore,
        pending: PendingUploadStore,
        mailer: Optional[ConfirmationMailer] = None,
    ):
        self.store = store
        self.pending = pending
        self.email_domains = settings.email_domains
        self.confirm_by_email = bool(settings.SMTP_HOST)
        if mailer is None and self.confirm_by_email:
            mailer = ConfirmationMailer(settings)
        self.mailer = mailer

    def verify_email(self, email: str) -> None:
        """
        Check ``email`` against the allowed domains.

        An empty allow-list accepts every address.

        Raises:
            ValidationError: If the address is empty or its domain is not allowed
        """
        lowered = (email or "").strip().lower()
        if not lowered:
            raise ValidationError("An email address is required")
        if not self.email_domains:
            return
        for domain in self.email_domains:
            if lowered.endswith("@" + domain):
                return
        raise ValidationError(
            f"email is not in white list of mail domains {self.email_domains}"
        )

    def submit(self, email: str, data: bytes, dispatch: Optional[Dispatch] = None) -> UploadOutcome:
        """
        Stage an uploaded image for ``email``.

        Args:
            email: Submitter's email address
            data: Raw uploaded image bytes
            dispatch: Schedules the confirmation email, e.g. BackgroundTasks.add_task;
                delivery failures are then logged. Defaults to sending inline

        Returns:
            UploadOutcome telling whether the upload was confirmed right away

        Raises:
            ValidationError: Disallowed email
            DecodeError / TransformError: Unusable image
            StorageError: Staging failed
            NotificationError: Inline email delivery failed
        """
        self.verify_email(email)
        logger.info("Saving image for email address: %s", email)
        avatar = validate_and_resize(data)

        token = create_token()
        identity_hash = create_hash(email)
        key = unconfirmed_key(identity_hash, token)

        self._discard_pending(identity_hash)
        self.store.save(key, avatar.data)
        self.pending.add(PendingUpload(token, identity_hash, key))

        if not self.confirm_by_email:
            # skip e-mail confirmation
            self.confirm(token)
            return UploadOutcome(token, identity_hash, email, confirmed=True)

        if dispatch is None:
            self.mailer.send_confirmation(email, token)
        else:
            dispatch(self._deliver_confirmation, email, token)
        return UploadOutcome(token, identity_hash, email, confirmed=False)

    def _deliver_confirmation(self, email: str, token: str) -> None:
        """Send the confirmation email after the response; failures are only logged."""
        try:
            self.mailer.send_confirmation(email, token)
        except NotificationError as e:
            logger.error("Confirmation email for token %s was not delivered: %s", token, e)

    def confirm(self, token: str) -> str:
        """
        Publish the upload staged under ``token``.

        Returns:
            Identity hash of the published avatar

        Raises:
            ConfirmationError: Unknown, malformed, expired or consumed token
            StorageError: Publishing failed
        """
        if not TOKEN_RE.match(token or ""):
            raise ConfirmationError("Invalid confirmation token")
        logger.info("Confirming uploaded avatar with token %s", token)

        upload = self.pending.lookup(token)
        if upload is not None and self.pending.is_expired(upload):
            self._discard(upload)
            raise ConfirmationError("Confirmation period expired")
        if upload is None:
            upload = self._scan_staging(token)

        logger.info(
            "Found confirmation file %s (hash=%s)",
            self.store.full_name(upload.staged_key), upload.identity_hash,
        )
        try:
            self.store.rename(upload.staged_key, avatar_key(upload.identity_hash))
        except BlobNotFound as e:
            self.pending.remove(token)
            raise ConfirmationError("Confirmation period expired") from e
        self.pending.remove(token)
        return upload.identity_hash

    def _scan_staging(self, token: str) -> PendingUpload:
        """Locate a staged upload that is missing from the index."""
        try:
            filename = self.store.find_by_prefix(UNCONFIRMED_DIR, f"{token}-")
        except BlobNotFound as e:
            raise ConfirmationError("Confirmation period expired") from e

        _, _, identity_hash = filename.partition("-")
        if not identity_hash:
            logger.error("Invalid confirmation file name: %s", filename)
            raise ConfirmationError("Invalid confirmation file")
        return PendingUpload(token, identity_hash, f"{UNCONFIRMED_DIR}/{filename}")

    def _discard(self, upload: PendingUpload) -> None:
        self.pending.remove(upload.token)
        self.store.delete(upload.staged_key)

    def _discard_pending(self, identity_hash: str) -> None:
        for upload in self.pending.for_identity(identity_hash):
            logger.info("Replacing unconfirmed upload %s for %s", upload.token, identity_hash)
            self._discard(upload)

    def purge_expired(self) -> int:
        """
        Delete expired pending uploads and their staged images.

        Returns:
            Number of uploads removed
        """
        expired = self.pending.cleanup_expired()
        for upload in expired:
            self.store.delete(upload.staged_key)
        if expired:
            logger.info("Removed %d expired unconfirmed uploads", len(expired))
        return len(expired)
