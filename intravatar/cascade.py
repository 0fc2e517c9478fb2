"""
Avatar resolution cascade.

Resolves an avatar request in order, stopping at the first hit:
  1. published avatar in the local store
  2. remote services, in configured order
  3. configured default image
  4. built-in default image

Failures at any step are logged and treated as a miss.
"""

from __future__ import annotations

import logging
from email.utils import format_datetime
from typing import Optional

from .blobstore import BlobStore, avatar_key
from .config import D404, Settings
from .errors import AvatarError, BlobNotFound, RemoteLookupError
from .imaging import builtin_default, scale
from .models import AvatarImage, AvatarRequest
from .remote import RemoteAvatarClient

logger = logging.getLogger("intravatar.cascade")

FALLBACK_LAST_MODIFIED = "Sat, 01 Jan 2000 12:00:00 GMT"


class AvatarResolver:
    """Resolves avatar requests against local, remote and default sources."""

    def __init__(
        self,
        settings: Settings,
        store: BlobStore,
        remote_client: Optional[RemoteAvatarClient] = None,
    ):
        self.settings = settings
        self.store = store
        self.remote_urls = settings.remote_urls
        self.policy = settings.default_policy
        self.remote_client = remote_client or RemoteAvatarClient(
            timeout=settings.REMOTE_TIMEOUT_SECONDS,
            cache_control=settings.cache_control,
        )

    def resolve(self, request: AvatarRequest) -> Optional[AvatarImage]:
        """
        Resolve ``request`` to an image.

        Returns:
            The avatar, or None when nothing resolved (always the case for
            a strict ``404`` request that misses locally and remotely)
        """
        logger.info("Loading image: %s", request)
        avatar = self.from_local(request)
        if avatar is None:
            avatar = self.from_remote(request)
        if avatar is None and not request.strict and self.policy.image:
            avatar = self.from_key(self.policy.image, request)
        if avatar is None and not request.strict:
            avatar = self.from_builtin(request)
        return avatar

    def from_local(self, request: AvatarRequest) -> Optional[AvatarImage]:
        return self.from_key(avatar_key(request.hash), request)

    def from_key(self, key: str, request: AvatarRequest) -> Optional[AvatarImage]:
        """Load and scale a stored image; any failure is a miss."""
        try:
            data = self.store.load(key)
        except BlobNotFound:
            logger.debug("No image at %s", self.store.full_name(key))
            return None
        except AvatarError as e:
            logger.warning("Error reading file: %s", e)
            return None

        try:
            out = scale(data, request.size, request.format)
        except AvatarError as e:
            # Don't serve an image we can't scale, it is probably corrupt
            logger.warning("Could not scale image %s: %s", self.store.full_name(key), e)
            return None

        try:
            last_modified = format_datetime(self.store.last_modified(key), usegmt=True)
        except AvatarError:
            last_modified = FALLBACK_LAST_MODIFIED

        return AvatarImage(
            data=out.data,
            format=out.format,
            size=out.size,
            cache_control=self.settings.cache_control,
            last_modified=last_modified,
        )

    def effective_default(self, request: AvatarRequest) -> str:
        """Default passed to the last remote: per-request beats configured."""
        return request.default or self.policy.remote_default

    def from_remote(self, request: AvatarRequest) -> Optional[AvatarImage]:
        if not self.remote_urls:
            return None
        *leading, last = self.remote_urls
        attempts = [(url, D404) for url in leading]
        attempts.append((last, self.effective_default(request)))

        for url, default in attempts:
            try:
                avatar = self.remote_client.fetch(url, request, default)
            except RemoteLookupError as e:
                logger.warning("%s", e)
                continue
            if avatar is not None:
                return avatar
        return None

    def from_builtin(self, request: AvatarRequest) -> Optional[AvatarImage]:
        try:
            out = scale(builtin_default(), request.size, request.format)
        except AvatarError as e:
            logger.error("Could not scale built-in default: %s", e)
            return None
        return AvatarImage(
            data=out.data,
            format=out.format,
            size=out.size,
            cache_control=self.settings.cache_control,
            last_modified=FALLBACK_LAST_MODIFIED,
        )
