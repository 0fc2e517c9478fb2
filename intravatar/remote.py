"""
Remote avatar service client.

Looks up avatars on gravatar compatible services. Every lookup carries an
explicit timeout so a slow remote cannot hang a request.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

import httpx

from .errors import DecodeError, RemoteLookupError
from .imaging import decode
from .models import AvatarImage, AvatarRequest

logger = logging.getLogger("intravatar.remote")


class RemoteAvatarClient:
    """
    Synchronous HTTP client for gravatar compatible avatar services.

    Handles:
    - Building ``{base}/{hash}[.{format}]?s=&d=`` lookups
    - Treating 404 as a miss
    - Mapping transport failures and bad responses to RemoteLookupError
    """

    def __init__(
        self,
        timeout: float = 5.0,
        cache_control: str = "max-age=300",
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            timeout: Seconds allowed for a single lookup
            cache_control: Cache-Control value forced onto remote results
            transport: Optional httpx transport (used by tests)
        """
        self.cache_control = cache_control
        self._client = httpx.Client(
            timeout=timeout,
            transport=transport,
            follow_redirects=True,
        )

    def close(self) -> None:
        self._client.close()

    @staticmethod
    def lookup_url(base_url: str, request: AvatarRequest) -> str:
        format_part = f".{request.format.value}" if request.format else ""
        return f"{base_url.rstrip('/')}/{request.hash}{format_part}"

    def fetch(
        self,
        base_url: str,
        request: AvatarRequest,
        default: Optional[str] = None,
    ) -> Optional[AvatarImage]:
        """
        Retrieve an avatar from one remote service.

        Args:
            base_url: Base URL of the service, e.g. http://gravatar.com/avatar
            request: The avatar request
            default: Value for the ``d`` parameter (omitted when empty)

        Returns:
            The avatar, or None if the remote reports 404

        Raises:
            RemoteLookupError: On transport failure, a non-2xx status or an
                undecodable body
        """
        url = self.lookup_url(base_url, request)
        params: Dict[str, str] = {"s": str(request.size)}
        if default:
            params["d"] = default

        logger.info("Retrieving from: %s %s", url, params)
        try:
            resp = self._client.get(url, params=params)
        except httpx.HTTPError as e:
            raise RemoteLookupError(f"Remote lookup of {url} failed: {e}") from e

        if resp.status_code == 404:
            logger.info("Avatar not found on remote %s", base_url)
            return None
        if resp.status_code >= 300:
            raise RemoteLookupError(
                f"Remote lookup of {url} failed: {resp.status_code}"
            )

        try:
            _, fmt = decode(resp.content)
        except DecodeError as e:
            raise RemoteLookupError(f"Remote {url} returned an unusable image: {e}") from e

        # Size is trusted to match the request; remote Cache-Control is never forwarded
        return AvatarImage(
            data=resp.content,
            format=fmt,
            size=request.size,
            cache_control=self.cache_control,
            last_modified=resp.headers.get("Last-Modified", ""),
        )
