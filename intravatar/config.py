"""
Configuration module for the intravatar service.

Uses pydantic-settings for environment-based configuration with sensible defaults.
The settings object is frozen: build it once at startup and hand it to the
components that need it.
"""

from __future__ import annotations

import os
import re
import socket
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Size limits for served and stored avatars
MIN_SIZE = 8
MAX_SIZE = 512
DEFAULT_SIZE = 80

# Default option meaning "report not found instead of substituting an image"
D404 = "404"

# Builtin defaults understood by gravatar compatible services
REMOTE_KEYWORDS = frozenset(
    {"mm", "mp", "identicon", "monsterid", "wavatar", "retro", "robohash", "blank"}
)

_REMOTE_DEFAULT_RE = re.compile(r"^remote:([a-zA-Z]+)$")


@dataclass(frozen=True)
class DefaultPolicy:
    """
    Resolved form of the DEFAULT setting.

    Attributes:
        remote_default: Value passed as ``d=`` to the last remote service
            ("" to let the remote pick its own default)
        image: Absolute path of a local default image, or None
    """
    remote_default: str = ""
    image: Optional[str] = None


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Example: REMOTE=http://gravatar.com/avatar,http://unicornify.pictures/avatar
    """

    model_config = SettingsConfigDict(env_prefix="", extra="ignore", frozen=True)

    # Storage
    DATA_DIR: str = Field(
        default="data",
        description="Path to data files relative to current working dir"
    )
    PENDING_INDEX_PATH: Optional[str] = Field(
        default=None,
        description="SQLite file indexing unconfirmed uploads (defaults to DATA_DIR/pending.sqlite)"
    )
    PENDING_TTL_SECONDS: Optional[int] = Field(
        default=None,
        gt=0,
        description="Seconds an unconfirmed upload stays valid; unset means no expiry"
    )

    # Web server
    PORT: int = Field(default=8080, description="Webserver port number")
    HOST_NAME: Optional[str] = Field(
        default=None,
        description="Host name used in links (defaults to the machine host name)"
    )
    SERVICE_URL: Optional[str] = Field(
        default=None,
        description="Public base URL used in confirmation links, e.g. https://avatars.example.com/"
    )

    # Remote fallback
    REMOTE: str = Field(
        default="http://gravatar.com/avatar",
        description="Comma-separated gravatar compatible services, or 'none'"
    )
    DEFAULT: str = Field(
        default="remote:monsterid",
        description=(
            "Default avatar: 'remote' uses the remote's default, 'remote:<option>' "
            "passes ?d=<option> to the remote, anything else is a local image path"
        )
    )
    REMOTE_TIMEOUT_SECONDS: float = Field(
        default=5.0,
        description="Timeout for a single remote avatar lookup"
    )
    CACHE_MAX_AGE: int = Field(
        default=300,
        description="max-age advertised in Cache-Control for served avatars"
    )

    # Email confirmation
    SMTP_HOST: str = Field(default="", description="SMTP host used for email confirmation")
    SMTP_PORT: int = Field(default=25, description="SMTP port")
    SMTP_USER: str = Field(default="", description="SMTP user name (optional)")
    SMTP_PASSWORD: str = Field(default="", description="SMTP password (optional)")
    SMTP_NO_TLS_VERIFY: bool = Field(
        default=False,
        description="Skip TLS certificate verification of the SMTP server"
    )
    SENDER: str = Field(
        default="intravatar@localhost",
        description="From address of confirmation emails"
    )
    EMAIL_DOMAINS: str = Field(
        default="",
        description="Comma-separated allowed email domains; empty allows all"
    )
    TEST_MAIL: str = Field(
        default="",
        description="Send a test email to this address at startup"
    )

    # Service metadata
    SERVICE_NAME: str = Field(default="intravatar", description="Service name for logging")
    SERVICE_VERSION: str = Field(default="1.0.0", description="Service version")

    @property
    def remote_urls(self) -> List[str]:
        """Ordered remote service base URLs (empty when REMOTE is 'none')."""
        if self.REMOTE.strip().lower() == "none":
            return []
        return [u.strip().rstrip("/") for u in self.REMOTE.split(",") if u.strip()]

    @property
    def email_domains(self) -> List[str]:
        return [d.strip().lower() for d in self.EMAIL_DOMAINS.split(",") if d.strip()]

    @property
    def default_policy(self) -> DefaultPolicy:
        value = self.DEFAULT.strip()
        if value in ("remote", "fallback"):
            return DefaultPolicy()
        m = _REMOTE_DEFAULT_RE.match(value)
        if m:
            return DefaultPolicy(remote_default=m.group(1))
        # A local default image, relative to the working directory; remotes
        # must report a true miss
        return DefaultPolicy(remote_default=D404, image=os.path.abspath(value))

    @property
    def cache_control(self) -> str:
        return f"max-age={self.CACHE_MAX_AGE}"

    @property
    def pending_index_path(self) -> str:
        return self.PENDING_INDEX_PATH or os.path.join(self.DATA_DIR, "pending.sqlite")

    @property
    def host_name(self) -> str:
        if self.HOST_NAME:
            return self.HOST_NAME
        try:
            return socket.gethostname()
        except OSError:
            return "localhost"

    @property
    def service_url(self) -> str:
        """Base URL of this service, always ending with a slash."""
        if self.SERVICE_URL:
            return self.SERVICE_URL.rstrip("/") + "/"
        port = "" if self.PORT == 80 else f":{self.PORT}"
        return f"http://{self.host_name}{port}/"


@lru_cache
def get_settings() -> Settings:
    """Settings built once from the process environment."""
    return Settings()
