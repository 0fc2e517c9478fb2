"""
Intravatar - gravatar compatible avatar service with confirmed uploads.

Avatars resolve through the local store, remote avatar services and
default images. Uploads are staged and published once confirmed.
"""

from .main import create_app

__all__ = ["create_app"]
