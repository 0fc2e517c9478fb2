"""
Tests for the avatar resolution cascade.
"""

from io import BytesIO

import httpx
import pytest
from PIL import Image

from intravatar.cascade import AvatarResolver
from intravatar.imaging import ImageFormat, decode
from intravatar.models import AvatarRequest
from intravatar.remote import RemoteAvatarClient


def make_image_bytes(size: int = 128, color=(255, 0, 0), fmt: str = "PNG") -> bytes:
    im = Image.new("RGB", (size, size), color=color)
    out = BytesIO()
    im.save(out, format=fmt)
    return out.getvalue()


class FakeRemotes:
    """Routes remote lookups by host and records every request."""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        return self.responses[request.url.host]()

    @property
    def hosts(self):
        return [c.url.host for c in self.calls]

    def default_for(self, host):
        for c in self.calls:
            if c.url.host == host:
                return c.url.params.get("d")
        raise AssertionError(f"{host} was not queried")


REMOTE_IMAGE = make_image_bytes(40, color=(0, 0, 255))


def not_found():
    return httpx.Response(404)


def server_error():
    return httpx.Response(500)


def image_with_long_ttl():
    return httpx.Response(
        200, content=REMOTE_IMAGE, headers={"Cache-Control": "max-age=31536000"}
    )


@pytest.fixture
def build_resolver(make_settings, store):
    def _build(remotes=None, **overrides):
        remotes = remotes or FakeRemotes({})
        settings = make_settings(**overrides)
        client = RemoteAvatarClient(timeout=1.0, transport=httpx.MockTransport(remotes))
        return AvatarResolver(settings, store, client)
    return _build


class TestLocal:
    """Published avatars are served from the store."""

    def test_local_hit_is_scaled(self, build_resolver, store):
        store.save("avatars/abc", make_image_bytes(128))
        remotes = FakeRemotes({"a.test": image_with_long_ttl})
        resolver = build_resolver(remotes, REMOTE="http://a.test")

        avatar = resolver.resolve(AvatarRequest("abc", size=64))

        img, fmt = decode(avatar.data)
        assert img.size == (64, 64)
        assert fmt is ImageFormat.PNG
        assert avatar.cache_control == "max-age=300"
        assert avatar.last_modified.endswith("GMT")
        assert remotes.calls == []

    def test_local_hit_converts_format(self, build_resolver, store):
        store.save("avatars/abc", make_image_bytes(128))

        avatar = build_resolver().resolve(AvatarRequest("abc", size=128, format=ImageFormat.GIF))

        assert avatar.format is ImageFormat.GIF
        assert avatar.media_type == "image/gif"

    def test_corrupt_local_falls_through(self, build_resolver, store):
        store.save("avatars/abc", b"corrupt")
        remotes = FakeRemotes({"a.test": image_with_long_ttl})
        resolver = build_resolver(remotes, REMOTE="http://a.test")

        avatar = resolver.resolve(AvatarRequest("abc"))

        assert avatar.data == REMOTE_IMAGE
        assert remotes.hosts == ["a.test"]


class TestRemoteChain:
    """Remote services are consulted in order after a local miss."""

    def test_first_miss_then_hit(self, build_resolver):
        remotes = FakeRemotes({"a.test": not_found, "b.test": image_with_long_ttl})
        resolver = build_resolver(remotes, REMOTE="http://a.test,http://b.test")

        avatar = resolver.resolve(AvatarRequest("abc", size=80))

        assert avatar.data == REMOTE_IMAGE
        assert avatar.size == 80
        assert avatar.cache_control == "max-age=300"
        assert remotes.hosts == ["a.test", "b.test"]

    def test_leading_remotes_get_strict_default(self, build_resolver):
        remotes = FakeRemotes({"a.test": not_found, "b.test": image_with_long_ttl})
        resolver = build_resolver(
            remotes, REMOTE="http://a.test,http://b.test", DEFAULT="remote:monsterid"
        )

        resolver.resolve(AvatarRequest("abc"))

        assert remotes.default_for("a.test") == "404"
        assert remotes.default_for("b.test") == "monsterid"

    def test_request_default_overrides_configured(self, build_resolver):
        remotes = FakeRemotes({"b.test": image_with_long_ttl})
        resolver = build_resolver(remotes, REMOTE="http://b.test", DEFAULT="remote:monsterid")

        resolver.resolve(AvatarRequest("abc", default="identicon"))

        assert remotes.default_for("b.test") == "identicon"

    def test_remote_default_mode_sends_no_default(self, build_resolver):
        remotes = FakeRemotes({"b.test": image_with_long_ttl})
        resolver = build_resolver(remotes, REMOTE="http://b.test", DEFAULT="remote")

        resolver.resolve(AvatarRequest("abc"))

        assert remotes.default_for("b.test") is None

    def test_server_error_is_skipped(self, build_resolver):
        remotes = FakeRemotes({"a.test": server_error, "b.test": image_with_long_ttl})
        resolver = build_resolver(remotes, REMOTE="http://a.test,http://b.test")

        assert resolver.resolve(AvatarRequest("abc")).data == REMOTE_IMAGE

    def test_first_hit_wins(self, build_resolver):
        remotes = FakeRemotes({"a.test": image_with_long_ttl, "b.test": image_with_long_ttl})
        resolver = build_resolver(remotes, REMOTE="http://a.test,http://b.test")

        resolver.resolve(AvatarRequest("abc"))

        assert remotes.hosts == ["a.test"]


class TestDefaults:
    """Configured and built-in defaults."""

    def test_configured_default_image(self, build_resolver, tmp_path):
        default = tmp_path / "default.png"
        default.write_bytes(make_image_bytes(100, color=(0, 255, 0)))
        remotes = FakeRemotes({"b.test": not_found})
        resolver = build_resolver(remotes, REMOTE="http://b.test", DEFAULT=str(default))

        avatar = resolver.resolve(AvatarRequest("abc", size=50))

        img, _ = decode(avatar.data)
        assert img.size == (50, 50)
        assert img.convert("RGB").getpixel((25, 25)) == (0, 255, 0)
        # a local default makes the last remote report a true miss
        assert remotes.default_for("b.test") == "404"

    def test_relative_default_image_is_read_from_working_dir(
        self, build_resolver, tmp_path, monkeypatch
    ):
        workdir = tmp_path / "work"
        (workdir / "resources").mkdir(parents=True)
        (workdir / "resources" / "default.png").write_bytes(
            make_image_bytes(100, color=(0, 255, 0))
        )
        monkeypatch.chdir(workdir)
        resolver = build_resolver(DEFAULT="resources/default.png")

        avatar = resolver.resolve(AvatarRequest("abc", size=50))

        img, _ = decode(avatar.data)
        assert img.convert("RGB").getpixel((25, 25)) == (0, 255, 0)

    def test_builtin_default(self, build_resolver):
        avatar = build_resolver().resolve(AvatarRequest("abc", size=32))

        img, fmt = decode(avatar.data)
        assert img.size == (32, 32)
        assert fmt is ImageFormat.PNG
        assert avatar.last_modified == "Sat, 01 Jan 2000 12:00:00 GMT"

    def test_missing_configured_default_uses_builtin(self, build_resolver, tmp_path):
        resolver = build_resolver(DEFAULT=str(tmp_path / "missing.png"))

        avatar = resolver.resolve(AvatarRequest("abc", size=32))

        assert decode(avatar.data)[0].size == (32, 32)

    def test_strict_lookup_never_uses_defaults(self, build_resolver, tmp_path, monkeypatch):
        default = tmp_path / "default.png"
        default.write_bytes(make_image_bytes(100))
        remotes = FakeRemotes({"a.test": not_found, "b.test": not_found})
        resolver = build_resolver(
            remotes, REMOTE="http://a.test,http://b.test", DEFAULT=str(default)
        )
        monkeypatch.setattr(
            resolver, "from_builtin", lambda request: pytest.fail("built-in default consulted")
        )

        assert resolver.resolve(AvatarRequest("abc", default="404")) is None
        assert remotes.default_for("b.test") == "404"

    def test_strict_lookup_still_serves_local(self, build_resolver, store):
        store.save("avatars/abc", make_image_bytes(64))
        assert build_resolver().resolve(AvatarRequest("abc", size=64, default="404")) is not None
