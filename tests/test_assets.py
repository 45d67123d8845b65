import pytest

from feedpipe.assets import AssetCache, derive_extension, is_safe_file_ref, mime_for

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


@pytest.fixture
def assets(settings):
    return AssetCache(settings)


def test_cache_asset_writes_one_file_per_owner(assets, web):
    web.add("https://example.com/icon.png", PNG, content_type="image/png")

    cached = assets.cache_asset(7, "https://example.com/icon.png")
    assert cached.file_ref == "feed-7.png"
    assert cached.mime_type == "image/png"
    assert (assets.root / "icons" / "feed-7.png").read_bytes() == PNG


def test_recaching_replaces_previous_extension(assets, web):
    web.add("https://example.com/icon.png", PNG, content_type="image/png")
    web.add("https://example.com/favicon.ico", b"\x00\x00\x01\x00", content_type="image/x-icon")

    assets.cache_asset(7, "https://example.com/icon.png")
    assets.cache_asset(7, "https://example.com/favicon.ico")
    files = sorted(p.name for p in (assets.root / "icons").iterdir())
    assert files == ["feed-7.ico"]


def test_thumbnails_live_in_their_own_directory(assets, web):
    web.add("https://img.example.com/a", PNG, content_type="image/webp")
    cached = assets.cache_asset(3, "https://img.example.com/a", kind="thumbnails")
    assert cached.file_ref == "article-3.webp"
    assert (assets.root / "thumbnails" / "article-3.webp").exists()


def test_non_image_response_is_rejected(assets, web):
    web.add("https://example.com/not-image", "<html>login</html>", content_type="text/html")
    assert assets.cache_asset(1, "https://example.com/not-image") is None
    assert list(assets.kind_dir("icons").iterdir()) == []


def test_oversize_body_is_rejected(settings, web):
    small = AssetCache(settings.model_copy(update={"max_asset_bytes": 10}))
    web.add("https://example.com/huge.png", b"x" * 11, content_type="image/png")
    assert small.cache_asset(1, "https://example.com/huge.png") is None


def test_fetch_failure_returns_none(assets, web):
    assert assets.cache_asset(1, "https://down.example.com/icon.png") is None
    assert assets.cache_asset(1, None) is None
    assert assets.cache_asset(1, "data:image/png;base64,AAAA") is None


def test_clear_asset_and_clear_all(assets, web):
    web.add("https://example.com/icon.png", PNG, content_type="image/png")
    assets.cache_asset(1, "https://example.com/icon.png")
    assets.cache_asset(2, "https://example.com/icon.png")
    assets.cache_asset(9, "https://example.com/icon.png", kind="thumbnails")

    assert assets.clear_asset(1) is True
    assert assets.clear_asset(1) is False
    assert assets.clear_all_assets("icons") == 1
    assert assets.clear_all_assets() == 1


def test_resolve_path_rejects_traversal(assets):
    assert assets.resolve_path("../../etc/passwd") is None
    assert assets.resolve_path("feed-1.png").name == "feed-1.png"
    assert not is_safe_file_ref("feed-1.png/..")


def test_derive_extension_and_mime():
    assert derive_extension("https://x/a", "image/jpeg") == ".jpg"
    assert derive_extension("https://x/a.GIF?v=1", "") == ".gif"
    assert derive_extension("https://x/a", "application/octet-stream") == ".png"
    assert derive_extension("https://x/a.exe", None) == ".png"
    assert mime_for("feed-1.svg") == "image/svg+xml"
    assert mime_for("feed-1.bin") == "application/octet-stream"
