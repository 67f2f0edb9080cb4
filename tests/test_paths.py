import pytest

from baked.paths import InvalidPathError, clean_asset_name, is_safe_page_path, validate_path
from baked.store import AssetType


def test_validate_path_strips_leading_slash():
    assert validate_path("/css/main.css") == "css/main.css"
    assert validate_path("main.css") == "main.css"


@pytest.mark.parametrize("path", ["../secret", "a/../../b", "a\\..\\b", "..", "notes..txt", "a..b.css"])
def test_validate_path_rejects_traversal(path):
    with pytest.raises(InvalidPathError) as excinfo:
        validate_path(path)
    assert excinfo.value.path == path


def test_validate_path_rejects_non_strings():
    with pytest.raises(InvalidPathError):
        validate_path(None)


def test_clean_asset_name_normalizes_templates():
    assert clean_asset_name("/templates/blog", AssetType.TEMPLATE) == "blog.html"
    assert clean_asset_name("partials/nav", AssetType.TEMPLATE) == "partials/nav.html"
    assert clean_asset_name("feed.xml", AssetType.TEMPLATE) == "feed.xml"
    assert clean_asset_name("css/main.css", AssetType.STYLESHEET) == "main.css"
    assert clean_asset_name("css/main.css", AssetType.SCRIPT) == "css/main.css"


def test_clean_asset_name_rejects_empty_and_traversal():
    with pytest.raises(InvalidPathError):
        clean_asset_name("/templates/", AssetType.TEMPLATE)
    with pytest.raises(InvalidPathError):
        clean_asset_name("templates/../../etc/passwd", AssetType.TEMPLATE)


def test_is_safe_page_path():
    assert is_safe_page_path("blog/post")
    assert is_safe_page_path("/blog/post")
    assert not is_safe_page_path("../etc/passwd")
    assert not is_safe_page_path('blog/"post')
    assert not is_safe_page_path("blog/<script>")
    assert not is_safe_page_path("it's")
    assert not is_safe_page_path(42)
