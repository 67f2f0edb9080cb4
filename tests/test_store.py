import pytest

from baked.store import (
    AssetType,
    Page,
    StoreError,
    create_store,
    insert_asset,
    insert_page,
)


def make_page(path="blog/post.md", slug="blog/post"):
    return Page(path=path, slug=slug, title="Post", content="<p>x</p>", template="default")


def test_create_store_has_both_tables():
    conn = create_store()
    names = {
        row[0]
        for row in conn.execute("SELECT name FROM sqlite_master WHERE type IN ('table', 'index')")
    }
    assert {"assets", "pages", "idx_pages_published_date"} <= names


def test_assets_are_keyed_by_path_and_type():
    conn = create_store()
    insert_asset(conn, "main", AssetType.STYLESHEET, "a{}")
    insert_asset(conn, "main", AssetType.SCRIPT, "x()")
    with pytest.raises(StoreError):
        insert_asset(conn, "main", AssetType.SCRIPT, "y()")


def test_duplicate_slug_is_rejected():
    conn = create_store()
    insert_page(conn, make_page())
    with pytest.raises(StoreError):
        insert_page(conn, make_page(path="blog/post.html"))


def test_page_metadata_round_trips_dates():
    from datetime import date

    conn = create_store()
    page = make_page()
    page.data = {"date": date(2024, 1, 2), "tags": ("a", "b")}
    insert_page(conn, page)
    raw = conn.execute("SELECT data FROM pages").fetchone()[0]
    assert '"2024-01-02"' in raw
    assert '["a", "b"]' in raw


def test_asset_type_directory_aliases():
    assert AssetType.from_directory("images") is AssetType.IMAGE
    assert AssetType.from_directory("CSS") is AssetType.STYLESHEET
    assert AssetType.from_directory("json") is AssetType.DATA
    assert AssetType.from_directory("fonts") is AssetType.OTHER
    assert AssetType.coerce("templates") is AssetType.TEMPLATE
    assert AssetType.coerce("template") is AssetType.TEMPLATE
    assert AssetType.coerce(AssetType.SCRIPT) is AssetType.SCRIPT
    with pytest.raises(ValueError):
        AssetType.coerce("video")


def test_asset_type_prefixes():
    assert "css/" in AssetType.STYLESHEET.prefixes
    assert "templates/" in AssetType.TEMPLATE.prefixes
    assert "template/" in AssetType.TEMPLATE.prefixes


def test_page_from_row_degrades_bad_metadata(caplog):
    row = {"path": "a.md", "slug": "a", "title": "A", "data": "{not json"}
    page = Page.from_row(row)
    assert page.data == {}
    assert "Invalid metadata" in caplog.text

    assert Page.from_row({**row, "data": "[1, 2]"}).data == {}
    assert Page.from_row({**row, "data": '{"x": 1}'}).data == {"x": 1}
