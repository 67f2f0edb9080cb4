import json

from PIL import Image

from baked.baker import Baker
from baked.loading import ContentLoader, read_metadata_file
from baked.store import create_store

from conftest import load_project, write


def pages_by_slug(conn):
    cursor = conn.execute("SELECT slug, path, title, template, data, published_date FROM pages")
    columns = [c[0] for c in cursor.description]
    return {row[0]: dict(zip(columns, row)) for row in cursor.fetchall()}


def test_blog_post_inherits_directory_metadata(project):
    conn = load_project(project)
    pages = pages_by_slug(conn)

    post = pages["blog/first"]
    assert post["path"] == "blog/first.md"
    assert post["title"] == "First"
    assert post["template"] == "post"
    assert post["published_date"] == "2024-01-01"
    assert json.loads(post["data"])["category"] == "blog"

    home = pages["index"]
    assert home["template"] == "default"
    assert home["published_date"] is None


def test_drafts_are_skipped_unless_requested(project, tmp_path):
    conn = create_store()
    loader = ContentLoader(conn, tmp_path / "out")
    report = loader.load_pages(project / "pages")
    assert report.pages == 5
    assert report.drafts == 1
    assert "blog/wip" not in pages_by_slug(conn)

    conn = create_store()
    ContentLoader(conn, tmp_path / "out").load_pages(project / "pages", include_drafts=True)
    assert "blog/wip" in pages_by_slug(conn)


def test_is_draft_marker_is_honored(tmp_path):
    pages = tmp_path / "pages"
    write(pages / "draft.md", "---\ntitle: Later\nisDraft: true\n---\nSoon\n")
    write(pages / "live.md", "---\ntitle: Now\nisDraft: false\n---\nHere\n")

    conn = create_store()
    report = ContentLoader(conn, tmp_path / "out").load_pages(pages)
    assert set(pages_by_slug(conn)) == {"live"}
    assert report.drafts == 1

    conn = create_store()
    ContentLoader(conn, tmp_path / "out").load_pages(pages, include_drafts=True)
    assert set(pages_by_slug(conn)) == {"draft", "live"}


def test_front_matter_round_trips_through_the_store(tmp_path):
    pages = tmp_path / "pages"
    write(pages / "meta.yaml", "section: notes\n")
    write(pages / "tagged.md", "---\ntitle: X\ntags: [a, b]\n---\nBody\n")
    conn = create_store()
    ContentLoader(conn, tmp_path / "out").load_pages(pages)

    page = Baker(conn).get_page("tagged")
    assert page.title == "X"
    assert page.data == {"section": "notes", "title": "X", "tags": ["a", "b"]}


def test_title_falls_back_to_file_stem(tmp_path):
    pages = tmp_path / "pages"
    write(pages / "about-us.html", "<p>About</p>")
    conn = create_store()
    ContentLoader(conn, tmp_path / "out").load_pages(pages)
    about = pages_by_slug(conn)["about-us"]
    assert about["title"] == "about-us"
    assert conn.execute("SELECT content FROM pages").fetchone()[0] == "<p>About</p>"


def test_bad_file_is_logged_and_skipped(tmp_path, caplog):
    pages = tmp_path / "pages"
    write(pages / "good.md", "Good")
    (pages / "bad.md").write_bytes(b"\xff\xfe\x00bad")
    conn = create_store()
    report = ContentLoader(conn, tmp_path / "out").load_pages(pages)
    assert report.pages == 1
    assert report.errors == 1
    assert "Error processing" in caplog.text
    assert set(pages_by_slug(conn)) == {"good"}


def test_images_directory_inside_pages_uses_image_mixer(tmp_path):
    pages = tmp_path / "pages"
    (pages / "images").mkdir(parents=True)
    Image.new("RGB", (2, 2), "blue").save(pages / "images" / "dot.png")
    write(pages / "images" / "meta.yaml", "alt: A dot\n")
    conn = create_store()
    ContentLoader(conn, tmp_path / "out").load_pages(pages)
    content = conn.execute("SELECT content FROM pages WHERE slug = 'images/dot'").fetchone()[0]
    assert content == '<img src="/images/dot.png" alt="A dot" />'
    assert (tmp_path / "out" / "images" / "dot.png").exists()


def test_assets_are_typed_by_directory(tmp_path):
    assets = tmp_path / "assets"
    write(assets / "templates" / "base.html", "<html></html>")
    write(assets / "templates" / "partials" / "nav.html", "<nav></nav>")
    write(assets / "css" / "main.css", "a{}")
    write(assets / "json" / "nav.json", '{"a": 1}')
    write(assets / "fonts" / "readme.txt", "fonts")
    write(assets / ".hidden" / "x.css", "hidden")
    (assets / "js").mkdir()
    (assets / "js" / "blob.js").write_bytes(b"\xff\x00")

    conn = create_store()
    report = ContentLoader(conn, tmp_path / "out").load_assets(assets)
    rows = {(path, type_): content for path, type_, content in conn.execute("SELECT * FROM assets")}
    assert rows[("base.html", "template")] == "<html></html>"
    assert rows[("partials/nav.html", "template")] == "<nav></nav>"
    assert rows[("main.css", "stylesheet")] == "a{}"
    assert rows[("nav.json", "data")] == '{"a": 1}'
    assert rows[("fonts/readme.txt", "other")] == "fonts"
    assert rows[("blob.js", "script")] == b"\xff\x00"
    assert report.assets == 6


def test_site_metadata_is_stored_as_data_asset(project):
    conn = load_project(project)
    row = conn.execute(
        "SELECT content FROM assets WHERE path = 'site.yaml' AND type = 'data'"
    ).fetchone()
    assert json.loads(row[0]) == {"title": "Test Site", "author": "Sam"}


def test_missing_site_metadata_is_empty(tmp_path, caplog):
    conn = create_store()
    assert ContentLoader(conn, tmp_path / "out").load_site_metadata(tmp_path) == {}
    assert "No site.yaml" in caplog.text


def test_read_metadata_file_ignores_non_mappings(tmp_path):
    path = write(tmp_path / "meta.yaml", "- a\n- b\n")
    assert read_metadata_file(path) == {}
    path = write(tmp_path / "meta2.yaml", "key: [unclosed\n")
    assert read_metadata_file(path) == {}
