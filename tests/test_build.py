import json
import sqlite3

import pytest

from baked.build import DEFAULT_CONFIG, BuildError, build_site, cache_name, load_config
from baked.utils import file_digest

from conftest import write


def test_load_config_defaults(tmp_path):
    assert load_config(tmp_path) == DEFAULT_CONFIG
    write(tmp_path / "baked.yaml", "output_dir: public\nport: 9000\n")
    config = load_config(tmp_path)
    assert config["output_dir"] == "public"
    assert config["port"] == 9000
    assert config["pages_dir"] == "pages"


def test_load_config_ignores_non_mapping(tmp_path, caplog):
    write(tmp_path / "baked.yaml", "- just\n- a list\n")
    assert load_config(tmp_path) == DEFAULT_CONFIG
    assert "not a mapping" in caplog.text


def test_build_writes_pages_and_runtime_artifacts(project):
    result = build_site(project)
    dist = project / "dist"
    assert result.output_dir == dist
    assert result.pages == ["blog/first", "blog/second", "blog/third", "index", "news/launch"]
    assert result.report.drafts == 1
    assert result.site["title"] == "Test Site"

    assert "<title>Post: First</title>" in (dist / "blog" / "first.html").read_text(encoding="utf-8")
    assert '<h1 id="welcome">Welcome</h1>' in (dist / "index.html").read_text(encoding="utf-8")
    assert not (dist / "blog" / "wip.html").exists()
    assert (dist / "offline.html").exists()
    assert not (project / "dist-tmp").exists()

    manifest = json.loads((dist / "manifest.json").read_text(encoding="utf-8"))
    assert manifest["cache_name"] == cache_name(1) == "baked-v1"
    assert manifest["db"] == "site.db"
    assert manifest["db_sha256"] == file_digest(dist / "site.db")
    assert manifest["precache"] == ["/", "/offline.html"]

    conn = sqlite3.connect(dist / "site.db")
    assert conn.execute("SELECT COUNT(*) FROM pages").fetchone()[0] == 5
    conn.close()


def test_build_includes_drafts_on_request(project):
    result = build_site(project, include_drafts=True)
    assert "blog/wip" in result.pages
    assert (project / "dist" / "blog" / "wip.html").exists()


def test_build_replaces_previous_output(project):
    stale = write(project / "dist" / "stale.html", "old")
    build_site(project)
    assert not stale.exists()


def test_build_fails_at_end_with_every_failure(project):
    write(project / "pages" / "broken.md", "---\ntemplate: nowhere\n---\nBroken\n")
    write(
        project / "pages" / "orphan.md",
        '---\ntemplate: orphan\n---\nOrphan\n',
    )
    write(
        project / "assets" / "templates" / "orphan.html",
        '{% extends "no-parent" %}',
    )
    with pytest.raises(BuildError) as excinfo:
        build_site(project)

    failures = {f.page_path: f.message for f in excinfo.value.failures}
    assert set(failures) == {"broken.md", "orphan.md"}
    assert "Template not found: nowhere.html" in failures["broken.md"]
    assert "Parent template not found: no-parent" in failures["orphan.md"]
    assert str(excinfo.value) == "2 page(s) failed to render"

    dist = project / "dist"
    assert "Error Rendering Page" in (dist / "broken.html").read_text(encoding="utf-8")
    assert "<title>Post: First</title>" in (dist / "blog" / "first.html").read_text(encoding="utf-8")
    assert (dist / "manifest.json").exists()


def test_build_respects_output_override_and_precache(project, tmp_path):
    write(project / "baked.yaml", "cache_version: 7\nprecache:\n  - /blog/first\n  - /offline.html\n")
    out = tmp_path / "elsewhere"
    result = build_site(project, output_dir_override=out)
    assert result.output_dir == out
    manifest = json.loads((out / "manifest.json").read_text(encoding="utf-8"))
    assert manifest["cache_name"] == "baked-v7"
    assert manifest["version"] == "7"
    assert manifest["precache"] == ["/", "/offline.html", "/blog/first"]
