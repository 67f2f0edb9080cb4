import sqlite3
from pathlib import Path

import pytest

from baked.baker import Baker
from baked.loading import ContentLoader
from baked.store import create_store

BASE_TEMPLATE = (
    "<html><head><title>{% block title %}{{ page.title }}{% endblock %}</title></head>"
    "<body>{% block content %}{% endblock %}</body></html>"
)


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def write_project(root: Path) -> Path:
    write(root / "baked.yaml", "output_dir: dist\n")
    write(root / "site.yaml", "title: Test Site\nauthor: Sam\n")
    templates = root / "assets" / "templates"
    write(templates / "base.html", BASE_TEMPLATE)
    write(
        templates / "default.html",
        '{% extends "base" %}{% block content %}<article>{{ page.content }}</article>{% endblock %}',
    )
    write(
        templates / "post.html",
        '{% extends "default.html" %}{% block title %}Post: {{ page.title }}{% endblock %}',
    )
    write(root / "assets" / "css" / "main.css", "body { color: red; }")

    pages = root / "pages"
    write(pages / "index.md", "---\ntitle: Home\n---\n# Welcome\n")
    write(pages / "blog" / "meta.yaml", "template: post\ncategory: blog\n")
    write(pages / "blog" / "first.md", "---\ntitle: First\ndate: 2024-01-01\n---\nFirst post\n")
    write(pages / "blog" / "second.md", "---\ntitle: Second\ndate: 2024-02-01\n---\nSecond post\n")
    write(pages / "blog" / "third.md", "---\ntitle: Third\ndate: 2024-03-01\n---\nThird post\n")
    write(pages / "blog" / "wip.md", "---\ntitle: WIP\ndraft: true\n---\nNot yet\n")
    write(
        pages / "news" / "launch.md",
        "---\ntitle: Launch\ndate: 2023-12-01\ncategory: news\n---\nWe are live\n",
    )
    return root


def load_project(root: Path, db_path=":memory:") -> sqlite3.Connection:
    conn = create_store(db_path)
    loader = ContentLoader(conn, root / "dist")
    loader.load_assets(root / "assets")
    loader.load_pages(root / "pages")
    loader.load_site_metadata(root)
    return conn


@pytest.fixture
def project(tmp_path):
    return write_project(tmp_path / "site")


@pytest.fixture
def store(project):
    conn = load_project(project)
    yield conn
    conn.close()


@pytest.fixture
def baker(store):
    return Baker(store)
