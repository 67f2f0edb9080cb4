"""Site building functionality for Baked.

This module contains the build host. It loads the project configuration,
fills a fresh content store from the asset and page trees, renders every page
through Baker and writes the static output together with the artifacts the
runtime host needs (``site.db``, ``offline.html`` and ``manifest.json``).

Rendering never stops at the first broken page: a page that fails gets the
error page, the failure is recorded, and the build raises ``BuildError`` once
everything else has been written.

Key functions:
- build_site: Main function to build the entire site.
- load_config: Loads site configuration from baked.yaml.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .baker import Baker, RenderError
from .loading import ContentLoader, LoadReport
from .store import create_store
from .utils import ensure_clean_dir, file_digest

LOGGER = logging.getLogger(__name__)

CONFIG_FILENAME = "baked.yaml"
DB_FILENAME = "site.db"
MANIFEST_FILENAME = "manifest.json"
OFFLINE_FILENAME = "offline.html"

DEFAULT_CONFIG = {
    "output_dir": "dist",
    "pages_dir": "pages",
    "assets_dir": "assets",
    "port": 4242,
    "cache_version": 1,
    "precache": [],
}

OFFLINE_PAGE = """<!DOCTYPE html>
<html>
  <head><meta charset="utf-8"><title>Offline</title></head>
  <body>
    <h1>You are offline</h1>
    <p>This page is not available offline. Reconnect and try again.</p>
  </body>
</html>
"""


class BuildError(Exception):
    """One or more pages failed to render.

    Attributes:
        failures: One RenderError per failed page.
        output_dir: Directory the (partial) site was written to.
    """

    def __init__(self, failures: list[RenderError], output_dir: Path):
        self.failures = failures
        self.output_dir = output_dir
        super().__init__(f"{len(failures)} page(s) failed to render")


@dataclass
class BuildResult:
    """Result of a site build operation.

    Attributes:
        pages: Slugs of every page written.
        output_dir: Directory where the site was built.
        site: Site metadata mapping.
        report: Loader counters.
    """

    pages: list[str]
    output_dir: Path
    site: dict[str, Any]
    report: LoadReport


def load_config(project_root: Path) -> dict[str, Any]:
    """Load site configuration from baked.yaml.

    Args:
        project_root: Root directory of the project.

    Returns:
        Dictionary containing configuration values, with defaults applied.
    """
    config_path = project_root / CONFIG_FILENAME
    config = DEFAULT_CONFIG.copy()
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
            if isinstance(loaded, dict):
                config.update(loaded)
            else:
                LOGGER.warning("Ignoring %s: not a mapping", config_path)
    return config


def cache_name(version: Any) -> str:
    """Name of the offline cache for a cache version."""
    return f"baked-v{version}"


def build_site(
    project_root: Path,
    include_drafts: bool = False,
    output_dir_override: Path | None = None,
) -> BuildResult:
    """Build the entire static site.

    Args:
        project_root: Root directory of the project.
        include_drafts: Whether to include pages marked ``draft`` or ``isDraft``.
        output_dir_override: Optional path to write the build output instead
            of config output_dir.

    Returns:
        BuildResult describing the written site.

    Raises:
        BuildError: If any page failed to render. The output is still
            written, with error pages in place of the failed ones.
    """
    config = load_config(project_root)
    output_dir = output_dir_override or (project_root / str(config["output_dir"]))
    work_dir = output_dir.with_name(output_dir.name + "-tmp")
    ensure_clean_dir(work_dir)

    conn = create_store(work_dir / DB_FILENAME)
    try:
        loader = ContentLoader(conn, work_dir)
        loader.load_assets(project_root / str(config["assets_dir"]))
        loader.load_pages(
            project_root / str(config["pages_dir"]), include_drafts=include_drafts
        )
        site = loader.load_site_metadata(project_root)
        LOGGER.info(
            "Loaded %d pages and %d assets (%d drafts skipped, %d errors)",
            loader.report.pages,
            loader.report.assets,
            loader.report.drafts,
            loader.report.errors,
        )

        baker = Baker(conn)
        slugs = baker.page_slugs()
        failures = _render_pages(baker, slugs, work_dir)
    finally:
        conn.close()

    _write_runtime_artifacts(work_dir, config, slugs)
    _replace_dir(work_dir, output_dir)

    if failures:
        raise BuildError(failures, output_dir)
    return BuildResult(
        pages=slugs, output_dir=output_dir, site=site, report=loader.report
    )


def _render_pages(baker: Baker, slugs: list[str], output_dir: Path) -> list[RenderError]:
    failures: list[RenderError] = []
    for slug in slugs:
        page = baker.get_page(slug)
        try:
            rendered = baker.render_page_strict(page)
        except RenderError as exc:
            LOGGER.error("Failed to render %s: %s", slug, exc.message)
            failures.append(exc)
            rendered = baker.error_page(exc)
        _write_page(output_dir, slug, rendered)
    return failures


def _write_page(output_dir: Path, slug: str, rendered: str) -> None:
    """Write a rendered page to ``<output>/<slug>.html``.

    Args:
        output_dir: Base output directory.
        slug: Page slug.
        rendered: Rendered HTML content.
    """
    html_path = output_dir / f"{slug}.html"
    html_path.parent.mkdir(parents=True, exist_ok=True)
    with open(html_path, "w", encoding="utf-8") as f:
        f.write(rendered)


def _write_runtime_artifacts(
    output_dir: Path, config: dict[str, Any], slugs: list[str]
) -> None:
    (output_dir / OFFLINE_FILENAME).write_text(OFFLINE_PAGE, encoding="utf-8")
    precache = [f"/{OFFLINE_FILENAME}"]
    if "index" in slugs:
        precache.insert(0, "/")
    for item in config.get("precache") or []:
        if str(item) not in precache:
            precache.append(str(item))
    manifest = {
        "version": str(config["cache_version"]),
        "cache_name": cache_name(config["cache_version"]),
        "db": DB_FILENAME,
        "db_sha256": file_digest(output_dir / DB_FILENAME),
        "precache": precache,
    }
    (output_dir / MANIFEST_FILENAME).write_text(
        json.dumps(manifest, indent=2) + "\n", encoding="utf-8"
    )


def _replace_dir(source: Path, target: Path) -> None:
    if target.exists():
        shutil.rmtree(target)
    os.replace(source, target)
