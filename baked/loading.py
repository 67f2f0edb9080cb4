"""Content loading for Baked.

This module walks the page and asset trees of a project and fills the content
store. Directory metadata (``meta.yaml``) is inherited down the tree, each
file is processed by the mixer for its directory type, and a failure in one
file is logged and skipped so the rest of the load continues.

Key classes:
- LoadReport: Counters describing one load.
- ContentLoader: Fills a store from a project's pages, assets and site.yaml.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .mixers import MixerTable, default_mixer_table
from .store import (
    SITE_METADATA_PATH,
    AssetType,
    Page,
    insert_asset,
    insert_page,
)
from .utils import dump_metadata, slug_from_path, to_iso_date

LOGGER = logging.getLogger(__name__)

META_FILENAME = "meta.yaml"
DEFAULT_TEMPLATE = "default"


@dataclass
class LoadReport:
    """Counters for one loader pass.

    Attributes:
        pages: Pages inserted.
        assets: Assets inserted.
        drafts: Draft pages skipped.
        errors: Files that failed and were skipped.
    """

    pages: int = 0
    assets: int = 0
    drafts: int = 0
    errors: int = 0


def read_metadata_file(path: Path) -> dict[str, Any]:
    """Read a YAML metadata file, returning an empty mapping when unusable."""
    try:
        with open(path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
        LOGGER.warning("Ignoring unreadable metadata %s: %s", path, exc)
        return {}
    if not isinstance(loaded, dict):
        LOGGER.warning("Ignoring metadata %s: not a mapping", path)
        return {}
    return loaded


def _visible_entries(directory: Path) -> list[Path]:
    return sorted(p for p in directory.iterdir() if not p.name.startswith("."))


class ContentLoader:
    """Fills a content store from a project's source trees.

    Attributes:
        conn: Open store connection.
        output_dir: Build output directory (images are copied there).
        mixers: Directory-type to mixer table.
        report: Counters for everything loaded through this instance.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        output_dir: Path,
        mixers: MixerTable | None = None,
    ):
        self.conn = conn
        self.output_dir = output_dir
        self.mixers = mixers or default_mixer_table(output_dir)
        self.report = LoadReport()

    def load_pages(
        self,
        pages_dir: Path,
        include_drafts: bool = False,
        metadata: dict[str, Any] | None = None,
    ) -> LoadReport:
        """Walk the page tree and insert one page per file.

        Args:
            pages_dir: Content root.
            include_drafts: Whether pages marked ``draft`` or ``isDraft`` are loaded.
            metadata: Metadata inherited by the whole tree.

        Returns:
            The loader's cumulative report.
        """
        if not pages_dir.is_dir():
            LOGGER.warning("No pages directory at %s", pages_dir)
            return self.report
        self._walk_pages(
            pages_dir, pages_dir, dict(metadata or {}), MixerTable.PAGES, include_drafts
        )
        self.conn.commit()
        return self.report

    def _walk_pages(
        self,
        directory: Path,
        root: Path,
        inherited: dict[str, Any],
        dir_type: str,
        include_drafts: bool,
    ) -> None:
        metadata = dict(inherited)
        meta_path = directory / META_FILENAME
        if meta_path.is_file():
            metadata.update(read_metadata_file(meta_path))
        LOGGER.debug("Loading %s as %s with %s", directory, dir_type, metadata)

        for entry in _visible_entries(directory):
            if entry.is_dir():
                child_type = self.mixers.directory_type(entry.name, dir_type)
                self._walk_pages(entry, root, metadata, child_type, include_drafts)
            elif entry.name != META_FILENAME:
                try:
                    self._load_page(entry, root, metadata, dir_type, include_drafts)
                except Exception:
                    LOGGER.exception("Error processing %s", entry)
                    self.report.errors += 1

    def _load_page(
        self,
        path: Path,
        root: Path,
        metadata: dict[str, Any],
        dir_type: str,
        include_drafts: bool,
    ) -> None:
        result = self.mixers.get(dir_type).mix(path, path.read_bytes(), metadata)
        data = result.data
        if (data.get("draft") or data.get("isDraft")) and not include_drafts:
            LOGGER.info("Skipping draft %s", path)
            self.report.drafts += 1
            return
        if isinstance(result.content, bytes):
            raise ValueError("binary content cannot be stored as a page")

        rel = path.relative_to(root).as_posix()
        page = Page(
            path=rel,
            slug=slug_from_path(rel),
            title=str(data.get("title") or path.stem),
            content=result.content,
            template=str(data.get("template") or DEFAULT_TEMPLATE),
            data=data,
            published_date=to_iso_date(data.get("date")),
        )
        insert_page(self.conn, page)
        self.report.pages += 1
        LOGGER.debug("Loaded page %s", page.slug)

    def load_assets(self, assets_dir: Path) -> LoadReport:
        """Walk the asset tree and insert one asset per file.

        The type comes from the nearest enclosing directory with a known
        type name; the stored path is relative to that directory.

        Args:
            assets_dir: Root of the asset tree.

        Returns:
            The loader's cumulative report.
        """
        if not assets_dir.is_dir():
            LOGGER.warning("No assets directory at %s", assets_dir)
            return self.report
        for path in sorted(assets_dir.rglob("*")):
            rel_parts = path.relative_to(assets_dir).parts
            if path.is_dir() or any(part.startswith(".") for part in rel_parts):
                continue
            try:
                self._load_asset(path, assets_dir)
            except Exception:
                LOGGER.exception("Error loading asset %s", path)
                self.report.errors += 1
        self.conn.commit()
        return self.report

    def _load_asset(self, path: Path, assets_dir: Path) -> None:
        asset_type, type_dir = self._asset_type_for(path, assets_dir)
        rel = path.relative_to(type_dir).as_posix()
        mixer = self.mixers.get(
            MixerTable.IMAGES if asset_type is AssetType.IMAGE else asset_type.value
        )
        result = mixer.mix(path, path.read_bytes(), {})
        insert_asset(self.conn, rel, asset_type, result.content)
        self.report.assets += 1
        LOGGER.debug("Loaded asset %s as %s", rel, asset_type.value)

    @staticmethod
    def _asset_type_for(path: Path, assets_dir: Path) -> tuple[AssetType, Path]:
        directory = path.parent
        while directory != assets_dir:
            asset_type = AssetType.from_directory(directory.name)
            if asset_type is not AssetType.OTHER:
                return asset_type, directory
            directory = directory.parent
        return AssetType.OTHER, assets_dir

    def load_site_metadata(self, project_root: Path) -> dict[str, Any]:
        """Store ``site.yaml`` as the site metadata asset.

        Returns:
            The site metadata mapping (empty when the file is missing).
        """
        site_path = project_root / SITE_METADATA_PATH
        if site_path.is_file():
            site = read_metadata_file(site_path)
        else:
            LOGGER.warning("No %s found at %s", SITE_METADATA_PATH, project_root)
            site = {}
        insert_asset(self.conn, SITE_METADATA_PATH, AssetType.DATA, dump_metadata(site))
        self.conn.commit()
        return site
