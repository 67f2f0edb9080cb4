"""The Baker render facade.

Baker is the only component that touches the content store. The build host
and the runtime worker both create one Baker over their copy of the store and
use exactly the same methods to look up assets and pages and to render them.
The store may be a DB-API connection or a step-style embedded engine; Baker
wraps either behind one statement driver chosen at construction.

Key classes:
- Baker: Query and render API.
- RenderError: A page could not be rendered.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from functools import cached_property
from pathlib import PurePosixPath
from typing import Any

from markupsafe import escape

from .drivers import make_driver
from .paths import DEFAULT_TEMPLATE_SUFFIX, InvalidPathError, clean_asset_name, is_safe_page_path
from .store import SITE_METADATA_PATH, Asset, AssetType, Page
from .templates import CompiledTemplate, EngineConfig, TemplateEngine

LOGGER = logging.getLogger(__name__)

_PAGE_COLUMNS = "path, slug, title, content, template, data, published_date"

ERROR_PAGE = """<!DOCTYPE html>
<html>
  <head><meta charset="utf-8"><title>Error</title></head>
  <body>
    <h1>Error Rendering Page</h1>
    <p>Please try again later.</p>
    {detail}
  </body>
</html>
"""


class RenderError(Exception):
    """A page could not be rendered.

    Attributes:
        page_path: Source path of the page, when known.
        message: Human-readable reason.
    """

    def __init__(self, page_path: str, message: str):
        self.page_path = page_path
        self.message = message
        super().__init__(f"{page_path}: {message}")


def _escape_like(query: str) -> str:
    return query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class Baker:
    """Query and render API over one content store.

    Attributes:
        is_client: True when running inside the runtime host; error details
            are then left out of error pages.
        engine: Template engine bound to this Baker.
    """

    def __init__(self, db: Any, is_client: bool = False, config: EngineConfig | None = None):
        """Initialize Baker.

        Args:
            db: A DB-API connection or a step-style engine.
            is_client: Whether this Baker serves the runtime host.
            config: Filter and processor tables for the template engine.
        """
        self._driver = make_driver(db)
        self.is_client = is_client
        self.engine = TemplateEngine(self, config)

    @cached_property
    def site(self) -> dict[str, Any]:
        """Site metadata from the well-known ``site.yaml`` asset."""
        site = self.get_asset(SITE_METADATA_PATH, AssetType.DATA)
        return site if isinstance(site, dict) else {}

    def get_raw_asset(self, name: str, type: AssetType | str) -> Asset | None:
        """Look up an asset row without processing it.

        Args:
            name: Asset name; a leading slash, a redundant type prefix and a
                missing ``.html`` on template names are tolerated.
            type: Asset type, as an AssetType or a type/directory name.

        Returns:
            The asset, or None when it is not stored.

        Raises:
            InvalidPathError: If the name contains ``..``.
        """
        try:
            asset_type = AssetType.coerce(type)
        except ValueError:
            LOGGER.warning("Unknown asset type %r for %s", type, name)
            return None
        path = clean_asset_name(name, asset_type)
        row = self._driver.one(
            "SELECT path, type, content FROM assets WHERE path = ? AND type = ?",
            (path, asset_type.value),
        )
        if row is None:
            LOGGER.warning("Asset not found: %s (%s)", path, asset_type.value)
            if LOGGER.isEnabledFor(logging.DEBUG):
                inventory = self._driver.all("SELECT path, type FROM assets ORDER BY type, path")
                LOGGER.debug("Stored assets: %s", inventory)
            return None
        return Asset(path=row["path"], type=row["type"], content=row["content"])

    def get_asset(self, name: str, type: AssetType | str) -> Any:
        """Look up an asset and run it through its processor.

        Returns:
            The processed asset (a CompiledTemplate, parsed data, or raw
            content), or None when the asset is missing or the name invalid.
        """
        try:
            asset = self.get_raw_asset(name, type)
        except InvalidPathError as exc:
            LOGGER.warning("Rejected asset lookup: %s", exc)
            return None
        if asset is None:
            return None
        return self.engine.process(asset)

    def get_page(self, path: Any) -> Page | None:
        """Look up a page by slug.

        Returns None for non-strings and for paths containing ``..`` or any
        of ``< > " '``. A leading slash is ignored.
        """
        if not is_safe_page_path(path):
            LOGGER.debug("Rejected page lookup: %r", path)
            return None
        slug = path[1:] if path.startswith("/") else path
        row = self._driver.one(f"SELECT {_PAGE_COLUMNS} FROM pages WHERE slug = ?", (slug,))
        return Page.from_row(row) if row else None

    def page_slugs(self) -> list[str]:
        """Every page slug in the store."""
        return [row["slug"] for row in self._driver.all("SELECT slug FROM pages ORDER BY slug")]

    def render_page_strict(self, page: Page | None) -> str:
        """Render a page with its template.

        Raises:
            RenderError: If there is no template or rendering fails.
        """
        if page is None:
            raise RenderError("<missing>", "Cannot render a missing page")
        name = str((page.data or {}).get("template") or page.template or "")
        if not name:
            raise RenderError(page.path, "No template specified")
        if not PurePosixPath(name).suffix:
            name += DEFAULT_TEMPLATE_SUFFIX
        template = self.get_asset(name, AssetType.TEMPLATE)
        if not isinstance(template, CompiledTemplate):
            raise RenderError(page.path, f"Template not found: {name}")
        try:
            return template(page, self, self.site)
        except Exception as exc:
            raise RenderError(page.path, f"{type(exc).__name__}: {exc}") from exc

    def render_page(self, page: Page | None) -> str:
        """Render a page, turning any failure into an error page."""
        try:
            return self.render_page_strict(page)
        except RenderError as exc:
            LOGGER.error("Failed to render page %s", exc)
            return self.error_page(exc)

    def error_page(self, error: Exception) -> str:
        """Minimal error page; details only outside the runtime host."""
        detail = "" if self.is_client else f"<pre>{escape(str(error))}</pre>"
        return ERROR_PAGE.format(detail=detail)

    def _pages(self, sql: str, params: Sequence[Any]) -> list[Page]:
        return [Page.from_row(row) for row in self._driver.all(sql, params)]

    def get_latest_pages(
        self, limit: int = 10, offset: int = 0, category: str | None = None
    ) -> list[Page]:
        """Dated pages, newest first, optionally limited to one category."""
        if isinstance(category, str):
            return self._pages(
                f"""
                SELECT {_PAGE_COLUMNS} FROM pages
                WHERE published_date IS NOT NULL
                AND json_extract(data, '$.category') = ?
                ORDER BY published_date DESC, slug
                LIMIT ? OFFSET ?
                """,
                (category, int(limit), int(offset)),
            )
        return self._pages(
            f"""
            SELECT {_PAGE_COLUMNS} FROM pages
            WHERE published_date IS NOT NULL
            ORDER BY published_date DESC, slug
            LIMIT ? OFFSET ?
            """,
            (int(limit), int(offset)),
        )

    def get_prev_page(self, page: Page) -> Page | None:
        """The page published most recently before ``page``."""
        if not page or not page.published_date:
            return None
        row = self._driver.one(
            f"""
            SELECT {_PAGE_COLUMNS} FROM pages
            WHERE published_date IS NOT NULL AND published_date < ?
            ORDER BY published_date DESC, slug
            LIMIT 1
            """,
            (page.published_date,),
        )
        return Page.from_row(row) if row else None

    def get_next_page(self, page: Page) -> Page | None:
        """The page published soonest after ``page``."""
        if not page or not page.published_date:
            return None
        row = self._driver.one(
            f"""
            SELECT {_PAGE_COLUMNS} FROM pages
            WHERE published_date IS NOT NULL AND published_date > ?
            ORDER BY published_date ASC, slug
            LIMIT 1
            """,
            (page.published_date,),
        )
        return Page.from_row(row) if row else None

    def search(self, query: str, limit: int = 10, offset: int = 0) -> list[Page]:
        """Substring search over titles and content.

        Matching uses SQLite ``LIKE``, which folds case for ASCII letters only:
        ``"CAFé"`` finds ``"Café"`` but ``"CAFÉ"`` does not.
        """
        pattern = f"%{_escape_like(str(query))}%"
        return self._pages(
            f"""
            SELECT {_PAGE_COLUMNS} FROM pages
            WHERE title LIKE ? ESCAPE '\\' OR content LIKE ? ESCAPE '\\'
            ORDER BY published_date DESC, slug
            LIMIT ? OFFSET ?
            """,
            (pattern, pattern, int(limit), int(offset)),
        )

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Run raw SQL. For trusted callers only; templates cannot reach it."""
        return self._driver.all(sql, params)
