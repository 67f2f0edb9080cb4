"""Template engine for Baked.

Templates are Jinja2 templates stored as assets. They are compiled in a
sandboxed environment whose loader resolves ``extends``, ``include`` and
``import`` through Baker instead of the filesystem, so a template renders the
same way from the build's SQLite file and from the runtime's embedded copy.

Templates never see Baker itself. They get a ``page`` view, a ``baker`` view
with a fixed set of read operations, and the ``site`` mapping; every path they
pass in is validated again, and raw SQL is refused.

Key classes:
- EngineConfig: Filter and asset-processor tables for one engine.
- TemplateEngine: Compiles template assets and processes other assets.
- CompiledTemplate: Callable ``(page, baker, site) -> str``.
- PageView / BakerView: The restricted objects exposed to templates.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

import yaml
from jinja2 import BaseLoader, ChainableUndefined, Environment, Template
from jinja2.exceptions import SecurityError, TemplateNotFound
from jinja2.sandbox import ImmutableSandboxedEnvironment
from markupsafe import Markup

from .filters import DEFAULT_FILTERS, infer_asset_type
from .paths import InvalidPathError, validate_path
from .store import Asset, AssetType, Page

if TYPE_CHECKING:
    from .baker import Baker

LOGGER = logging.getLogger(__name__)

MAX_QUERY_LIMIT = 1000

Processor = Callable[[Asset, "TemplateEngine"], Any]


class ParentTemplateNotFound(TemplateNotFound):
    """Raised when a template extends or includes a template that is not stored."""

    def __init__(self, name: str):
        super().__init__(name, f"Parent template not found: {name}")


class TemplateSecurityError(SecurityError):
    """Raised when a template calls an operation it is not allowed to use."""


def _text(content: str | bytes) -> str:
    if isinstance(content, bytes):
        return content.decode("utf-8")
    return content


def passthrough(asset: Asset, engine: TemplateEngine) -> Any:
    """Return the asset's content unchanged."""
    return asset.content


def deserialize(asset: Asset, engine: TemplateEngine) -> Any:
    """Parse structured data. JSON documents are valid YAML."""
    return yaml.safe_load(_text(asset.content))


def compile_template(asset: Asset, engine: TemplateEngine) -> CompiledTemplate:
    return engine.compile(asset)


DEFAULT_PROCESSORS: Mapping[AssetType, Processor] = MappingProxyType(
    {
        AssetType.IMAGE: passthrough,
        AssetType.STYLESHEET: passthrough,
        AssetType.SCRIPT: passthrough,
        AssetType.OTHER: passthrough,
        AssetType.DATA: deserialize,
        AssetType.TEMPLATE: compile_template,
    }
)


@dataclass(frozen=True)
class EngineConfig:
    """Tables a TemplateEngine is built from.

    Attributes:
        filters: Filter name to callable, installed into the environment.
        processors: Handler for every AssetType.

    Raises:
        ValueError: If a processor table leaves an asset type unhandled.
    """

    filters: Mapping[str, Callable[..., Any]] = field(default_factory=lambda: DEFAULT_FILTERS)
    processors: Mapping[AssetType, Processor] = field(
        default_factory=lambda: DEFAULT_PROCESSORS
    )

    def __post_init__(self):
        missing = [t.value for t in AssetType if t not in self.processors]
        if missing:
            raise ValueError(f"No processor for asset types: {', '.join(missing)}")


class BakerLoader(BaseLoader):
    """Jinja2 loader that reads template assets through Baker."""

    def __init__(self, baker: Baker):
        self._baker = baker

    def get_source(self, environment: Environment, template: str):
        try:
            asset = self._baker.get_raw_asset(template, AssetType.TEMPLATE)
        except InvalidPathError as exc:
            raise ParentTemplateNotFound(template) from exc
        if asset is None:
            raise ParentTemplateNotFound(template)
        # Never reuse a cached parent: another Baker may hold another store.
        return _text(asset.content), asset.path, lambda: False


class PageView:
    """The page as templates see it.

    Attributes:
        title: Page title.
        content: Render-ready body, marked safe.
        data: Page metadata.
        path: Source path, validated.
        slug: Page slug.
        published_date: ISO date string or None.
    """

    def __init__(self, page: Page, baker: Baker):
        self._page = page
        self._baker = baker
        self.title = page.title or ""
        self.content = Markup(page.content or "")
        self.data = page.data or {}
        self.path = validate_path(page.path or "")
        self.slug = page.slug or ""
        self.published_date = page.published_date

    def prev_page(self) -> PageView | None:
        prev = self._baker.get_prev_page(self._page)
        return PageView(prev, self._baker) if prev else None

    def next_page(self) -> PageView | None:
        nxt = self._baker.get_next_page(self._page)
        return PageView(nxt, self._baker) if nxt else None

    def __repr__(self) -> str:
        return f"PageView({self.slug!r})"


def _limit(value: Any) -> int:
    return max(0, min(int(value), MAX_QUERY_LIMIT))


class BakerView:
    """The read operations templates may call."""

    def __init__(self, baker: Baker):
        self._baker = baker

    def get_asset(self, path: str, type: AssetType | str | None = None) -> Any:
        """Processed asset, except templates, which are only reachable by extends and include."""
        path = validate_path(path)
        asset = self._baker.get_asset(path, type or infer_asset_type(path))
        if isinstance(asset, CompiledTemplate):
            LOGGER.warning("Template asset %s is not available to templates", path)
            return None
        return asset

    def get_page(self, path: str) -> PageView | None:
        page = self._baker.get_page(validate_path(path))
        return PageView(page, self._baker) if page else None

    def get_latest_pages(
        self, limit: int = 10, offset: int = 0, category: str | None = None
    ) -> list[PageView]:
        pages = self._baker.get_latest_pages(_limit(limit), _limit(offset), category)
        return [PageView(p, self._baker) for p in pages]

    def search(self, query: str, limit: int = 10, offset: int = 0) -> list[PageView]:
        pages = self._baker.search(str(query), _limit(limit), _limit(offset))
        return [PageView(p, self._baker) for p in pages]

    def query(self, *args: Any, **kwargs: Any):
        raise TemplateSecurityError("Direct SQL queries are not allowed in templates")


class CompiledTemplate:
    """A compiled template asset.

    Calling it renders the template with the restricted context.
    """

    def __init__(self, name: str, template: Template):
        self.name = name
        self.template = template

    def __call__(self, page: Page, baker: Baker, site: Mapping[str, Any] | None) -> str:
        context = {
            "page": PageView(page, baker),
            "baker": BakerView(baker),
            "site": site or {},
        }
        LOGGER.debug("Rendering %s with %s", page.slug, self.name)
        return self.template.render(context).strip()

    def __repr__(self) -> str:
        return f"CompiledTemplate({self.name!r})"


class TemplateEngine:
    """Compiles template assets and dispatches other assets to processors.

    One engine belongs to one Baker; its loader resolves parents through that
    Baker only.

    Attributes:
        config: Filter and processor tables.
        env: Sandboxed Jinja2 environment.
    """

    def __init__(self, baker: Baker, config: EngineConfig | None = None):
        self.config = config or EngineConfig()
        self.env = ImmutableSandboxedEnvironment(
            loader=BakerLoader(baker),
            autoescape=True,
            undefined=ChainableUndefined,
            auto_reload=True,
        )
        self.env.filters.update(self.config.filters)
        self._compiled: dict[str, CompiledTemplate] = {}

    def process(self, asset: Asset) -> Any:
        """Turn a raw asset into its usable form.

        An asset whose recorded type is not an AssetType is returned as raw
        content with a warning.
        """
        try:
            asset_type = AssetType(asset.type)
        except ValueError:
            LOGGER.warning("No processor for asset type %r (%s)", asset.type, asset.path)
            return asset.content
        return self.config.processors[asset_type](asset, self)

    def compile(self, asset: Asset) -> CompiledTemplate:
        """Compile a template asset, reusing an earlier compile of the same path."""
        compiled = self._compiled.get(asset.path)
        if compiled is None:
            template = self.env.from_string(_text(asset.content))
            compiled = CompiledTemplate(asset.path, template)
            self._compiled[asset.path] = compiled
        return compiled
