"""Default template filters for Baked.

Filters are small text transforms available inside template expressions.
The ones that touch assets read them through the ``baker`` object of the
render context, which is the restricted view templates receive, so a filter
can never reach the store directly.

The filter table is passed to the template engine through ``EngineConfig``;
there is no global registry.
"""

from __future__ import annotations

import re
from datetime import datetime
from pathlib import PurePosixPath
from types import MappingProxyType
from typing import Any

from jinja2 import pass_context
from jinja2.runtime import Context
from markupsafe import Markup, escape

from .mixers import IMAGES_URL_PREFIX
from .paths import validate_path
from .store import AssetType

DEFAULT_DATE_FORMAT = "%B %d, %Y"

_CLOSING_STYLE_RE = re.compile(r"</style", re.IGNORECASE)

_SUFFIX_TYPES = {
    ".css": AssetType.STYLESHEET,
    ".js": AssetType.SCRIPT,
    ".mjs": AssetType.SCRIPT,
    ".json": AssetType.DATA,
    ".yaml": AssetType.DATA,
    ".yml": AssetType.DATA,
    ".html": AssetType.TEMPLATE,
    ".jinja": AssetType.TEMPLATE,
    ".png": AssetType.IMAGE,
    ".jpg": AssetType.IMAGE,
    ".jpeg": AssetType.IMAGE,
    ".gif": AssetType.IMAGE,
    ".svg": AssetType.IMAGE,
    ".webp": AssetType.IMAGE,
}


def infer_asset_type(path: str) -> AssetType:
    """Guess an asset type from a file extension.

    Examples:
        >>> infer_asset_type("main.css")
        <AssetType.STYLESHEET: 'stylesheet'>
    """
    return _SUFFIX_TYPES.get(PurePosixPath(path).suffix.lower(), AssetType.OTHER)


def _as_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def date_filter(value: Any, format: str = DEFAULT_DATE_FORMAT) -> str:
    """Format an ISO date string (or date object) with ``strftime``.

    Values that do not parse as ISO dates are returned unchanged.
    """
    if not value:
        return ""
    if isinstance(value, datetime):
        parsed = value
    elif hasattr(value, "strftime"):
        return value.strftime(format)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return str(value)
    return parsed.strftime(format)


@pass_context
def asset_filter(context: Context, path: str, type: str | None = None) -> Any:
    """Look up an asset, inferring its type from the extension if not given."""
    baker = context.get("baker")
    if baker is None:
        return None
    return baker.get_asset(path, type or infer_asset_type(path))


@pass_context
def image_filter(
    context: Context,
    path: str,
    title: str = "",
    max_width: Any = None,
    max_height: Any = None,
) -> Markup | str:
    """Render an ``<img>`` tag for an image asset, or ``""`` if it is missing."""
    baker = context.get("baker")
    if baker is None or baker.get_asset(path, AssetType.IMAGE) is None:
        return ""
    name = PurePosixPath(validate_path(path)).name
    styles = []
    for prop, size in (("max-width", max_width), ("max-height", max_height)):
        if size:
            size = f"{size}px" if isinstance(size, int) else str(size)
            styles.append(f"{prop}: {size}")
    style_attr = f' style="{escape("; ".join(styles))}"' if styles else ""
    return Markup(
        f'<img src="{escape(IMAGES_URL_PREFIX + name)}" alt="{escape(title)}"{style_attr} />'
    )


@pass_context
def css_filter(context: Context, path: str) -> Markup | str:
    """Inline a stylesheet asset inside a ``<style>`` element.

    Any ``</style`` inside the stylesheet is written as ``<\\/style`` so the
    content cannot close the element early.
    """
    baker = context.get("baker")
    style = baker.get_asset(path, AssetType.STYLESHEET) if baker is not None else None
    if not style:
        return ""
    escaped = _CLOSING_STYLE_RE.sub(r"<\\/style", _as_text(style))
    return Markup(f"<style>{escaped}</style>")


DEFAULT_FILTERS = MappingProxyType(
    {
        "date": date_filter,
        "asset": asset_filter,
        "image": image_filter,
        "css": css_filter,
    }
)
