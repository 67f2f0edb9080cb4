"""Path validation for Baked.

Every name that reaches the content store from a caller or a template passes
through these helpers. They reject traversal attempts and normalize asset
names so lookups match the paths the loader stored.

Functions:
    validate_path: Reject traversal attempts and strip a leading slash.
    clean_asset_name: Normalize an asset name for a given asset type.
    is_safe_page_path: Check a page path before it is used in a query.
"""

from __future__ import annotations

import re
from pathlib import PurePosixPath

from .store import AssetType

DEFAULT_TEMPLATE_SUFFIX = ".html"

_UNSAFE_PAGE_CHARS_RE = re.compile(r"[<>\"']")


class InvalidPathError(ValueError):
    """Raised when a path tries to escape the content root or is malformed.

    Attributes:
        path: The rejected path.
    """

    def __init__(self, path: object, reason: str = "parent directory traversal"):
        self.path = path
        super().__init__(f"Invalid path {path!r}: {reason}")


def validate_path(path: str) -> str:
    """Reject any path containing ``..`` and strip one leading slash.

    Args:
        path: Caller-supplied path.

    Returns:
        The path without its leading slash.

    Raises:
        InvalidPathError: If the path is not a string or contains ``..``.

    Examples:
        >>> validate_path("/css/main.css")
        'css/main.css'
    """
    if not isinstance(path, str):
        raise InvalidPathError(path, "not a string")
    if ".." in path:
        raise InvalidPathError(path)
    return path[1:] if path.startswith("/") else path


def clean_asset_name(name: str, asset_type: AssetType | None = None) -> str:
    """Normalize an asset name before lookup.

    Strips a leading slash and a redundant type prefix such as
    ``templates/``, and gives template names without an extension the
    default ``.html`` suffix.

    Args:
        name: Asset name as supplied by the caller.
        asset_type: Type the caller is looking up, if known.

    Returns:
        The normalized asset path.

    Raises:
        InvalidPathError: If the name is empty or contains ``..``.

    Examples:
        >>> clean_asset_name("/templates/blog", AssetType.TEMPLATE)
        'blog.html'
    """
    name = validate_path(name)
    if asset_type is not None:
        for prefix in asset_type.prefixes:
            if name.startswith(prefix):
                name = name[len(prefix) :]
                break
    if not name:
        raise InvalidPathError(name, "empty asset name")
    if asset_type is AssetType.TEMPLATE and not PurePosixPath(name).suffix:
        name += DEFAULT_TEMPLATE_SUFFIX
    return name


def is_safe_page_path(path: object) -> bool:
    """Check a page path before it reaches the store.

    A page path must be a string without ``..`` and without any of
    ``< > " '``.
    """
    if not isinstance(path, str):
        return False
    if ".." in path:
        return False
    return _UNSAFE_PAGE_CHARS_RE.search(path) is None
