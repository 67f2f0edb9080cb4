"""Mixers for Baked.

A mixer turns one source file plus the metadata inherited from its
directories into render-ready content and merged metadata. The loader picks a
mixer from an explicit table keyed by directory name, so each content
directory type has one processing rule.

Key classes:
- MixResult: Processed content and merged metadata.
- DefaultMixer: Passes content through unchanged.
- PageMixer: Parses front matter and converts markdown bodies to HTML.
- ImageMixer: Copies an image into the output and emits an ``<img>`` tag.
- MixerTable: Directory-name to mixer mapping handed to the loader.

Functions:
    extract_frontmatter: Split YAML front matter from a document body.
    render_markdown: Convert markdown to HTML with Pygments highlighting.
"""

from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any

import mistune
import yaml
from markupsafe import escape
from PIL import Image, UnidentifiedImageError
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

from .utils import is_markdown

LOGGER = logging.getLogger(__name__)

FRONTMATTER_RE = re.compile(r"^---\s*\n(.*?)\n---\s*(?:\n|$)", re.DOTALL)

IMAGES_URL_PREFIX = "/images/"
OPTIMIZABLE_IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".webp"}


def extract_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Extract YAML front matter from content.

    Malformed or non-mapping front matter is logged and treated as absent.

    Args:
        text: Raw file content.

    Returns:
        Tuple of (front matter dict, remaining content).
    """
    match = FRONTMATTER_RE.match(text)
    if not match:
        return {}, text
    try:
        data = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as exc:
        LOGGER.warning("Ignoring malformed front matter: %s", exc)
        return {}, text
    if not isinstance(data, dict):
        LOGGER.warning("Ignoring front matter that is not a mapping")
        return {}, text
    return data, text[match.end() :]


def _generate_heading_id(text: str) -> str:
    """Generate a URL-friendly ID from heading text."""
    slug = text.lower().strip()
    slug = re.sub(r"<[^>]+>", "", slug)
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[-\s]+", "-", slug)
    return slug.strip("-")


def _rewrite_image_path(src: str) -> str:
    """Point relative image sources at the flat output images directory.

    Examples:
        >>> _rewrite_image_path("photos/cat.png")
        '/images/cat.png'

        >>> _rewrite_image_path("https://cdn.example.com/cat.png")
        'https://cdn.example.com/cat.png'
    """
    if src.startswith(("http://", "https://", "//", "/", "data:")):
        return src
    return f"{IMAGES_URL_PREFIX}{PurePosixPath(src).name}"


class _HighlightRenderer(mistune.HTMLRenderer):
    """Markdown renderer with heading anchors, image rewriting and highlighting."""

    def __init__(self):
        super().__init__(escape=False)
        self._heading_id_counts: dict[str, int] = {}

    def heading(self, text: str, level: int, **attrs) -> str:
        base_id = _generate_heading_id(text)
        if base_id in self._heading_id_counts:
            self._heading_id_counts[base_id] += 1
            heading_id = f"{base_id}-{self._heading_id_counts[base_id]}"
        else:
            self._heading_id_counts[base_id] = 0
            heading_id = base_id
        return f'<h{level} id="{heading_id}">{text}</h{level}>\n'

    def image(self, text: str, url: str | None = None, title: str | None = None):
        return super().image(text, _rewrite_image_path(url or ""), title)

    def block_code(self, code: str, info: str | None = None) -> str:
        lang = (info or "").split()[0] if info else ""
        if lang:
            try:
                lexer = get_lexer_by_name(lang, stripall=True)
            except ClassNotFound:
                lexer = None
            if lexer is not None:
                return highlight(code, lexer, HtmlFormatter(cssclass="highlight"))
        escaped = escape(code)
        lang_class = f' class="language-{escape(lang)}"' if lang else ""
        return f"<pre><code{lang_class}>{escaped}</code></pre>\n"


def render_markdown(text: str) -> str:
    """Convert markdown to HTML.

    Args:
        text: Markdown source.

    Returns:
        Rendered HTML.
    """
    markdown = mistune.create_markdown(
        renderer=_HighlightRenderer(),
        plugins=["strikethrough", "footnotes", "table", "url"],
    )
    return markdown(text)


@dataclass
class MixResult:
    """Output of a mixer.

    Attributes:
        content: Processed content (text, or bytes for binary passthrough).
        data: Metadata after merging.
    """

    content: str | bytes
    data: dict[str, Any] = field(default_factory=dict)


class DefaultMixer:
    """Passes content through unchanged.

    Text that decodes as UTF-8 is returned as ``str``, anything else as bytes.
    """

    def mix(self, path: Path, raw: bytes, metadata: dict[str, Any]) -> MixResult:
        try:
            content: str | bytes = raw.decode("utf-8")
        except UnicodeDecodeError:
            content = raw
        return MixResult(content=content, data=dict(metadata))


class PageMixer:
    """Processes files in page directories.

    Front matter overrides inherited metadata. Markdown bodies are converted
    to HTML; other bodies are passed through.

    Raises:
        UnicodeDecodeError: If the file is not UTF-8 text.
    """

    def mix(self, path: Path, raw: bytes, metadata: dict[str, Any]) -> MixResult:
        text = raw.decode("utf-8")
        frontmatter, body = extract_frontmatter(text)
        data = {**metadata, **frontmatter}
        content = render_markdown(body) if is_markdown(path) else body
        return MixResult(content=content, data=data)


class ImageMixer:
    """Copies images into ``<output>/images`` and emits an ``<img>`` tag.

    Raster images are re-saved with Pillow's optimizer; anything Pillow
    cannot open is copied byte for byte.

    Attributes:
        output_dir: Build output directory.
    """

    def __init__(self, output_dir: Path):
        self.output_dir = output_dir

    @property
    def images_dir(self) -> Path:
        return self.output_dir / "images"

    def mix(self, path: Path, raw: bytes, metadata: dict[str, Any]) -> MixResult:
        self.images_dir.mkdir(parents=True, exist_ok=True)
        dest = self.images_dir / path.name
        if dest.exists():
            LOGGER.warning("Image %s overwrites %s from another directory", path, dest)
        self._write_image(path, dest)
        alt = metadata.get("alt") or path.name
        tag = f'<img src="{IMAGES_URL_PREFIX}{escape(path.name)}" alt="{escape(alt)}" />'
        return MixResult(content=tag, data=dict(metadata))

    def _write_image(self, source: Path, dest: Path) -> None:
        if source.suffix.lower() in OPTIMIZABLE_IMAGE_SUFFIXES:
            try:
                with Image.open(source) as img:
                    img.save(dest, optimize=True)
                return
            except (UnidentifiedImageError, OSError, ValueError) as exc:
                LOGGER.debug("Copying %s unoptimized: %s", source, exc)
        shutil.copy2(source, dest)


class MixerTable:
    """Maps directory names to mixers.

    A directory whose name is not in the table keeps the directory type of
    its parent, so everything below ``pages/`` is processed as pages until a
    directory such as ``images/`` switches the rule.

    Attributes:
        mixers: Directory-type name to mixer.
        default: Mixer for directory types without an entry.
    """

    PAGES = "pages"
    IMAGES = "images"

    def __init__(self, mixers: dict[str, Any], default: Any | None = None):
        self.mixers = dict(mixers)
        self.default = default or DefaultMixer()

    def directory_type(self, name: str, inherited: str) -> str:
        """Return the directory type for a directory called ``name``."""
        return name if name in self.mixers else inherited

    def get(self, directory_type: str):
        """Return the mixer for a directory type."""
        return self.mixers.get(directory_type, self.default)


def default_mixer_table(output_dir: Path) -> MixerTable:
    """Create the standard table: pages, images, everything else verbatim."""
    return MixerTable(
        {
            MixerTable.PAGES: PageMixer(),
            MixerTable.IMAGES: ImageMixer(output_dir),
        }
    )
