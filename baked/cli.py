"""The ``bake`` command line.

Commands:
- new: Copy the starter project and write its site.yaml.
- build: Load the sources into site.db and render every page.
- serve: Serve the build with live reload, or render on demand with --runtime.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Any

import click
import questionary
import yaml

from . import __version__
from .store import SITE_METADATA_PATH

# Path to the project skeleton copied by `bake new`
_SKELETON_DIR = Path(__file__).parent / "skeleton"

SITE_DEFAULTS = {
    "title": "My Baked Site",
    "description": "A site baked into a database",
    "author": "",
}


@click.group()
@click.version_option(version=__version__, prog_name="bake")
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging")
def cli(verbose: bool):
    """Baked site generator."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.argument("dest")
@click.option("--no-input", is_flag=True, help="Use default site values without prompting")
def new(dest: str, no_input: bool):
    """Scaffold a new Baked project."""
    target = Path(dest).resolve()
    if target.exists() and any(target.iterdir()):
        raise click.ClickException(
            f"Refusing to initialize into non-empty directory: {target}"
        )
    site = dict(SITE_DEFAULTS) if no_input else _prompt_site_values(target.name)
    _scaffold(target, site)
    click.echo(f"New Baked site created at {target}")


@cli.command()
@click.option("--drafts", is_flag=True, help="Include draft content")
def build(drafts: bool):
    """Render every page into the output directory."""
    project_root = Path.cwd()
    from .build import BuildError, build_site

    try:
        result = build_site(project_root, include_drafts=drafts)
    except BuildError as exc:
        click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
        click.echo(
            click.style(f"  {len(exc.failures)} page(s) failed to render", fg="yellow"),
            err=True,
        )
        for failure in exc.failures:
            click.echo(click.style(f"  {failure.page_path}: {failure.message}", fg="white"), err=True)
        raise SystemExit(1) from None
    click.echo(f"Built {len(result.pages)} pages into {result.output_dir}")


@cli.command()
@click.option("--drafts", is_flag=True, help="Include draft content")
@click.option(
    "--port",
    type=int,
    required=False,
    help="Port to run the dev server (overrides baked.yaml)",
)
@click.option(
    "--ws-port",
    type=int,
    required=False,
    help="Port for the live reload websocket server",
)
@click.option(
    "--runtime",
    is_flag=True,
    help="Render pages on demand from site.db through the runtime host",
)
def serve(drafts: bool, port: int | None, ws_port: int | None, runtime: bool):
    """Serve the site locally."""
    project_root = Path.cwd()
    if runtime:
        from .server import RuntimeServer

        RuntimeServer(project_root, http_port=port).start(include_drafts=drafts)
        return

    from .server import DevServer

    server = DevServer(project_root, http_port=port, ws_port=ws_port)
    server.start(include_drafts=drafts)


def _prompt_site_values(default_title: str) -> dict[str, Any]:
    """Ask for the site metadata written to site.yaml."""
    title = questionary.text(
        "Site title:",
        default=default_title.replace("-", " ").replace("_", " ").title(),
        validate=lambda x: len(x.strip()) > 0 or "Title cannot be empty",
        style=_questionary_style(),
    ).ask()
    if title is None:
        raise click.Abort()

    description = questionary.text(
        "Description:",
        default=SITE_DEFAULTS["description"],
        style=_questionary_style(),
    ).ask()
    if description is None:
        raise click.Abort()

    author = questionary.text("Author:", style=_questionary_style()).ask()
    if author is None:
        raise click.Abort()

    return {"title": title.strip(), "description": description.strip(), "author": author.strip()}


def _questionary_style():
    """Return consistent questionary style."""
    return questionary.Style(
        [
            ("qmark", "fg:cyan bold"),
            ("question", "bold"),
            ("answer", "fg:cyan"),
            ("pointer", "fg:cyan bold"),
            ("highlighted", "fg:cyan bold"),
            ("selected", "fg:cyan"),
        ]
    )


def main():
    """Console script entry point."""
    cli()


def _scaffold(root: Path, site: dict[str, Any]) -> None:
    """Create the directory structure and files for a new Baked project.

    Args:
        root: Root directory for the new project.
        site: Values for the project's site.yaml.
    """
    for src_path in _SKELETON_DIR.rglob("*"):
        if src_path.is_dir():
            continue
        rel_path = src_path.relative_to(_SKELETON_DIR)
        dest_path = root / rel_path
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src_path, dest_path)

    site_path = root / SITE_METADATA_PATH
    existing: dict[str, Any] = {}
    if site_path.exists():
        existing = yaml.safe_load(site_path.read_text(encoding="utf-8")) or {}
    existing.update(site)
    site_path.write_text(
        yaml.safe_dump(existing, sort_keys=False, allow_unicode=True), encoding="utf-8"
    )
