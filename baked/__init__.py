"""Baked site generator.

Baked loads a directory of pages and assets into a SQLite content store and
renders pages from that store. The same renderer runs at build time, writing
static HTML, and at run time inside a worker that serves pages on demand from
the shipped database file, even when offline.

Main modules:
- loading: Walks the source trees and fills the content store.
- baker: The render facade used by both the build and the runtime host.
- templates: Sandboxed Jinja2 engine that resolves templates through Baker.
- runtime: Worker, RPC client, block store and offline cache for run time.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
