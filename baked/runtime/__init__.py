"""Run-time host for Baked sites.

The runtime serves pages on demand from a built ``site.db``. A worker thread
owns the Baker and the embedded database, the RPC client talks to it only by
message passing, and the offline cache answers navigations when the worker or
network cannot.
"""
