"""
Self-update tool for deployed projects.

This package updates a project from its version control remote: it detects
pending upstream changes, swaps the web roots to a maintenance stub, pulls the
changes, installs dependencies, flushes caches, clears temporary directories
and reports the outcome by email. Runs are serialized by a host-local mutex.
"""

__version__ = "0.1.0"
