"""catalogsync — Keeps a product record store and its search index in step."""

__version__ = "0.1.0"
