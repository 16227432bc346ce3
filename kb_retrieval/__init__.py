"""
Knowledge-base retrieval core.
Embedding-indexed retrieval with metadata filtering, audience boosting and an external search fallback.
"""

from .core.config import VERSION as __version__
