# backend/indexnow/__init__.py
"""IndexNow - multi-tenant URL indexing pipeline."""

__version__ = "1.0.0"
__title__ = "IndexNow API"
__description__ = "Submit URL batches to the search indexing API under per-account quotas"
