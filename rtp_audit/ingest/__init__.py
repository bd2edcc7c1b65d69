"""Round ingestion.

- ingestor: bounded batch loop that folds typed batch results and stops
  cleanly on the first failure, keeping everything collected so far
- http_supplier: thin httpx adapter to a gaming API spin endpoint
"""

__all__ = [
    'ingestor',
    'http_supplier',
]
