"""RTP Audit: Return-to-Player statistics & anomaly engine.

Consumes streams of game rounds, keeps single-pass statistics per scope
(overall, per game, per client), validates the cumulative RTP against
configured targets and records critical conditions in an anomaly log.
"""

__all__ = [
    'core',
    'ingest',
    'stats',
    'validation',
    'anomaly',
    'report',
    'engine',
    'sim',
]
