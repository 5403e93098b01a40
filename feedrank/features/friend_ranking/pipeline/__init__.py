"""
Pipeline components for friend ranking.

Aggregation feeds scoring, scoring feeds suggestions. Subpackages expose
the primary services that the recompute job uses.
"""

__all__ = ["aggregation", "scoring", "suggestions"]
