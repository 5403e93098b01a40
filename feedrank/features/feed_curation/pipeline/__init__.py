"""
Pipeline components for feed curation.
"""

__all__ = ["prediction", "curation"]
