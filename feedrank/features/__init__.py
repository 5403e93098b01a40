"""
Feature slices. Each slice keeps its domain models, pipeline stages,
repositories and jobs co-located.
"""
