"""
Friend ranking feature package.

Aggregates interactions per (viewer, connection) pair, scores closeness,
and proposes rank changes against the viewer's manual ordering.
"""
