"""
Feed curation feature package.

Predicts engagement for candidate items and assembles a scored,
diversity-constrained page of the viewer's feed.
"""
