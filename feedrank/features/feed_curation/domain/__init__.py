"""
Domain subpackage for feed curation.
"""
