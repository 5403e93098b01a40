"""
Domain subpackage for friend ranking: tallies, score records, suggestions,
and the validated scoring profile.
"""
