"""
Harvest - scheduled, branch-isolated scrape-and-publish pipeline.

A Run fetches raw artifacts from enumerated sources, aggregates them into a
deterministic dataset, publishes it to a destination store and merges the
result into a versioned main line, all inside a workspace that is deleted
when the Run ends.
"""

__version__ = "0.1.0"
