"""
Curation package: item scoring, diversity selection, rebalancing and paging.
"""

from .service import CurationAssembler, curation_assembler

__all__ = ["CurationAssembler", "curation_assembler"]
