"""
API clients for external services.

Provides the NCBI Taxonomy client used to resolve taxon ids.
"""

from margintax.clients.ncbi import NCBITaxonomyClient, parse_taxonomy_xml

__all__ = [
    "NCBITaxonomyClient",
    "parse_taxonomy_xml",
]
