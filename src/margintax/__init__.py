"""
Margintax: adaptive-margin consensus taxonomy for OTU/ASV BLAST hits.

Assigns each query sequence of a metabarcoding dataset a consensus
classification from its BLAST hits. Hits within the identity range of the
best matching taxon are weighted by evalue and summed rank by rank, a soft
lowest-common-ancestor estimate; slightly weaker hits are reported as
alternatives.
"""

__version__ = "0.1.0"
__author__ = "Margintax Team"

from margintax.core.pipeline import ClassificationPipeline, ClassificationResult
from margintax.models.config import ClassificationConfig
from margintax.models.taxonomy import ConsensusResult, TaxonomicPath

__all__ = [
    "ClassificationConfig",
    "ClassificationPipeline",
    "ClassificationResult",
    "ConsensusResult",
    "TaxonomicPath",
    "__version__",
]
