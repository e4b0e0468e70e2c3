"""
Classification stages: adaptive-margin filtering and weighted consensus.
"""

from margintax.core.classification.consensus import (
    ConsensusScorer,
    ConsensusTables,
    evalue_weight_expr,
    format_identity,
)
from margintax.core.classification.filtering import FilterResult, HitFilter

__all__ = [
    "ConsensusScorer",
    "ConsensusTables",
    "FilterResult",
    "HitFilter",
    "evalue_weight_expr",
    "format_identity",
]
