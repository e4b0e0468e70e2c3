"""
Constants used throughout the margintax package.

Centralizes column layouts, rank names, sentinels and default values
to keep parsers, classifiers and writers consistent.
"""

from __future__ import annotations

# =============================================================================
# BLAST Hit Table Layout
# =============================================================================

# Column order of the tabular BLAST output consumed by the classifier:
#   -outfmt "6 qseqid sseqid pident length mismatch gapopen qstart qend
#            sstart send evalue bitscore qlen qcovs staxid ssciname"
HIT_COLUMNS: tuple[str, ...] = (
    "qseqid",
    "sseqid",
    "pident",
    "length",
    "mismatch",
    "gapopen",
    "qstart",
    "qend",
    "sstart",
    "send",
    "evalue",
    "bitscore",
    "qlen",
    "qcovs",
    "staxid",
    "ssciname",
)

# Databases without scientific names (nt/BOLD subsets) give 15 columns
HIT_COLUMNS_NO_SCINAME: tuple[str, ...] = HIT_COLUMNS[:-1]

# Placeholder used when the hit table carries no scientific names
MISSING_SCINAME = "NA"

# Taxon ids that BLAST reports when a subject has no taxonomy
INVALID_TAXIDS: frozenset[str] = frozenset({"N/A", "NA", ""})

# =============================================================================
# Taxonomy
# =============================================================================

# Ranks from coarse to fine. Consensus ties are broken left to right.
RANKS: tuple[str, ...] = (
    "kingdom",
    "phylum",
    "class",
    "order",
    "family",
    "genus",
    "species",
)

# Column names of the per-rank consensus scores, coarse to fine
SCORE_COLUMNS: tuple[str, ...] = tuple(f"{rank}_score" for rank in RANKS)

# Value stored for a rank that the taxonomy lookup did not provide
UNRESOLVED = "unresolved"

# =============================================================================
# Classification Defaults
# =============================================================================

# Margin (percentage points below the best hit) for hits reported as alternatives
DEFAULT_LOWER_MARGIN = 2.0

# Hits must cover the whole query to enter classification
DEFAULT_MIN_QUERY_COVERAGE = 100.0

# Zero evalues are clamped to this value before weighting
DEFAULT_EVALUE_FLOOR = 1e-300

# Weights of a query's scoring hits sum to this value
WEIGHT_TOTAL = 100.0

# Slack for identity threshold comparisons (pident is reported with 3 decimals)
IDENTITY_TOLERANCE = 1e-9

# =============================================================================
# NCBI E-utilities
# =============================================================================

NCBI_EUTILS_BASE = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils"

# Requests per second allowed by NCBI without / with an API key
NCBI_RATE_LIMIT = 3.0
NCBI_RATE_LIMIT_WITH_KEY = 10.0
