"""
Custom exceptions with actionable guidance.

Provides specific error types for common failure scenarios,
each with helpful suggestions for resolution.
"""

from __future__ import annotations


class MargintaxError(Exception):
    """Base exception for margintax errors."""

    def __init__(self, message: str, suggestion: str | None = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(self.full_message)

    @property
    def full_message(self) -> str:
        if self.suggestion:
            return f"{self.message}\n\nSuggestion: {self.suggestion}"
        return self.message


class HitTableError(MargintaxError):
    """Base class for BLAST hit table errors."""



class EmptyHitTableError(HitTableError):
    """Raised when the hit table is empty or has no data lines."""

    def __init__(self, path: str):
        super().__init__(
            message=f"Hit table is empty or contains no alignments: {path}",
            suggestion=(
                "Check that the BLAST search completed successfully and wrote "
                "tabular output (-outfmt 6) including qcovs, staxid and ssciname."
            ),
        )
        self.path = path


class MalformedHitTableError(HitTableError):
    """Raised when the hit table does not follow the expected layout."""

    def __init__(
        self,
        path: str,
        line_num: int,
        detail: str,
        field: str | None = None,
    ):
        location = f"line {line_num}"
        if field:
            location += f", field '{field}'"
        super().__init__(
            message=f"Malformed hit table '{path}' at {location}: {detail}",
            suggestion=(
                "The hit table must be tab-separated with 16 columns:\n"
                "  qseqid sseqid pident length mismatch gapopen qstart qend "
                "sstart send evalue bitscore qlen qcovs staxid ssciname\n\n"
                "Run BLAST with -outfmt \"6 qseqid sseqid pident length mismatch "
                "gapopen qstart qend sstart send evalue bitscore qlen qcovs staxid "
                "ssciname\"."
            ),
        )
        self.path = path
        self.line_num = line_num
        self.field = field


class NoFullCoverageError(HitTableError):
    """Raised when no hit reaches the required query coverage."""

    def __init__(self, min_coverage: float, max_observed: float | None):
        observed = "none" if max_observed is None else f"{max_observed:g}%"
        super().__init__(
            message=(
                f"Query coverage is less than {min_coverage:g}% for all hits "
                f"(highest observed: {observed})"
            ),
            suggestion=(
                "No query can be classified with the adaptive margin. Check that "
                "the BLAST output includes the qcovs column and that the database "
                "contains full-length reference sequences for the marker."
            ),
        )
        self.min_coverage = min_coverage
        self.max_observed = max_observed


class RemapTableError(MargintaxError):
    """Raised when the merged taxon id table cannot be loaded."""

    def __init__(self, path: str, detail: str):
        super().__init__(
            message=f"Cannot load taxon id remap table '{path}': {detail}",
            suggestion=(
                "Provide either a table with the header 'OldTaxID NewTaxID' or the "
                "NCBI taxdump merged.dmp file (old_taxid | new_taxid |)."
            ),
        )
        self.path = path


class TaxonomyLookupError(MargintaxError):
    """Raised when a taxonomy source cannot answer a lookup."""

    def __init__(
        self,
        taxon_id: str,
        detail: str,
        status_code: int | None = None,
    ):
        self.taxon_id = taxon_id
        self.status_code = status_code
        suggestion = "Check your internet connection and try again."
        if status_code == 429:
            suggestion = (
                "Rate limited. Lower --threads or provide an NCBI API key "
                "(--api-key) to raise the request limit."
            )
        elif status_code and status_code >= 500:
            suggestion = "NCBI server error. Try again later."
        super().__init__(
            message=f"Taxonomy lookup failed for taxid {taxon_id}: {detail}",
            suggestion=suggestion,
        )


class ConfigurationError(MargintaxError):
    """Raised when configuration is invalid."""



class InvalidThresholdError(ConfigurationError):
    """Raised when a threshold parameter is out of valid range."""

    def __init__(self, param_name: str, value: float, min_val: float, max_val: float):
        super().__init__(
            message=f"{param_name} = {value} is out of valid range [{min_val}, {max_val}]",
            suggestion=f"Set {param_name} to a value between {min_val} and {max_val}.",
        )
