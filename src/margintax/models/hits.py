"""
Pydantic models for BLAST hits carrying taxonomy columns.

These models represent one row of BLAST tabular output extended with
query coverage, subject taxon id and scientific name, the input of the
consensus classifier.
"""

from __future__ import annotations

from enum import Enum
from typing import Self

from pydantic import BaseModel, Field, field_validator, model_validator

from margintax.core.constants import (
    HIT_COLUMNS,
    MISSING_SCINAME,
)


class MarginTag(str, Enum):
    """Inclusion of a hit relative to the best hit of its query."""

    UPPER = "upper"
    LOWER = "lower"
    EXCLUDED = "excluded"


class TaxonomyHit(BaseModel):
    """
    Single BLAST alignment hit with subject taxonomy.

    Attributes:
        qseqid: Query sequence identifier (OTU/ASV)
        sseqid: Subject sequence identifier
        pident: Percent identity (0-100)
        length: Alignment length in base pairs
        mismatch: Number of mismatches
        gapopen: Number of gap openings
        qstart: Start position in query
        qend: End position in query
        sstart: Start position in subject
        send: End position in subject
        evalue: Expectation value (lower is stronger)
        bitscore: Bit score
        qlen: Query sequence length
        qcovs: Query coverage per subject (0-100)
        staxid: Subject taxon id, kept as text ("N/A" when unknown)
        ssciname: Subject scientific name
    """

    qseqid: str = Field(description="Query sequence ID (OTU/ASV)")
    sseqid: str = Field(description="Subject sequence ID")
    pident: float = Field(ge=0, le=100, description="Percent identity (0-100)")
    length: int = Field(ge=0, description="Alignment length")
    mismatch: int = Field(ge=0, description="Number of mismatches")
    gapopen: int = Field(ge=0, description="Number of gap openings")
    qstart: int = Field(ge=1, description="Query start position")
    qend: int = Field(ge=1, description="Query end position")
    sstart: int = Field(ge=1, description="Subject start position")
    send: int = Field(ge=1, description="Subject end position")
    evalue: float = Field(ge=0, description="Expectation value")
    bitscore: float = Field(ge=0, description="Bit score")
    qlen: int = Field(ge=1, description="Query sequence length")
    qcovs: float = Field(ge=0, le=100, description="Query coverage per subject")
    staxid: str = Field(description="Subject taxon id")
    ssciname: str = Field(default=MISSING_SCINAME, description="Subject scientific name")

    model_config = {"frozen": True}

    @field_validator("staxid", mode="before")
    @classmethod
    def stringify_taxid(cls, v: object) -> object:
        """Accept integer taxon ids from numeric columns."""
        if isinstance(v, int):
            return str(v)
        if isinstance(v, str):
            return v.strip()
        return v

    @model_validator(mode="after")
    def validate_query_positions(self) -> Self:
        """Ensure query end >= query start after all fields are set."""
        if self.qend < self.qstart:
            msg = f"qend ({self.qend}) must be >= qstart ({self.qstart})"
            raise ValueError(msg)
        return self

    @classmethod
    def from_blast_line(cls, line: str) -> TaxonomyHit:
        """
        Parse a single line of the 16-column hit table.

        A 15-column line (no scientific name) is accepted and gets the
        placeholder name "NA".

        Raises:
            ValueError: If the line does not have 15 or 16 fields
            ValidationError: If a field cannot be converted or is out of range;
                the error location names the field
        """
        fields = line.rstrip("\n").split("\t")
        if len(fields) not in (len(HIT_COLUMNS) - 1, len(HIT_COLUMNS)):
            msg = f"Expected 15 or 16 fields in hit line, got {len(fields)}"
            raise ValueError(msg)

        return cls.model_validate(dict(zip(HIT_COLUMNS, fields, strict=False)))
