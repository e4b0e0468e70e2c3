"""
Pydantic models for resolved taxonomy and consensus results.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from margintax.core.constants import RANKS, UNRESOLVED


class TaxonomicPath(BaseModel):
    """
    Full taxonomic path of a taxon, kingdom to species.

    Ranks the taxonomy does not provide hold "unresolved". The class rank
    is stored as ``class_`` because ``class`` is a reserved word; it is
    read and written under the name "class".
    """

    kingdom: str = UNRESOLVED
    phylum: str = UNRESOLVED
    class_: str = Field(default=UNRESOLVED, alias="class")
    order: str = UNRESOLVED
    family: str = UNRESOLVED
    genus: str = UNRESOLVED
    species: str = UNRESOLVED

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @field_validator("*", mode="before")
    @classmethod
    def fill_missing(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return UNRESOLVED
        return v

    @classmethod
    def from_ranks(cls, ranks: dict[str, str | None]) -> TaxonomicPath:
        """Build a path from a rank -> name mapping, ignoring other ranks."""
        return cls.model_validate({rank: ranks.get(rank) for rank in RANKS})

    def as_dict(self) -> dict[str, str]:
        """Rank -> name mapping in coarse-to-fine order."""
        return self.model_dump(by_alias=True)

    def as_tuple(self) -> tuple[str, ...]:
        return tuple(self.as_dict()[rank] for rank in RANKS)


class RemapRecord(BaseModel):
    """Audit record of a hit whose taxon id was replaced by its current id."""

    qseqid: str
    old_taxid: str
    new_taxid: str

    model_config = {"frozen": True}


class ConsensusResult(BaseModel):
    """
    Consensus classification of one query.

    Attributes:
        qseqid: Query sequence identifier
        path: Winning taxonomic path
        scores: Rank name -> summed weight supporting the winning value (0-100)
        alternatives: Distinct "species, identity" pairs from upper and lower
            hits, highest identity first
    """

    qseqid: str
    path: TaxonomicPath
    scores: dict[str, float]
    alternatives: str = ""

    model_config = {"frozen": True}

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ConsensusResult:
        """Build from one row of the classification table."""
        return cls(
            qseqid=row["qseqid"],
            path=TaxonomicPath.from_ranks({rank: row.get(rank) for rank in RANKS}),
            scores={rank: float(row[f"{rank}_score"]) for rank in RANKS},
            alternatives=row.get("alternatives") or "",
        )
