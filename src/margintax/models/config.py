"""
Pydantic configuration models for margintax.

These models define the margins, filters and weighting policy of the
consensus classifier and the settings of the taxonomy resolver.
Configuration can be loaded from YAML files or built from CLI arguments.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Self

from pydantic import BaseModel, Field, field_validator, model_validator

from margintax.core.constants import (
    DEFAULT_EVALUE_FLOOR,
    DEFAULT_LOWER_MARGIN,
    DEFAULT_MIN_QUERY_COVERAGE,
)

logger = logging.getLogger(__name__)


class ResolverConfig(BaseModel):
    """Configuration for taxon id resolution against NCBI Taxonomy."""

    max_workers: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Maximum concurrent taxonomy lookups",
    )
    timeout: float = Field(
        default=30.0,
        gt=0,
        description="Request timeout in seconds",
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        description="Retry attempts for transient failures before a taxid is unresolved",
    )
    retry_delay: float = Field(
        default=1.0,
        ge=0,
        description="Initial delay between retries in seconds",
    )
    retry_backoff: float = Field(
        default=2.0,
        ge=1.0,
        description="Exponential backoff multiplier for retries",
    )
    email: str | None = Field(
        default=None,
        description="Contact e-mail sent to NCBI E-utilities",
    )
    api_key: str | None = Field(
        default=None,
        description="NCBI API key (raises the rate limit from 3 to 10 requests/s)",
    )

    model_config = {"frozen": True}


class ClassificationConfig(BaseModel):
    """
    Configuration for adaptive-margin consensus classification.

    Margins:
        The upper margin is not configured: it is derived per query as the
        identity range of the best matching taxon. ``lower_margin`` sets the
        wider net of hits reported as alternatives (default 2 percentage
        points below the best hit).

    Filters:
        ``excluded_names`` removes hits whose scientific name contains any of
        the terms (case-insensitive), e.g. ["uncultured", "environmental"].
        The filter is skipped for a query when it would leave one hit or none.

    Weighting:
        Hits are weighted by 1/evalue. Evalues are clamped to
        ``evalue_floor`` so that BLAST's 0.0 evalues give finite weights.
    """

    lower_margin: float = Field(
        default=DEFAULT_LOWER_MARGIN,
        ge=0,
        le=100,
        description="Percentage points below the best hit for alternative hits",
    )
    excluded_names: tuple[str, ...] = Field(
        default=(),
        description="Scientific name substrings to exclude (case-insensitive)",
    )
    min_query_coverage: float = Field(
        default=DEFAULT_MIN_QUERY_COVERAGE,
        gt=0,
        le=100,
        description="Minimum query coverage (qcovs) for a hit to be classified",
    )
    evalue_floor: float = Field(
        default=DEFAULT_EVALUE_FLOOR,
        gt=0,
        lt=1,
        description="Evalues below this value are clamped to it before weighting",
    )
    drop_unresolved: bool = Field(
        default=False,
        description=(
            "Exclude hits whose taxid could not be resolved from scoring. "
            "By default they are scored with their own scientific name as species."
        ),
    )
    resolver: ResolverConfig = Field(
        default_factory=ResolverConfig,
        description="Taxonomy resolver settings",
    )

    model_config = {"frozen": True}

    @field_validator("excluded_names", mode="before")
    @classmethod
    def normalize_excluded_names(cls, v: Any) -> Any:
        """Accept a single string or any iterable; drop empty terms."""
        if v is None:
            return ()
        if isinstance(v, str):
            v = [v]
        return tuple(term.strip() for term in v if term and term.strip())

    @model_validator(mode="after")
    def warn_narrow_lower_margin(self) -> Self:
        if self.lower_margin == 0:
            logger.warning(
                "lower_margin is 0: only hits at the best identity will be reported"
            )
        return self

    @classmethod
    def from_yaml(cls, path: Path) -> ClassificationConfig:
        """
        Load configuration from a YAML file.

        Expected structure (all keys optional):

            lower_margin: 2.0
            excluded_names: [uncultured, environmental]
            min_query_coverage: 100
            evalue_floor: 1.0e-300
            drop_unresolved: false
            resolver:
              max_workers: 4
              timeout: 30
              max_retries: 3
              email: someone@example.org
        """
        import yaml

        raw = yaml.safe_load(path.read_text()) or {}
        if not isinstance(raw, dict):
            msg = f"Configuration file must contain a mapping: {path}"
            raise ValueError(msg)
        return cls.model_validate(raw)

    def to_yaml(self, path: Path) -> None:
        """Write configuration to a YAML file."""
        path.write_text(self.to_yaml_str())

    def to_yaml_str(self) -> str:
        import yaml

        data = self.model_dump(mode="json")
        data["excluded_names"] = list(self.excluded_names)
        return yaml.safe_dump(data, sort_keys=False)

    def with_overrides(self, **overrides: Any) -> ClassificationConfig:
        """Return a copy with the non-None overrides applied and validated."""
        updates = {k: v for k, v in overrides.items() if v is not None}
        if not updates:
            return self
        data = self.model_dump()
        resolver_updates = updates.pop("resolver", None)
        data.update(updates)
        if resolver_updates:
            data["resolver"] = {**data["resolver"], **resolver_updates}
        return ClassificationConfig.model_validate(data)
