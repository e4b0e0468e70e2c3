"""
I/O utilities for DataFrame serialization.

Provides consistent handling of output formats (TSV/CSV/Parquet) across the codebase.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import Literal

import polars as pl

OutputFormat = Literal["tsv", "csv", "parquet"]

OUTPUT_FORMATS: tuple[str, ...] = ("tsv", "csv", "parquet")


def write_dataframe(
    df: pl.DataFrame,
    path: Path,
    output_format: OutputFormat = "tsv",
) -> None:
    """
    Write DataFrame to file in specified format.

    For Parquet output, uses zstd compression for optimal size/speed tradeoff.

    Args:
        df: Polars DataFrame to write.
        path: Output file path.
        output_format: Output format - 'tsv', 'csv' or 'parquet'.

    Example:
        >>> df = pl.DataFrame({"a": [1, 2, 3]})
        >>> write_dataframe(df, Path("classified.tsv"), "tsv")
    """
    if output_format == "parquet":
        df.write_parquet(path, compression="zstd")
    elif output_format == "csv":
        df.write_csv(path)
    else:
        df.write_csv(path, separator="\t", quote_style="never")


def write_id_list(ids: Iterable[str], path: Path) -> None:
    """Write one identifier per line, sorted."""
    path.write_text("".join(f"{i}\n" for i in sorted(ids)))


def write_empty_marker(path: Path) -> None:
    """Create an empty output file so downstream workflow steps see the failure."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("")


def infer_output_format(path: Path, default: OutputFormat = "tsv") -> OutputFormat:
    """Output format implied by a file extension, or ``default``."""
    suffix = path.suffix.lower().lstrip(".")
    if suffix in OUTPUT_FORMATS:
        return suffix  # type: ignore[return-value]
    return default
