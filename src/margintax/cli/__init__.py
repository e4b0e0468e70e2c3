"""
CLI commands for margintax.

Provides command-line interface for consensus classification and
offline lineage table building.
"""

__all__ = ["assign", "lineage", "main"]
