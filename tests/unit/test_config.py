"""
Unit tests for configuration models.

Tests ClassificationConfig and ResolverConfig including
threshold validation, YAML serialization and CLI overrides.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from margintax.models.config import ClassificationConfig, ResolverConfig


class TestClassificationConfig:
    """Tests for ClassificationConfig model."""

    def test_default_values(self):
        """Default config should match the documented workflow defaults."""
        config = ClassificationConfig()

        assert config.lower_margin == 2.0
        assert config.excluded_names == ()
        assert config.min_query_coverage == 100.0
        assert config.evalue_floor == 1e-300
        assert config.drop_unresolved is False
        assert config.resolver.max_workers == 4

    def test_negative_lower_margin(self):
        with pytest.raises(ValidationError):
            ClassificationConfig(lower_margin=-0.5)

    def test_coverage_bounds(self):
        with pytest.raises(ValidationError):
            ClassificationConfig(min_query_coverage=0)
        with pytest.raises(ValidationError):
            ClassificationConfig(min_query_coverage=101)

    def test_evalue_floor_bounds(self):
        with pytest.raises(ValidationError):
            ClassificationConfig(evalue_floor=0.0)

    def test_excluded_names_from_string(self):
        """Should accept a single term as a string."""
        config = ClassificationConfig(excluded_names="uncultured")

        assert config.excluded_names == ("uncultured",)

    def test_excluded_names_stripped(self):
        """Should strip terms and drop empty ones."""
        config = ClassificationConfig(excluded_names=[" uncultured ", "", "environmental"])

        assert config.excluded_names == ("uncultured", "environmental")

    def test_zero_lower_margin_warns(self, caplog):
        with caplog.at_level("WARNING", logger="margintax"):
            ClassificationConfig(lower_margin=0)

        assert "lower_margin is 0" in caplog.text

    def test_frozen(self):
        config = ClassificationConfig()

        with pytest.raises(ValidationError):
            config.lower_margin = 5.0


class TestResolverConfig:
    """Tests for ResolverConfig model."""

    def test_worker_bounds(self):
        with pytest.raises(ValidationError):
            ResolverConfig(max_workers=0)
        with pytest.raises(ValidationError):
            ResolverConfig(max_workers=64)

    def test_backoff_at_least_one(self):
        with pytest.raises(ValidationError):
            ResolverConfig(retry_backoff=0.5)


class TestConfigYaml:
    """Tests for YAML loading and writing."""

    def test_round_trip(self, temp_dir: Path):
        """Should write and read back an identical configuration."""
        config = ClassificationConfig(
            lower_margin=3.0,
            excluded_names=["uncultured", "environmental"],
            drop_unresolved=True,
            resolver=ResolverConfig(max_workers=2, email="me@example.org"),
        )
        path = temp_dir / "margintax.yaml"

        config.to_yaml(path)
        loaded = ClassificationConfig.from_yaml(path)

        assert loaded == config

    def test_partial_file(self, temp_dir: Path):
        """Should fill keys missing from the file with defaults."""
        path = temp_dir / "margintax.yaml"
        path.write_text("lower_margin: 1.5\nresolver:\n  email: me@example.org\n")

        config = ClassificationConfig.from_yaml(path)

        assert config.lower_margin == 1.5
        assert config.resolver.email == "me@example.org"
        assert config.resolver.max_workers == 4
        assert config.excluded_names == ()

    def test_empty_file(self, temp_dir: Path):
        path = temp_dir / "margintax.yaml"
        path.write_text("")

        assert ClassificationConfig.from_yaml(path) == ClassificationConfig()

    def test_non_mapping(self, temp_dir: Path):
        path = temp_dir / "margintax.yaml"
        path.write_text("- 1\n- 2\n")

        with pytest.raises(ValueError, match="mapping"):
            ClassificationConfig.from_yaml(path)

    def test_yaml_str_lists_terms(self):
        text = ClassificationConfig(excluded_names=["uncultured"]).to_yaml_str()

        assert "excluded_names:\n- uncultured" in text


class TestConfigOverrides:
    """Tests for applying CLI overrides."""

    def test_none_values_ignored(self):
        config = ClassificationConfig(lower_margin=3.0)

        assert config.with_overrides(lower_margin=None, excluded_names=None) is config

    def test_overrides_applied(self):
        config = ClassificationConfig(lower_margin=3.0, excluded_names=["uncultured"])

        updated = config.with_overrides(lower_margin=1.0, excluded_names=["environmental"])

        assert updated.lower_margin == 1.0
        assert updated.excluded_names == ("environmental",)
        assert config.lower_margin == 3.0

    def test_resolver_overrides_merged(self):
        """Should update only the given resolver settings."""
        config = ClassificationConfig(resolver=ResolverConfig(timeout=10.0))

        updated = config.with_overrides(resolver={"max_workers": 8, "api_key": "KEY"})

        assert updated.resolver.max_workers == 8
        assert updated.resolver.api_key == "KEY"
        assert updated.resolver.timeout == 10.0

    def test_overrides_validated(self):
        with pytest.raises(ValidationError):
            ClassificationConfig().with_overrides(lower_margin=-1.0)
