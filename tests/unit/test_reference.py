"""
Unit tests for the secret reference model.

Tests cover SecretSource, SecretReference validation, SecretsManifest
insertion and serialization, and the in-memory ResolvedSecrets store.
"""

from __future__ import annotations

import json
import os
import pickle

import pytest

from secretmap.secrets import (
    DuplicateNameError,
    EmptyNameError,
    InvalidEncodingError,
    InvalidNameError,
    InvalidSourceError,
    InvalidTypeError,
    MissingKeyError,
    ResolvedSecret,
    ResolvedSecrets,
    SecretEncoding,
    SecretReference,
    SecretSource,
    SecretsManifest,
    SecretType,
    SecretValidationError,
    get_masking_filter,
    is_valid_secret_name,
    register_secret_value,
)


# =============================================================================
# SecretSource
# =============================================================================


class TestSecretSource:
    """Tests for the SecretSource enum."""

    def test_source_values(self):
        """Test sources serialize to their wire names."""
        assert SecretSource.MANUAL.value == "manual"
        assert SecretSource.AWS_SECRETS_MANAGER.value == "aws-secrets-manager"
        assert SecretSource.GCP_SECRET_MANAGER.value == "gcp-secret-manager"
        assert SecretSource.AZURE_KEY_VAULT.value == "azure-key-vault"
        assert SecretSource.HASHICORP_VAULT.value == "hashicorp-vault"
        assert str(SecretSource.ENV) == "env"

    def test_cloud_providers(self):
        """Test only the three managed cloud stores count as cloud providers."""
        assert SecretSource.AWS_SECRETS_MANAGER.is_cloud_provider()
        assert SecretSource.GCP_SECRET_MANAGER.is_cloud_provider()
        assert SecretSource.AZURE_KEY_VAULT.is_cloud_provider()
        assert not SecretSource.HASHICORP_VAULT.is_cloud_provider()
        assert not SecretSource.MANUAL.is_cloud_provider()
        assert not SecretSource.FILE.is_cloud_provider()

    def test_requires_credentials(self):
        """Test local sources need no credentials."""
        assert not SecretSource.MANUAL.requires_credentials()
        assert not SecretSource.ENV.requires_credentials()
        assert not SecretSource.FILE.requires_credentials()
        assert SecretSource.HASHICORP_VAULT.requires_credentials()

    def test_is_valid(self):
        """Test validity check accepts members and their values."""
        assert SecretSource.is_valid(SecretSource.FILE)
        assert SecretSource.is_valid("azure-key-vault")
        assert not SecretSource.is_valid("s3")
        assert not SecretSource.is_valid(None)


# =============================================================================
# SecretReference
# =============================================================================


class TestSecretReference:
    """Tests for SecretReference."""

    def test_valid_names(self):
        """Test the name pattern."""
        assert is_valid_secret_name("DB_PASSWORD")
        assert is_valid_secret_name("A")
        assert is_valid_secret_name("API2_KEY")
        assert not is_valid_secret_name("db_password")
        assert not is_valid_secret_name("1_KEY")
        assert not is_valid_secret_name("_KEY")
        assert not is_valid_secret_name("DB-PASSWORD")
        assert not is_valid_secret_name("")

    def test_validate_manual_without_key(self, sample_reference):
        """Test manual references are valid without a key."""
        sample_reference.validate()

    def test_validate_empty_name(self):
        """Test empty name is rejected first."""
        with pytest.raises(EmptyNameError):
            SecretReference(name="", source=SecretSource.MANUAL).validate()

    def test_validate_invalid_name(self):
        """Test lowercase names are rejected."""
        with pytest.raises(InvalidNameError) as exc_info:
            SecretReference(name="db_password", source=SecretSource.MANUAL).validate()
        assert exc_info.value.name == "db_password"

    def test_validate_unknown_source(self):
        """Test unknown source strings are kept and rejected on validate."""
        ref = SecretReference(name="DB_PASSWORD", source="s3")  # type: ignore[arg-type]
        with pytest.raises(InvalidSourceError):
            ref.validate()

    def test_validate_missing_key(self):
        """Test non-manual sources need a key."""
        ref = SecretReference(name="API_KEY", source=SecretSource.AWS_SECRETS_MANAGER)
        with pytest.raises(MissingKeyError):
            ref.validate()

    def test_string_fields_are_coerced(self):
        """Test string source, type and encoding become enum members."""
        ref = SecretReference(
            name="TLS_CERT",
            source="file",  # type: ignore[arg-type]
            key="certs/tls.pem",
            type="certificate",  # type: ignore[arg-type]
            encoding="base64",  # type: ignore[arg-type]
        )
        assert ref.source == SecretSource.FILE
        assert ref.type == SecretType.CERTIFICATE
        assert ref.encoding == SecretEncoding.BASE64

    def test_fluent_helpers(self):
        """Test builder helpers return the same reference."""
        ref = (
            SecretReference(name="API_KEY", source=SecretSource.GCP_SECRET_MANAGER)
            .with_key("api-key")
            .with_description("API key")
            .with_type(SecretType.API_KEY)
            .optional()
        )
        assert ref.key == "api-key"
        assert ref.description == "API key"
        assert ref.type == SecretType.API_KEY
        assert ref.required is False

    def test_used_by_keeps_order_without_duplicates(self):
        """Test consumers are recorded once in first-seen order."""
        ref = SecretReference(name="X", source=SecretSource.MANUAL, used_by=["b", "a", "b"])
        ref.add_used_by("c").add_used_by("a")
        assert ref.used_by == ["b", "a", "c"]

    def test_decode_base64(self):
        """Test base64-encoded values are decoded."""
        ref = SecretReference(
            name="X", source=SecretSource.MANUAL, encoding=SecretEncoding.BASE64
        )
        assert ref.decode("aHVudGVyMg==") == "hunter2"

    def test_dict_round_trip(self):
        """Test serialization keeps every field."""
        ref = SecretReference(
            name="API_KEY",
            source=SecretSource.AZURE_KEY_VAULT,
            key="vault/api-key",
            description="desc",
            required=False,
            used_by=["web"],
            type=SecretType.API_KEY,
            version="3",
        )
        data = ref.to_dict()

        assert data["source"] == "azure-key-vault"
        assert "value" not in data
        assert SecretReference.from_dict(data) == ref

    @pytest.mark.parametrize(
        "field_name, value, error",
        [
            ("type", "password_hash", InvalidTypeError),
            ("encoding", "hex", InvalidEncodingError),
        ],
    )
    def test_from_dict_unknown_enum_value(self, field_name, value, error):
        """Test unknown type or encoding values raise validation errors."""
        data = {"name": "API_KEY", "source": "manual", field_name: value}

        with pytest.raises(error) as exc_info:
            SecretReference.from_dict(data)

        assert isinstance(exc_info.value, SecretValidationError)


# =============================================================================
# SecretsManifest
# =============================================================================


class TestSecretsManifest:
    """Tests for SecretsManifest."""

    def test_add_secret_validates(self):
        """Test invalid references are not added."""
        manifest = SecretsManifest()
        with pytest.raises(InvalidNameError):
            manifest.add_secret(SecretReference(name="bad", source=SecretSource.MANUAL))
        assert len(manifest) == 0

    def test_add_duplicate_rejected(self, sample_reference):
        """Test a second secret with the same name is rejected."""
        manifest = SecretsManifest()
        manifest.add_secret(sample_reference)

        with pytest.raises(DuplicateNameError):
            manifest.add_secret(SecretReference(name="DB_PASSWORD", source=SecretSource.MANUAL))
        assert len(manifest) == 1

    def test_required_count(self, sample_manifest):
        """Test required_count counts required entries."""
        assert sample_manifest.required_count == 2
        assert len(sample_manifest.get_required()) == 2

    def test_required_count_tracks_mutation(self, sample_manifest):
        """Test required_count follows changes made after insertion."""
        sample_manifest.get_secret("API_KEY").required = False
        assert sample_manifest.required_count == 1

    def test_sources_first_seen_order(self, sample_manifest):
        """Test sources lists each source once."""
        assert sample_manifest.sources == [
            SecretSource.MANUAL,
            SecretSource.AWS_SECRETS_MANAGER,
            SecretSource.ENV,
        ]

    def test_queries(self, sample_manifest):
        """Test lookup helpers."""
        assert sample_manifest.get_secret("API_KEY").key == "prod/api-key"
        assert sample_manifest.get_secret("MISSING") is None
        assert [s.name for s in sample_manifest.get_by_source(SecretSource.ENV)] == [
            "FEATURE_TOKEN"
        ]
        assert [s.name for s in sample_manifest.get_cloud_secrets()] == ["API_KEY"]

    def test_sort(self, sample_manifest):
        """Test sort orders by name."""
        sample_manifest.sort()
        assert [s.name for s in sample_manifest] == ["API_KEY", "DB_PASSWORD", "FEATURE_TOKEN"]

    def test_validate_detects_direct_duplicates(self, sample_reference):
        """Test validate catches duplicates appended without add_secret."""
        manifest = SecretsManifest(secrets=[sample_reference, sample_reference])
        with pytest.raises(DuplicateNameError):
            manifest.validate()

    def test_env_template(self, sample_manifest):
        """Test the template lists every secret with its markers and no values."""
        template = sample_manifest.generate_env_template()

        assert template.startswith("# Environment Variables Template\n")
        assert "# Generated by secretmap - DO NOT commit actual values" in template
        assert "# Database password\n# REQUIRED\nDB_PASSWORD=\n" in template
        assert (
            "# REQUIRED\n# Source: aws-secrets-manager\n# Key: prod/api-key\nAPI_KEY=\n"
            in template
        )
        assert "# OPTIONAL\n# Source: env\n# Key: FEATURE_TOKEN\nFEATURE_TOKEN=\n" in template

    def test_to_dict_contains_derived_fields(self, sample_manifest):
        """Test snapshots carry version, required_count and sources."""
        data = sample_manifest.to_dict()

        assert data["version"] == "1.0.0"
        assert data["required_count"] == 2
        assert data["sources"] == ["manual", "aws-secrets-manager", "env"]
        assert len(data["secrets"]) == 3

    def test_json_round_trip(self, sample_manifest):
        """Test JSON serialization round trip."""
        restored = SecretsManifest.from_json(sample_manifest.to_json())

        assert [s.name for s in restored] == [s.name for s in sample_manifest]
        assert restored.required_count == sample_manifest.required_count

    def test_from_dict_rejects_duplicates(self):
        """Test loading goes through add_secret."""
        data = {
            "secrets": [
                {"name": "A", "source": "manual"},
                {"name": "A", "source": "manual"},
            ]
        }
        with pytest.raises(DuplicateNameError):
            SecretsManifest.from_dict(data)

    def test_save_and_load_json(self, sample_manifest, tmp_path):
        """Test saving and loading a JSON snapshot."""
        path = str(tmp_path / "manifest.json")
        sample_manifest.save(path)

        with open(path, encoding="utf-8") as f:
            assert json.load(f)["required_count"] == 2
        assert len(SecretsManifest.load(path)) == 3

    def test_save_and_load_yaml(self, sample_manifest, tmp_path):
        """Test saving and loading a YAML snapshot."""
        path = str(tmp_path / "nested" / "manifest.yaml")
        sample_manifest.save(path)

        assert os.path.exists(path)
        loaded = SecretsManifest.load(path)
        assert loaded.get_secret("API_KEY").source == SecretSource.AWS_SECRETS_MANAGER


# =============================================================================
# ResolvedSecrets
# =============================================================================


class TestResolvedSecrets:
    """Tests for the in-memory resolved secret store."""

    def test_add_and_get(self, sample_reference):
        """Test values are stored with provenance."""
        resolved = ResolvedSecrets()
        resolved.add("DB_PASSWORD", "hunter2", "env:SECRETMAP_SECRET_DB_PASSWORD", sample_reference)

        secret = resolved.get("DB_PASSWORD")
        assert secret.value == "hunter2"
        assert secret.resolved_from == "env:SECRETMAP_SECRET_DB_PASSWORD"
        assert secret.reference is sample_reference
        assert resolved.get_value("DB_PASSWORD") == "hunter2"
        assert resolved.get_value("MISSING") is None
        assert "DB_PASSWORD" in resolved
        assert resolved.has("DB_PASSWORD")

    def test_names_sorted(self):
        """Test names are sorted."""
        resolved = ResolvedSecrets()
        resolved.add("B", "2", "interactive")
        resolved.add("A", "1", "interactive")
        assert resolved.names() == ["A", "B"]
        assert resolved.to_env_map() == {"B": "2", "A": "1"}

    def test_repr_hides_values(self):
        """Test repr never shows values."""
        resolved = ResolvedSecrets()
        resolved.add("A", "topsecretvalue", "interactive")

        assert "topsecretvalue" not in repr(resolved)
        assert "topsecretvalue" not in repr(resolved.get("A"))

    def test_cannot_be_pickled(self):
        """Test resolved secrets refuse serialization."""
        resolved = ResolvedSecrets()
        resolved.add("A", "value", "interactive")

        with pytest.raises(TypeError):
            pickle.dumps(resolved)
        with pytest.raises(TypeError):
            pickle.dumps(resolved.get("A"))

    def test_clear_wipes_values(self):
        """Test clear overwrites buffers and empties the store."""
        resolved = ResolvedSecrets()
        resolved.add("A", "value-one", "interactive")
        held = resolved.get("A")

        resolved.clear()

        assert resolved.count() == 0
        assert len(resolved) == 0
        assert held.value == ""
        assert held.reference is None

    def test_clear_unregisters_masked_values(self):
        """Test clear removes its values from the masking filter."""
        register_secret_value("hunter2-prod")
        register_secret_value("unrelated-value")
        resolved = ResolvedSecrets()
        resolved.add("DB_PASSWORD", "hunter2-prod", "interactive")

        resolved.clear()

        masking_filter = get_masking_filter()
        assert masking_filter.redact("hunter2-prod") == "hunter2-prod"
        assert masking_filter.redact("unrelated-value") != "unrelated-value"
        assert len(masking_filter) == 1

    def test_replacing_wipes_previous(self):
        """Test adding a name again wipes the previous value."""
        resolved = ResolvedSecrets()
        resolved.add("A", "old-value", "interactive")
        old = resolved.get("A")

        resolved.add("A", "new-value", "interactive")

        assert old.value == ""
        assert resolved.get_value("A") == "new-value"

    def test_wipe_zeroes_buffer(self):
        """Test wipe overwrites the original buffer."""
        secret = ResolvedSecret(None, "abc", "interactive")
        buffer = secret._buffer

        secret.wipe()

        assert bytes(buffer) == b"\x00\x00\x00"

    def test_to_env_file(self):
        """Test .env output is sorted and escaped."""
        resolved = ResolvedSecrets()
        resolved.add("PLAIN", "simple", "interactive")
        resolved.add("DB_PASSWORD", "pass word$1", "interactive")

        content = resolved.to_env_file()

        assert content.startswith("# Generated by secretmap\n# WARNING: This file contains sensitive values\n\n")
        assert content.index("DB_PASSWORD") < content.index("PLAIN")
        assert 'DB_PASSWORD="pass word\\$1"\n' in content
        assert "PLAIN=simple\n" in content
