"""
Unit tests for the Resolver and its resolution chain.
"""

from __future__ import annotations

import base64
import os
import stat
import threading
from unittest.mock import MagicMock, patch

import pytest

from secretmap.resolution import (
    ResolvabilityStatus,
    Resolver,
    ResolverOptions,
    create_env_file,
    create_env_template,
)
from secretmap.secrets import (
    ProviderConfigError,
    ResolutionError,
    SecretEncoding,
    SecretNotResolvedError,
    SecretReference,
    SecretSource,
    SecretsManifest,
    get_masking_filter,
)
from secretmap.secrets.masking import REDACTED

API_KEY_REF = SecretReference(
    name="API_KEY",
    source=SecretSource.AWS_SECRETS_MANAGER,
    key="prod/api-key",
)


def _resolver(environ=None, **options) -> Resolver:
    options.setdefault("allow_interactive", False)
    return Resolver(ResolverOptions(**options), environ=environ or {})


def _manifest(*refs: SecretReference) -> SecretsManifest:
    manifest = SecretsManifest()
    for ref in refs:
        manifest.add_secret(ref)
    return manifest


def _manual(name: str, required: bool = True) -> SecretReference:
    return SecretReference(name=name, source=SecretSource.MANUAL, required=required)


# =============================================================================
# Options
# =============================================================================


class TestResolverOptions:
    """Tests for ResolverOptions."""

    def test_pull_from_normalized(self):
        """Test pull_from is trimmed and lowercased."""
        options = ResolverOptions(pull_from=" AWS ")
        assert options.pull_from == "aws"
        assert options.pull_from_source == SecretSource.AWS_SECRETS_MANAGER

    def test_unknown_pull_from(self):
        """Test unknown cloud names are rejected at construction."""
        with pytest.raises(ProviderConfigError):
            ResolverOptions(pull_from="oracle")

    def test_defaults(self):
        """Test default values."""
        options = ResolverOptions(max_workers=0)
        assert options.env_prefix == "SECRETMAP_SECRET_"
        assert options.pull_from_source is None
        assert options.max_workers == 1


# =============================================================================
# Resolution chain
# =============================================================================


class TestResolveChain:
    """Tests for single-secret resolution."""

    def test_file_beats_env(self, tmp_path):
        """Test the secrets file is consulted first."""
        secrets_file = tmp_path / ".env.secrets"
        secrets_file.write_text("DB_PASSWORD=from-file\n", encoding="utf-8")
        resolver = _resolver(
            environ={"SECRETMAP_SECRET_DB_PASSWORD": "from-env"},
            secrets_file_path=str(secrets_file),
        )

        value, resolved_from = resolver.resolve_with_provenance(_manual("DB_PASSWORD"))

        assert value == "from-file"
        assert resolved_from == f"file:{secrets_file}"

    def test_missing_secrets_file_skipped(self, tmp_path):
        """Test an unreadable secrets file does not stop the chain."""
        resolver = _resolver(
            environ={"SECRETMAP_SECRET_DB_PASSWORD": "from-env"},
            secrets_file_path=str(tmp_path / "missing"),
        )
        assert resolver.resolve(_manual("DB_PASSWORD")) == "from-env"

    def test_missing_secrets_file_warns(self, tmp_path, capture_secretmap_logs):
        """Test a skipped secrets file is reported at warning level."""
        resolver = _resolver(secrets_file_path=str(tmp_path / "missing"))
        with pytest.raises(SecretNotResolvedError):
            resolver.resolve(_manual("DB_PASSWORD"))

        warnings = [r for r in capture_secretmap_logs.records if r.levelname == "WARNING"]
        assert len(warnings) == 1
        assert warnings[0].error_type == "FileNotFoundError"

    def test_non_utf8_byte_in_secrets_file(self, tmp_path):
        """Test a Latin-1 comment does not hide the rest of the file."""
        secrets_file = tmp_path / ".env.secrets"
        secrets_file.write_bytes(b"# caf\xe9\nDB_PASSWORD=from-file\n")
        resolver = _resolver(
            environ={"SECRETMAP_SECRET_DB_PASSWORD": "from-env"},
            secrets_file_path=str(secrets_file),
        )

        assert resolver.resolve_with_provenance(_manual("DB_PASSWORD")) == (
            "from-file",
            f"file:{secrets_file}",
        )

    def test_env_prefix(self):
        """Test the prefixed variable and its provenance."""
        resolver = _resolver(environ={"APP_DB_PASSWORD": "v"}, env_prefix="APP_")
        assert resolver.resolve_with_provenance(_manual("DB_PASSWORD")) == ("v", "env:APP_DB_PASSWORD")

    def test_env_source_uses_key(self):
        """Test env-sourced secrets are also found under their key."""
        ref = SecretReference(name="FEATURE_TOKEN", source=SecretSource.ENV, key="LEGACY_TOKEN")
        resolver = _resolver(environ={"LEGACY_TOKEN": "t"})
        assert resolver.resolve_with_provenance(ref) == ("t", "env:LEGACY_TOKEN")

    def test_key_ignored_for_other_sources(self):
        """Test a manual secret's name is not read from the bare environment."""
        resolver = _resolver(environ={"DB_PASSWORD": "leaked"})
        with pytest.raises(SecretNotResolvedError):
            resolver.resolve(_manual("DB_PASSWORD"))

    def test_native_provider(self, stub_provider_factory):
        """Test the provider registered for the source resolves it."""
        resolver = _resolver()
        resolver.register_provider(
            stub_provider_factory(SecretSource.AWS_SECRETS_MANAGER, {"prod/api-key": "aws-value"})
        )
        assert resolver.resolve_with_provenance(API_KEY_REF) == (
            "aws-value",
            "provider:aws-secrets-manager",
        )

    def test_forced_cloud_override(self, stub_provider_factory):
        """Test pull_from redirects cloud secrets through the forced store."""
        gcp = stub_provider_factory(SecretSource.GCP_SECRET_MANAGER, {"prod/api-key": "gcp-value"})
        aws = stub_provider_factory(SecretSource.AWS_SECRETS_MANAGER, {"prod/api-key": "aws-value"})
        resolver = _resolver(pull_from="gcp")
        resolver.register_provider(gcp)
        resolver.register_provider(aws)

        assert resolver.resolve_with_provenance(API_KEY_REF) == ("gcp-value", "cloud:gcp")
        assert aws.resolve_calls == []

    def test_forced_provider_missing_falls_through(self, stub_provider_factory):
        """Test a missing forced provider advances to the native one."""
        resolver = _resolver(pull_from="azure")
        resolver.register_provider(
            stub_provider_factory(SecretSource.AWS_SECRETS_MANAGER, {"prod/api-key": "aws-value"})
        )
        assert resolver.resolve_with_provenance(API_KEY_REF)[1] == "provider:aws-secrets-manager"

    def test_override_not_applied_to_local_sources(self, stub_provider_factory):
        """Test manual secrets are not sent to the forced store."""
        gcp = stub_provider_factory(SecretSource.GCP_SECRET_MANAGER)
        resolver = _resolver(pull_from="gcp")
        resolver.register_provider(gcp)

        with pytest.raises(SecretNotResolvedError):
            resolver.resolve(_manual("DB_PASSWORD"))
        assert gcp.resolve_calls == []

    def test_provider_exception_advances_chain(self, mock_prompt):
        """Test unexpected provider errors fall through to the prompt."""
        provider = MagicMock()
        provider.name.return_value = SecretSource.AWS_SECRETS_MANAGER
        provider.can_resolve.return_value = True
        provider.resolve.side_effect = RuntimeError("sdk bug")

        resolver = _resolver(allow_interactive=True)
        resolver.register_provider(provider)
        resolver.set_prompt_func(mock_prompt)

        assert resolver.resolve_with_provenance(API_KEY_REF) == ("typed-value", "interactive")
        mock_prompt.assert_called_once_with(API_KEY_REF)

    def test_prompt_disabled(self, mock_prompt):
        """Test the prompt is skipped when interactive mode is off."""
        resolver = _resolver()
        resolver.set_prompt_func(mock_prompt)

        with pytest.raises(SecretNotResolvedError):
            resolver.resolve(_manual("DB_PASSWORD"))
        mock_prompt.assert_not_called()

    def test_prompt_empty_required(self):
        """Test an empty answer for a required secret is an error."""
        resolver = _resolver(allow_interactive=True)
        resolver.set_prompt_func(MagicMock(return_value=""))

        with pytest.raises(SecretNotResolvedError) as exc_info:
            resolver.resolve(_manual("DB_PASSWORD"))
        assert "no value provided" in str(exc_info.value)

    def test_base64_encoding_decoded(self, stub_provider_factory):
        """Test provider values are decoded per the reference encoding."""
        ref = SecretReference(
            name="CERT",
            source=SecretSource.AWS_SECRETS_MANAGER,
            key="tls/cert",
            encoding=SecretEncoding.BASE64,
        )
        resolver = _resolver()
        resolver.register_provider(
            stub_provider_factory(
                SecretSource.AWS_SECRETS_MANAGER,
                {"tls/cert": base64.b64encode(b"-----BEGIN-----").decode("ascii")},
            )
        )
        assert resolver.resolve(ref) == "-----BEGIN-----"

    def test_deadline_stops_chain(self, stub_provider_factory, mock_prompt):
        """Test a slow provider exhausts the deadline and later steps do not run."""
        release = threading.Event()

        class SlowProvider(stub_provider_factory):
            def resolve(self, ref, ctx=None):
                release.wait(5)
                return "late"

        resolver = _resolver(allow_interactive=True, timeout=0.05)
        resolver.register_provider(SlowProvider(SecretSource.AWS_SECRETS_MANAGER))
        resolver.set_prompt_func(mock_prompt)

        try:
            with pytest.raises(SecretNotResolvedError) as exc_info:
                resolver.resolve(API_KEY_REF)
        finally:
            release.set()

        assert "deadline" in str(exc_info.value)
        mock_prompt.assert_not_called()

    def test_resolved_value_masked_in_logs(self):
        """Test resolved values are registered with the masking filter."""
        resolver = _resolver(environ={"SECRETMAP_SECRET_DB_PASSWORD": "hunter22"})
        resolver.resolve(_manual("DB_PASSWORD"))
        assert get_masking_filter().redact("pw=hunter22") == f"pw={REDACTED}"

    def test_value_never_logged(self, capture_secretmap_logs):
        """Test log records carry provenance but not the value."""
        resolver = _resolver(environ={"SECRETMAP_SECRET_DB_PASSWORD": "hunter22"})
        resolver.resolve(_manual("DB_PASSWORD"))

        messages = [r.getMessage() for r in capture_secretmap_logs.records]
        assert any("env:SECRETMAP_SECRET_DB_PASSWORD" in m for m in messages)
        assert not any("hunter22" in m for m in messages)


# =============================================================================
# Manifest resolution
# =============================================================================


class TestResolveAll:
    """Tests for Resolver.resolve_all."""

    def test_partial_result_on_error(self, sample_manifest):
        """Test missing required secrets raise with the partial result attached."""
        resolver = _resolver(environ={"SECRETMAP_SECRET_DB_PASSWORD": "pw"})

        with pytest.raises(ResolutionError) as exc_info:
            resolver.resolve_all(sample_manifest)

        error = exc_info.value
        assert error.missing_secrets == ["API_KEY"]
        assert error.resolved.get_value("DB_PASSWORD") == "pw"
        assert "FEATURE_TOKEN" not in error.resolved

    def test_fail_on_missing_disabled(self, sample_manifest):
        """Test the partial result is returned when failures are allowed."""
        resolver = _resolver(
            environ={"SECRETMAP_SECRET_DB_PASSWORD": "pw", "FEATURE_TOKEN": "ft"},
            fail_on_missing=False,
        )

        resolved = resolver.resolve_all(sample_manifest)

        assert resolved.names() == ["DB_PASSWORD", "FEATURE_TOKEN"]
        assert resolved.get("FEATURE_TOKEN").resolved_from == "env:FEATURE_TOKEN"

    def test_optional_failure_is_not_missing(self):
        """Test unresolved optional secrets do not fail the run."""
        resolver = _resolver()
        resolved = resolver.resolve_all(_manifest(_manual("OPTIONAL_TOKEN", required=False)))
        assert len(resolved) == 0

    def test_concurrent_workers(self):
        """Test parallel resolution yields every secret."""
        names = [f"SECRET_{i}" for i in range(12)]
        environ = {f"SECRETMAP_SECRET_{name}": name.lower() for name in names}
        resolver = _resolver(environ=environ, max_workers=4)

        resolved = resolver.resolve_all(_manifest(*[_manual(n) for n in names]))

        assert resolved.names() == sorted(names)
        assert resolved.get_value("SECRET_7") == "secret_7"

    def test_cancel_before_start(self):
        """Test a cancelled run starts no secret."""
        event = threading.Event()
        event.set()
        prompt = MagicMock(return_value="v")
        resolver = _resolver(allow_interactive=True, fail_on_missing=False)
        resolver.set_prompt_func(prompt)

        resolved = resolver.resolve_all(_manifest(_manual("A_SECRET")), cancel_event=event)

        assert len(resolved) == 0
        prompt.assert_not_called()

    def test_cancel_midway_keeps_resolved(self):
        """Test secrets resolved before cancellation are kept."""
        event = threading.Event()

        def prompt(ref):
            event.set()
            return "first"

        resolver = _resolver(allow_interactive=True)
        resolver.set_prompt_func(prompt)

        with pytest.raises(ResolutionError) as exc_info:
            resolver.resolve_all(
                _manifest(_manual("A_SECRET"), _manual("B_SECRET")), cancel_event=event
            )

        assert exc_info.value.missing_secrets == ["B_SECRET"]
        assert exc_info.value.resolved.get_value("A_SECRET") == "first"

    def test_completion_logged(self, capture_secretmap_logs):
        """Test the run summary is logged."""
        _resolver(fail_on_missing=False).resolve_all(_manifest(_manual("A_SECRET")))

        summary = [
            r for r in capture_secretmap_logs.records
            if getattr(r, "event_type", "") == "resolution.completed"
        ]
        assert summary and summary[0].missing_count == 1

    def test_clear_releases_masked_values(self):
        """Test clearing the result drops its values from the masking filter."""
        resolver = _resolver(environ={"SECRETMAP_SECRET_DB_PASSWORD": "hunter2-prod"})
        resolved = resolver.resolve_all(_manifest(_manual("DB_PASSWORD")))
        assert len(get_masking_filter()) == 1

        resolved.clear()

        assert resolved.count() == 0
        assert len(get_masking_filter()) == 0


# =============================================================================
# Dry run
# =============================================================================


class TestCheckResolvability:
    """Tests for Resolver.check_resolvability."""

    def test_classification(self, tmp_path, stub_provider_factory, mock_prompt):
        """Test each status and that nothing is fetched or prompted."""
        secrets_file = tmp_path / ".env.secrets"
        secrets_file.write_text("FROM_FILE=1\n", encoding="utf-8")

        aws = stub_provider_factory(SecretSource.AWS_SECRETS_MANAGER, {"prod/api-key": "v"})
        gcp = stub_provider_factory(SecretSource.GCP_SECRET_MANAGER, valid=False)

        resolver = _resolver(
            environ={"SECRETMAP_SECRET_FROM_ENV": "1"},
            secrets_file_path=str(secrets_file),
            allow_interactive=True,
        )
        resolver.register_provider(aws)
        resolver.register_provider(gcp)
        resolver.set_prompt_func(mock_prompt)

        manifest = _manifest(
            _manual("FROM_FILE"),
            _manual("FROM_ENV"),
            API_KEY_REF,
            SecretReference(name="GCP_TOKEN", source=SecretSource.GCP_SECRET_MANAGER, key="tok"),
        )
        report = resolver.check_resolvability(manifest)

        assert report.secrets["FROM_FILE"].method == "secrets-file"
        assert report.status_of("FROM_ENV") == ResolvabilityStatus.RESOLVABLE
        assert report.secrets["FROM_ENV"].method == "environment"
        assert report.secrets["API_KEY"].status == ResolvabilityStatus.MAYBE_RESOLVABLE
        assert report.secrets["API_KEY"].method == "aws-secrets-manager"
        assert report.needs_interactive == ["GCP_TOKEN"]
        assert report.can_resolve_all(manifest)

        assert aws.resolve_calls == []
        assert gcp.resolve_calls == []
        mock_prompt.assert_not_called()

    def test_unresolvable(self, stub_provider_factory):
        """Test secrets without any route are unresolvable."""
        resolver = _resolver()
        manifest = _manifest(_manual("REQUIRED_ONE"), _manual("OPTIONAL_ONE", required=False))

        report = resolver.check_resolvability(manifest)

        assert report.unresolvable == ["REQUIRED_ONE", "OPTIONAL_ONE"]
        assert report.secrets["REQUIRED_ONE"].method == "none"
        assert not report.can_resolve_all(manifest)
        assert report.to_dict()["secrets"]["OPTIONAL_ONE"] == {
            "status": "unresolvable",
            "method": "none",
        }

    def test_only_optional_unresolvable(self):
        """Test unresolvable optional secrets do not block."""
        manifest = _manifest(_manual("OPTIONAL_ONE", required=False))
        report = _resolver().check_resolvability(manifest)
        assert report.can_resolve_all(manifest)

    def test_non_utf8_byte_in_secrets_file(self, tmp_path):
        """Test the dry run still reads a file with a Latin-1 comment."""
        secrets_file = tmp_path / ".env.secrets"
        secrets_file.write_bytes(b"# caf\xe9\nDB_PASSWORD=file_val\n")
        resolver = _resolver(secrets_file_path=str(secrets_file))

        report = resolver.check_resolvability(_manifest(_manual("DB_PASSWORD")))

        assert report.secrets["DB_PASSWORD"].method == "secrets-file"

    def test_undecodable_secrets_file(self, tmp_path, capture_secretmap_logs):
        """Test a secrets file that fails to parse is skipped with a warning."""
        secrets_file = tmp_path / ".env.secrets"
        secrets_file.write_text("DB_PASSWORD=file_val\n", encoding="utf-8")
        resolver = _resolver(secrets_file_path=str(secrets_file))

        with patch(
            "secretmap.resolution.resolver.read_env_file",
            side_effect=UnicodeDecodeError("utf-8", b"\xe9", 0, 1, "invalid start byte"),
        ):
            report = resolver.check_resolvability(_manifest(_manual("DB_PASSWORD")))

        assert report.unresolvable == ["DB_PASSWORD"]
        warnings = [r for r in capture_secretmap_logs.records if r.levelname == "WARNING"]
        assert warnings[0].error_type == "UnicodeDecodeError"

    def test_forced_provider_considered(self, stub_provider_factory):
        """Test a usable forced store makes cloud secrets maybe-resolvable."""
        resolver = _resolver(pull_from="azure")
        resolver.register_provider(stub_provider_factory(SecretSource.AZURE_KEY_VAULT))

        report = resolver.check_resolvability(_manifest(API_KEY_REF))

        assert report.secrets["API_KEY"].method == "azure-key-vault"


# =============================================================================
# Cache and output files
# =============================================================================


class TestResolverFiles:
    """Tests for cache clearing and env file output."""

    def test_clear_cache(self, tmp_path, stub_provider_factory):
        """Test the secrets file is re-read and providers are cleared."""
        secrets_file = tmp_path / ".env.secrets"
        secrets_file.write_text("DB_PASSWORD=one\n", encoding="utf-8")
        provider = stub_provider_factory(SecretSource.ENV)
        resolver = _resolver(secrets_file_path=str(secrets_file))
        resolver.register_provider(provider)

        assert resolver.resolve(_manual("DB_PASSWORD")) == "one"
        secrets_file.write_text("DB_PASSWORD=two\n", encoding="utf-8")
        assert resolver.resolve(_manual("DB_PASSWORD")) == "one"

        resolver.clear_cache()

        assert resolver.resolve(_manual("DB_PASSWORD")) == "two"
        assert provider.cache_cleared

    def test_create_env_file(self, tmp_path):
        """Test resolved values are written owner-only."""
        resolver = _resolver(environ={"SECRETMAP_SECRET_DB_PASSWORD": "pass word$1"})
        resolved = resolver.resolve_all(_manifest(_manual("DB_PASSWORD")))

        path = tmp_path / ".env"
        create_env_file(resolved, str(path))

        assert 'DB_PASSWORD="pass word\\$1"' in path.read_text(encoding="utf-8")
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_create_env_template(self, tmp_path, sample_manifest):
        """Test the template has names but no values."""
        path = tmp_path / ".env.template"
        create_env_template(sample_manifest, str(path))

        content = path.read_text(encoding="utf-8")
        assert "DB_PASSWORD=\n" in content
        assert "# Key: prod/api-key" in content
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o644
