"""Unit tests for configuration loading, target parsing and the target registry."""

import pytest

from postgres_mcp_tool.config.settings import (
    ConfigurationSource,
    PoolConfig,
    Settings,
    TargetSettings,
    get_settings,
    reset_settings,
    resolve_env_reference,
)
from postgres_mcp_tool.config.targets import TargetRegistry
from postgres_mcp_tool.models.connection import ConnectionConfig
from postgres_mcp_tool.models.errors import ConfigInvalidError, ErrorCode, InvalidTargetError
from postgres_mcp_tool.models.target import DEFAULT_TARGET, PROTECTED_TARGET, Target


def set_target_env(monkeypatch: pytest.MonkeyPatch, target: Target, **values: str) -> None:
    for name, value in values.items():
        monkeypatch.setenv(f"{target.env_prefix}{name.upper()}", value)


class TestTarget:
    """Tests for target parsing."""

    def test_parse_defaults_to_staging(self) -> None:
        """Test that a missing or blank target resolves to the default."""
        assert Target.parse(None) is Target.STAGING
        assert Target.parse("   ") is Target.STAGING
        assert DEFAULT_TARGET is Target.STAGING

    def test_parse_is_case_insensitive(self) -> None:
        """Test that target names are normalized."""
        assert Target.parse(" Production ") is Target.PRODUCTION
        assert Target.parse("RELEASE") is Target.RELEASE
        assert Target.parse(Target.RELEASE) is Target.RELEASE

    def test_parse_unknown_target_lists_supported(self) -> None:
        """Test that unknown names raise with the supported list."""
        with pytest.raises(InvalidTargetError) as exc_info:
            Target.parse("qa")

        assert exc_info.value.code == ErrorCode.INVALID_TARGET
        assert exc_info.value.details["supported_targets"] == ["staging", "release", "production"]

    def test_only_production_is_protected(self) -> None:
        """Test the protected target designation."""
        assert PROTECTED_TARGET is Target.PRODUCTION
        assert [t for t in Target if t.is_protected] == [Target.PRODUCTION]
        assert TargetRegistry.is_protected(Target.PRODUCTION)
        assert not TargetRegistry.is_protected(Target.STAGING)

    def test_env_prefix(self) -> None:
        """Test per-target environment variable prefix."""
        assert Target.RELEASE.env_prefix == "POSTGRES_RELEASE_"


class TestEnvReferences:
    """Tests for ${NAME} indirection."""

    def test_reference_resolves(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that a reference is replaced by the variable's value."""
        monkeypatch.setenv("VAULT_PG_PASSWORD", "s3cret")
        assert resolve_env_reference("${VAULT_PG_PASSWORD}") == "s3cret"

    def test_unset_reference_is_missing(self) -> None:
        """Test that an unset reference resolves to None."""
        assert resolve_env_reference("${DOES_NOT_EXIST_ANYWHERE}") is None

    def test_plain_values_are_stripped(self) -> None:
        """Test that non-reference values pass through trimmed."""
        assert resolve_env_reference("  reader ") == "reader"
        assert resolve_env_reference("   ") is None
        assert resolve_env_reference(5) == 5

    def test_target_settings_resolve_references(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that target settings apply indirection to every field."""
        monkeypatch.setenv("SHARED_USER", "analytics")
        set_target_env(
            monkeypatch,
            Target.RELEASE,
            url="postgresql://release-db:5432/app",
            username="${SHARED_USER}",
            password="pw",
        )

        settings = TargetSettings(_env_prefix=Target.RELEASE.env_prefix, _env_file=None)

        assert settings.username == "analytics"
        assert settings.is_complete


class TestSettings:
    """Tests for application settings."""

    def test_defaults(self) -> None:
        """Test default pool, PII and query settings."""
        settings = Settings(_env_file=None)

        assert settings.pool.max_size == 10
        assert settings.pool.min_idle == 2
        assert settings.pii.protection_enabled is True
        assert settings.query.default_max_rows == 100
        assert settings.observability.metrics_enabled is False

    def test_pii_protection_can_be_disabled(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that the PII flag is read from the environment."""
        monkeypatch.setenv("PII_PROTECTION_ENABLED", "false")
        source = ConfigurationSource(Settings(_env_file=None), env_file=None)

        assert source.pii_protection_enabled is False

    def test_get_settings_is_cached_until_reset(self) -> None:
        """Test the global settings instance."""
        first = get_settings()
        assert get_settings() is first

        reset_settings()
        assert get_settings() is not first


class TestTargetRegistry:
    """Tests for TargetRegistry."""

    @pytest.fixture
    def registry(self) -> TargetRegistry:
        return TargetRegistry(ConfigurationSource(Settings(_env_file=None), env_file=None))

    def test_all_targets_in_declaration_order(self, registry: TargetRegistry) -> None:
        """Test that targets are enumerated in a fixed order."""
        assert registry.all_targets() == [Target.STAGING, Target.RELEASE, Target.PRODUCTION]

    def test_incomplete_configuration(
        self, registry: TargetRegistry, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that a target missing its password is not configured."""
        set_target_env(monkeypatch, Target.STAGING, url="postgresql://db/app", username="reader")

        assert registry.has_complete_configuration(Target.STAGING) is False
        assert registry.configured_targets() == []

    def test_complete_configuration(
        self, registry: TargetRegistry, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that a fully configured target is listed."""
        set_target_env(
            monkeypatch,
            Target.PRODUCTION,
            url="jdbc:postgresql://prod-db:6432/app",
            username="reader",
            password="pw",
        )

        assert registry.configured_targets() == [Target.PRODUCTION]

        config = registry.connection_config(Target.PRODUCTION)
        assert config.host == "prod-db"
        assert config.port == 6432
        assert config.database == "app"
        assert config.max_pool_size == 10
        assert config.min_idle == 2

    def test_per_target_pool_overrides(
        self, registry: TargetRegistry, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that per-target pool sizing wins over defaults."""
        set_target_env(
            monkeypatch,
            Target.RELEASE,
            url="postgresql://release-db/app",
            username="reader",
            password="pw",
            max_pool_size="4",
            min_idle="0",
        )

        config = registry.connection_config(Target.RELEASE)

        assert config.max_pool_size == 4
        assert config.min_idle == 0
        assert config.port == 5432

    def test_invalid_pool_size_is_config_error(
        self, registry: TargetRegistry, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that a malformed override surfaces as ConfigInvalidError."""
        set_target_env(
            monkeypatch,
            Target.STAGING,
            url="postgresql://db/app",
            username="reader",
            password="pw",
            max_pool_size="many",
        )

        with pytest.raises(ConfigInvalidError) as exc_info:
            registry.connection_config(Target.STAGING)

        assert "POSTGRES_STAGING_MAX_POOL_SIZE" in exc_info.value.message
        assert registry.has_complete_configuration(Target.STAGING) is False

    def test_configuration_is_reread(
        self, registry: TargetRegistry, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that credentials exported later are picked up."""
        assert registry.has_complete_configuration(Target.RELEASE) is False

        set_target_env(
            monkeypatch,
            Target.RELEASE,
            url="postgresql://release-db/app",
            username="reader",
            password="pw",
        )

        assert registry.has_complete_configuration(Target.RELEASE) is True


class TestConnectionConfig:
    """Tests for ConnectionConfig validation."""

    def test_missing_fields_name_env_vars(self) -> None:
        """Test that every missing property is reported at once."""
        with pytest.raises(ConfigInvalidError) as exc_info:
            ConnectionConfig.create(Target.RELEASE, url=None, username="", password=None)

        error = exc_info.value
        assert error.details["missing"] == ["url", "username", "password"]
        assert "POSTGRES_RELEASE_URL" in error.message
        assert "reconnect" in error.message

    @pytest.mark.parametrize(
        "url",
        ["mysql://db:3306/app", "jdbc:postgresql://db:5432", "postgresql://:5432/app"],
    )
    def test_malformed_url(self, url: str) -> None:
        """Test that URLs that are not PostgreSQL URLs are rejected."""
        with pytest.raises(ConfigInvalidError):
            ConnectionConfig.create(Target.STAGING, url=url, username="u", password="p")

    def test_min_idle_capped_at_max_pool_size(self) -> None:
        """Test that min_idle never exceeds max_pool_size."""
        config = ConnectionConfig.create(
            Target.STAGING,
            url="postgresql://db/app",
            username="u",
            password="p",
            max_pool_size=3,
            min_idle=8,
        )

        assert config.min_idle == 3

    def test_password_is_masked(self) -> None:
        """Test that the password never appears in the descriptor, DSN or repr."""
        config = ConnectionConfig.create(
            Target.STAGING, url="postgresql://db:5432/app", username="u", password="hunter2"
        )

        assert config.descriptor == "db:5432/app"
        assert "hunter2" not in config.safe_dsn
        assert "hunter2" not in repr(config)
        assert config.password.get_secret_value() == "hunter2"

    def test_default_pool_config(self) -> None:
        """Test shared pool timeout defaults."""
        config = PoolConfig()

        assert config.acquire_timeout == 5.0
        assert config.command_timeout == 30.0
