"""Unit tests for registry_cleaner/main.py"""

import json
from unittest.mock import patch

import pytest

from registry_cleaner.error_utils import AuthenticationError, RegistryError
from registry_cleaner.http_client import HttpClient
from registry_cleaner.main import apply_cleanup_overrides, apply_provider_overrides, confirm_deletion, main, parse_arguments
from registry_cleaner.models import CleanupConfig, CleanupResult, ProviderConfig

_ENV_VARS = (
    "CONFIG_FILE",
    "REGISTRY_TYPE",
    "REGISTRY_URL",
    "REGISTRY_USERNAME",
    "REGISTRY_PASSWORD",
    "REGISTRY_TOKEN",
    "REGISTRY_OWNER",
    "GITHUB_TOKEN",
    "GITHUB_REPOSITORY_OWNER",
    "DRY_RUN",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def base_args(tmp_path):
    return ["--config", str(tmp_path / "missing.yaml"), "--registry-type", "oci", "--registry-url", "registry.example.com"]


@pytest.fixture
def engine():
    """Patch the provider factory and engine; yields (create_provider, engine instance)"""
    with patch("registry_cleaner.main.create_provider") as create_provider, patch(
        "registry_cleaner.main.CleanupEngine"
    ) as engine_class:
        instance = engine_class.return_value
        instance.selected = []
        instance.cascaded = []
        instance.warnings = []
        instance.run.return_value = CleanupResult(kept_count=2)
        yield create_provider, instance


class TestOverrides:
    def test_dry_run_is_the_default(self):
        config = apply_cleanup_overrides(CleanupConfig(), parse_arguments([]))
        assert config.dry_run is True

    def test_apply_disables_dry_run(self):
        config = apply_cleanup_overrides(CleanupConfig(), parse_arguments(["--apply"]))
        assert config.dry_run is False

    def test_dry_run_flag_overrides_config(self):
        config = apply_cleanup_overrides(CleanupConfig(dry_run=False), parse_arguments(["--dry-run"]))
        assert config.dry_run is True

    def test_apply_and_dry_run_are_exclusive(self):
        with pytest.raises(SystemExit):
            parse_arguments(["--apply", "--dry-run"])

    def test_cleanup_values(self):
        args = parse_arguments(["--keep-n-tagged", "3", "--delete-tags", "nightly-*, pr-*", "--exclude-tags", ""])
        config = apply_cleanup_overrides(CleanupConfig(delete_untagged=True, exclude_tags=("v*",)), args)

        assert config.keep_n_tagged == 3
        assert config.delete_tags == ("nightly-*", "pr-*")
        assert config.exclude_tags == ()
        assert config.delete_untagged is True

    def test_unset_flags_keep_config_values(self):
        config = apply_provider_overrides(
            ProviderConfig(registry_type="ghcr", owner="octo", skip_certificate_check=True), parse_arguments([])
        )
        assert config.registry_type == "ghcr"
        assert config.owner == "octo"
        assert config.skip_certificate_check is True

    def test_packages_combine_repeated_and_comma_separated(self):
        args = parse_arguments(["--package", "web", "--package", "api", "--packages", "worker,cron"])
        config = apply_provider_overrides(ProviderConfig(packages=("old",)), args)
        assert config.packages == ("web", "api", "worker", "cron")


class TestConfirmDeletion:
    def test_reprompts_until_answered(self):
        with patch("builtins.input", side_effect=["maybe", "Y"]):
            assert confirm_deletion() is True

    def test_no(self):
        with patch("builtins.input", return_value="no"):
            assert confirm_deletion() is False


class TestMain:
    def test_dry_run_succeeds(self, base_args, engine, capsys):
        create_provider, instance = engine

        assert main(base_args) == 0

        provider = create_provider.return_value
        provider.authenticate.assert_called_once()
        instance.run.assert_called_once_with(())
        assert create_provider.call_args.args[0].registry_url == "registry.example.com"
        assert "DRY RUN COMPLETED" in capsys.readouterr().out

    def test_invalid_configuration_exits_before_connecting(self, tmp_path, engine):
        create_provider, _ = engine
        assert main(["--config", str(tmp_path / "missing.yaml"), "--registry-type", "oci"]) == 1
        create_provider.assert_not_called()

    def test_negative_keep_is_rejected(self, base_args, engine):
        assert main(base_args + ["--keep-n-tagged", "-1"]) == 1

    def test_declined_confirmation_deletes_nothing(self, base_args, engine):
        create_provider, _ = engine
        with patch("registry_cleaner.main.confirm_deletion", return_value=False):
            assert main(base_args + ["--apply"]) == 0
        create_provider.assert_not_called()

    def test_live_run_with_errors_fails(self, base_args, engine):
        _, instance = engine
        instance.run.return_value = CleanupResult(deleted_count=1, errors=["Failed to delete tag app:v1: denied"])

        assert main(base_args + ["--apply", "--force"]) == 1
        assert instance.run.called

    def test_dry_run_with_errors_succeeds(self, base_args, engine):
        _, instance = engine
        instance.run.return_value = CleanupResult(errors=["Failed to discover images for package web: boom"])
        assert main(base_args) == 0

    def test_authentication_failure(self, base_args, engine):
        create_provider, _ = engine
        create_provider.return_value.authenticate.side_effect = AuthenticationError("bad token")
        assert main(base_args) == 1

    def test_registry_failure_aborts(self, base_args, engine):
        _, instance = engine
        instance.run.side_effect = RegistryError("catalog unavailable", 503)
        assert main(base_args) == 1

    def test_writes_json_report(self, base_args, engine, tmp_path):
        output = tmp_path / "reports" / "run.json"

        assert main(base_args + ["--output", str(output)]) == 0

        report = json.loads(output.read_text())
        assert report["dry_run"] is True
        assert report["result"]["kept_count"] == 2
        assert report["selected"] == []

    def test_bare_report_name_uses_output_dir(self, tmp_path, engine):
        reports = tmp_path / "reports"
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            f"registry:\n  type: oci\n  url: registry.example.com\nreports:\n  output_dir: {reports}\n"
        )

        assert main(["--config", str(config_file), "--output", "run.json"]) == 0

        assert json.loads((reports / "run.json").read_text())["dry_run"] is True

    def test_print_config(self, base_args, engine):
        create_provider, _ = engine
        with patch("registry_cleaner.main.ConfigManager.print_config") as print_config:
            assert main(base_args + ["--print-config"]) == 0
        print_config.assert_called_once()
        create_provider.assert_not_called()


def test_uses_config_file_settings(tmp_path, engine):
    create_provider, instance = engine
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "registry:\n  type: ghcr\n  token: t\n  owner: octo\n  packages: [web]\ncleanup:\n  keep_n_tagged: 5\n"
    )

    assert main(["--config", str(config_file)]) == 0

    provider_config = create_provider.call_args.args[0]
    assert provider_config.registry_type == "ghcr"
    instance.run.assert_called_once_with(("web",))
    assert isinstance(create_provider.call_args.args[1], HttpClient)
