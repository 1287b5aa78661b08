"""
Configuration Manager for the registry cleaner

This module handles loading and managing configuration from config.yaml
and environment variables.
"""

import logging
import os
from typing import Any, Dict, List, Optional, Tuple

import yaml

from registry_cleaner.error_utils import ConfigValidationError
from registry_cleaner.models import CleanupConfig, ProviderConfig
from registry_cleaner.validation import cleanup_config_errors, provider_config_errors

DEFAULT_CONFIG: Dict[str, Any] = {
    "registry": {
        "type": "auto",
        "url": None,
        "username": None,
        "password": None,
        "token": None,
        "owner": None,
        "owner_type": "users",
        "repository": None,
        "packages": [],
        "expand_packages": False,
        "use_regex": False,
        "skip_certificate_check": False,
    },
    "cleanup": {
        "dry_run": True,
        "keep_n_tagged": None,
        "keep_n_untagged": None,
        "delete_untagged": False,
        "delete_tags": [],
        "exclude_tags": [],
        "older_than": None,
        "delete_ghost_images": False,
        "delete_partial_images": False,
        "delete_orphaned_images": False,
        "validate": False,
    },
    "http": {"retry": 3, "throttle": 1000, "timeout": 30},
    "logging": {"verbose": False},
    "security": {"require_confirmation": True},
    "reports": {"output_dir": "reports"},
}

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off", "")


def _as_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in _TRUE_VALUES + _FALSE_VALUES:
        return value.strip().lower() in _TRUE_VALUES
    raise ConfigValidationError(f"{name} must be a boolean, got: {value} (type: {type(value).__name__})")


def _as_optional_int(name: str, value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ConfigValidationError(f"{name} must be an integer, got: {value} (type: bool)")
    try:
        return int(value)
    except (ValueError, TypeError):
        raise ConfigValidationError(f"{name} must be an integer, got: {value} (type: {type(value).__name__})")


def _as_list(name: str, value: Any) -> Tuple[str, ...]:
    """Accept a YAML list or a comma/newline separated string"""
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(item.strip() for item in value.replace("\n", ",").split(",") if item.strip())
    if isinstance(value, (list, tuple)):
        return tuple(str(item) for item in value)
    raise ConfigValidationError(f"{name} must be a list, got: {value} (type: {type(value).__name__})")


class ConfigManager:
    """Manages configuration for the registry cleaner"""

    def __init__(self, config_file: str = None, validate: bool = True):
        """Initialize ConfigManager

        Args:
            config_file: Path to configuration YAML file (defaults to CONFIG_FILE env var or config.yaml)
            validate: If True, validate configuration on initialization
        """
        if config_file is None:
            config_file = os.environ.get("CONFIG_FILE", "config.yaml")
        self.config_file = config_file
        self.config = self._load_config()

        if validate:
            self.validate_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file with defaults"""
        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r") as f:
                    user_config = yaml.safe_load(f) or {}
                return self._merge_config(DEFAULT_CONFIG, user_config)
            else:
                logging.warning(f"Config file {self.config_file} not found, using defaults")
                return self._merge_config(DEFAULT_CONFIG, {})
        except (OSError, yaml.YAMLError) as e:
            logging.error(f"Error loading config file: {e}")
            return self._merge_config(DEFAULT_CONFIG, {})

    def _merge_config(self, default: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge user config with defaults"""
        result = {key: dict(value) if isinstance(value, dict) else value for key, value in default.items()}
        for key, value in user.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value
        return result

    def _section(self, name: str) -> Dict[str, Any]:
        return self.config.get(name) or {}

    # Registry configuration
    def get_registry_type(self) -> str:
        return (os.environ.get("REGISTRY_TYPE") or self._section("registry").get("type") or "auto").lower()

    def get_registry_url(self) -> Optional[str]:
        """Get registry URL from environment or config"""
        return os.environ.get("REGISTRY_URL") or self._section("registry").get("url")

    def get_registry_username(self) -> Optional[str]:
        return os.environ.get("REGISTRY_USERNAME") or self._section("registry").get("username")

    def get_registry_password(self) -> Optional[str]:
        return os.environ.get("REGISTRY_PASSWORD") or self._section("registry").get("password")

    def get_registry_token(self) -> Optional[str]:
        """Get registry token.
        Priority: env REGISTRY_TOKEN -> config.registry.token -> env GITHUB_TOKEN
        """
        return (
            os.environ.get("REGISTRY_TOKEN") or self._section("registry").get("token") or os.environ.get("GITHUB_TOKEN")
        )

    def get_owner(self) -> Optional[str]:
        return (
            os.environ.get("REGISTRY_OWNER")
            or self._section("registry").get("owner")
            or os.environ.get("GITHUB_REPOSITORY_OWNER")
        )

    def get_packages(self) -> Tuple[str, ...]:
        return _as_list("registry.packages", self._section("registry").get("packages"))

    # HTTP configuration
    def get_retry(self) -> int:
        """Get retry count from config, with type coercion"""
        return _as_optional_int("http.retry", self._section("http").get("retry", 3)) or 0

    def get_throttle(self) -> int:
        """Get retry throttle (milliseconds) from config, with type coercion"""
        return _as_optional_int("http.throttle", self._section("http").get("throttle", 1000)) or 0

    def get_timeout(self) -> float:
        """Get per-request timeout (seconds) from config, with type coercion"""
        timeout = self._section("http").get("timeout", 30)
        try:
            return float(timeout)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"http.timeout must be a number, got: {timeout} (type: {type(timeout).__name__})"
            )

    # Logging, security and reports
    def is_verbose(self) -> bool:
        return _as_bool("logging.verbose", self._section("logging").get("verbose", False))

    def requires_confirmation(self) -> bool:
        """Get confirmation requirement from config"""
        return _as_bool("security.require_confirmation", self._section("security").get("require_confirmation", True))

    def get_output_dir(self) -> str:
        return self._section("reports").get("output_dir") or "reports"

    def resolve_report_path(self, path: str) -> str:
        """Place a bare report filename under reports.output_dir; paths with a directory are kept as given"""
        if os.path.isabs(path) or os.path.basename(path) != path:
            return path
        return os.path.join(self.get_output_dir(), path)

    def is_dry_run(self) -> bool:
        """DRY_RUN env var overrides cleanup.dry_run"""
        value = os.environ.get("DRY_RUN")
        if value is None:
            value = self._section("cleanup").get("dry_run", True)
        return _as_bool("cleanup.dry_run", value)

    def get_cleanup_config(self) -> CleanupConfig:
        """Build the immutable cleanup policy from config"""
        cleanup = self._section("cleanup")
        registry = self._section("registry")
        return CleanupConfig(
            dry_run=self.is_dry_run(),
            keep_n_tagged=_as_optional_int("cleanup.keep_n_tagged", cleanup.get("keep_n_tagged")),
            keep_n_untagged=_as_optional_int("cleanup.keep_n_untagged", cleanup.get("keep_n_untagged")),
            delete_untagged=_as_bool("cleanup.delete_untagged", cleanup.get("delete_untagged", False)),
            delete_tags=_as_list("cleanup.delete_tags", cleanup.get("delete_tags")),
            exclude_tags=_as_list("cleanup.exclude_tags", cleanup.get("exclude_tags")),
            older_than=cleanup.get("older_than") or None,
            delete_ghost_images=_as_bool("cleanup.delete_ghost_images", cleanup.get("delete_ghost_images", False)),
            delete_partial_images=_as_bool(
                "cleanup.delete_partial_images", cleanup.get("delete_partial_images", False)
            ),
            delete_orphaned_images=_as_bool(
                "cleanup.delete_orphaned_images", cleanup.get("delete_orphaned_images", False)
            ),
            validate=_as_bool("cleanup.validate", cleanup.get("validate", False)),
            retry=self.get_retry(),
            throttle=self.get_throttle(),
            expand_packages=_as_bool("registry.expand_packages", registry.get("expand_packages", False)),
            use_regex=_as_bool("registry.use_regex", registry.get("use_regex", False)),
        )

    def get_provider_config(self) -> ProviderConfig:
        """Build the immutable provider connection settings from config and environment"""
        registry = self._section("registry")
        return ProviderConfig(
            registry_type=self.get_registry_type(),
            registry_url=self.get_registry_url(),
            token=self.get_registry_token(),
            username=self.get_registry_username(),
            password=self.get_registry_password(),
            owner=self.get_owner(),
            repository=registry.get("repository"),
            packages=self.get_packages(),
            owner_type=registry.get("owner_type") or "users",
            skip_certificate_check=_as_bool(
                "registry.skip_certificate_check", registry.get("skip_certificate_check", False)
            ),
        )

    def validate_config(self) -> None:
        """Validate configuration values

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        errors: List[str] = []
        warnings: List[str] = []

        try:
            cleanup = self.get_cleanup_config()
        except ConfigValidationError as e:
            errors.append(str(e))
        else:
            errors.extend(cleanup_config_errors(cleanup))
            if cleanup.retry > 10:
                warnings.append(f"retry is very high ({cleanup.retry}), operations may take a long time")
            if cleanup.delete_untagged and cleanup.keep_n_untagged is not None:
                warnings.append("delete_untagged is set, keep_n_untagged will be ignored")

        try:
            errors.extend(provider_config_errors(self.get_provider_config()))
        except ConfigValidationError as e:
            errors.append(str(e))

        try:
            if self.get_timeout() <= 0:
                errors.append(f"http.timeout must be a positive number (seconds), got: {self.get_timeout()}")
        except ConfigValidationError as e:
            errors.append(str(e))

        # Log warnings
        for warning in warnings:
            logging.warning(f"Configuration warning: {warning}")

        # Raise error if there are validation errors
        if errors:
            error_msg = "Configuration validation failed:\n  " + "\n  ".join(errors)
            logging.error(error_msg)
            raise ConfigValidationError(error_msg)

    def print_config(self):
        """Print current configuration"""
        provider = self.get_provider_config()
        cleanup = self.get_cleanup_config()
        print("Current Configuration:")
        print(f"  Registry Type: {provider.registry_type}")
        print(f"  Registry URL: {provider.registry_url or 'Not set'}")
        print(f"  Owner: {provider.owner or 'Not set'}")
        print(f"  Packages: {', '.join(provider.packages) or 'All'}")
        print(f"  Dry Run: {cleanup.dry_run}")
        print(f"  Retry / Throttle: {cleanup.retry} / {cleanup.throttle}ms")
        print(f"  Require Confirmation: {self.requires_confirmation()}")
        print(f"  Output Directory: {self.get_output_dir()}")
        print(f"  Registry Token: {'*' * 8 if provider.token else 'Not set'}")
        if provider.password:
            print(f"  Registry Password: {'*' * len(provider.password)}")
        else:
            print("  Registry Password: Not set")
