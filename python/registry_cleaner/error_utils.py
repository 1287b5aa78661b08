"""
Error types and actionable error messages.

Registry and transport failures raise RegistryError (or a subclass) carrying the
HTTP status code when one is known, so callers can branch on authentication vs
not-found vs generic failure. ActionableError wraps fatal failures with
suggested fixes for the person running the cleanup.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class RegistryError(Exception):
    """Failure talking to a registry"""

    def __init__(self, message: str, status_code: Optional[int] = None, registry_type: Optional[str] = None):
        self.message = message
        self.status_code = status_code
        self.registry_type = registry_type
        super().__init__(message)

    @property
    def is_client_error(self) -> bool:
        return self.status_code is not None and 400 <= self.status_code < 500


class AuthenticationError(RegistryError):
    def __init__(self, message: str, registry_type: Optional[str] = None):
        super().__init__(message, 401, registry_type)


class NotFoundError(RegistryError):
    def __init__(self, message: str, registry_type: Optional[str] = None):
        super().__init__(message, 404, registry_type)


class PolicyRejectionError(RegistryError):
    """The registry refuses the operation by policy rather than by failure.

    Example: GHCR cannot remove a single tag from a package version that
    carries several tags.
    """


class ConfigValidationError(Exception):
    """Raised when configuration validation fails"""


class ErrorCategory(Enum):
    CONNECTION = "connection"
    AUTHENTICATION = "authentication"
    CONFIGURATION = "configuration"


class ActionableError(Exception):
    """A fatal failure presented with the fixes most likely to help"""

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        suggestions: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.category = category
        self.suggestions = suggestions or []
        self.details = details or {}
        super().__init__(message)

    def format_message(self) -> str:
        lines = [f"❌ {self.category.value} error: {self.message}"]
        if self.suggestions:
            lines.append("💡 Try:")
            lines.extend(f"   - {suggestion}" for suggestion in self.suggestions)
        for key, value in self.details.items():
            if value not in (None, ""):
                lines.append(f"   {key}: {value}")
        return "\n".join(lines)


def _failure_details(registry_url: str, error: Exception) -> Dict[str, Any]:
    details: Dict[str, Any] = {"registry": registry_url, "cause": f"{type(error).__name__}: {error}"}
    status_code = getattr(error, "status_code", None)
    if status_code is not None:
        details["status"] = status_code
    return details


def create_registry_connection_error(registry_url: str, error: Exception) -> ActionableError:
    text = str(error).lower()
    suggestions = [f"Check that {registry_url} is reachable from this machine"]
    if "timed out" in text or "timeout" in text:
        suggestions.append("Raise http.timeout (or --timeout) for slow registries")
    if "name resolution" in text or "dns" in text:
        suggestions.append("Check the registry hostname resolves")
    status_code = getattr(error, "status_code", None)
    if status_code is not None and status_code >= 500:
        suggestions.append("The registry is failing; retry later or raise --retry and --throttle")
    if status_code == 403:
        suggestions.append("The credentials lack permission for this operation")
    suggestions.append("Run with --verbose to log every request")
    return ActionableError(
        f"Cleanup aborted talking to {registry_url}",
        ErrorCategory.CONNECTION,
        suggestions,
        _failure_details(registry_url, error),
    )


def create_registry_auth_error(registry_url: str, error: Exception) -> ActionableError:
    if "ghcr.io" in registry_url:
        suggestions = [
            "Set REGISTRY_TOKEN or GITHUB_TOKEN to a token with read:packages and delete:packages",
            "Set --owner-type orgs when the packages belong to an organization",
        ]
    else:
        suggestions = [
            "Set REGISTRY_TOKEN for bearer auth, or REGISTRY_USERNAME and REGISTRY_PASSWORD for basic auth",
            "Check the credentials have not expired",
        ]
    return ActionableError(
        f"Registry {registry_url} rejected the credentials",
        ErrorCategory.AUTHENTICATION,
        suggestions,
        _failure_details(registry_url, error),
    )


def create_config_error(reason: str) -> ActionableError:
    lowered = reason.lower()
    suggestions = []
    if "older-than" in lowered or "older_than" in lowered:
        suggestions.append('Use a number and a unit: "30d", "2w", "1m" or "1y"')
    if "registry-url" in lowered:
        suggestions.append("Pass --registry-url or set registry.url (e.g. registry.example.com:5000)")
    if "token" in lowered or "owner" in lowered:
        suggestions.append("GHCR needs --token (or GITHUB_TOKEN) and --owner")
    suggestions.append("Compare your settings with config-example.yaml")
    return ActionableError(reason, ErrorCategory.CONFIGURATION, suggestions)
