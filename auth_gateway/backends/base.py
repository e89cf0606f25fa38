"""
Base backend interface for the auth gateway.

This module defines the abstract base class that every backend integration must
implement. A backend mirrors user, organization and membership changes into one
external system (a directory tree, a warehouse, ...).
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


class BackendOperationError(Exception):
    """Raised when a single backend cannot complete an operation."""

    def __init__(self, backend: str, operation: str, cause: Optional[BaseException] = None):
        self.backend = backend
        self.operation = operation
        self.cause = cause
        message = f"{backend} failed {operation}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class Backend(ABC):
    """
    Abstract base class for backend integrations.

    All backend modules must inherit from this class and implement the six
    provisioning operations. Implementations must be idempotent: calling an
    operation twice with the same arguments converges on the same state and
    does not raise. Operations that mean nothing for a backend are no-ops.

    Instances are built once at startup and shared by concurrent invocations,
    so they must not keep per-call mutable state.
    """

    def __init__(self, name: str):
        self.name = name

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'Backend':
        """
        Build a backend from its configuration section.

        Args:
            config: Backend configuration dictionary

        Returns:
            Configured backend instance
        """
        return cls(config['name'])

    def get_name(self) -> str:
        """Stable identifier used for logging and error attribution."""
        return self.name

    def check_health(self) -> bool:
        """
        Probe the external system.

        Returns:
            True if the backend is reachable
        """
        return True

    @abstractmethod
    def add_user(self, user_id: str, user_name: str) -> None:
        """
        Provision a new user.

        Args:
            user_id: Platform user identifier
            user_name: User display name
        """
        pass

    @abstractmethod
    def add_organization(self, org_id: str, org_name: str) -> None:
        """
        Provision a new organization.

        Args:
            org_id: Platform organization identifier
            org_name: Organization display name
        """
        pass

    @abstractmethod
    def add_user_to_org(self, user_id: str, org_id: str) -> None:
        """
        Link a user to an organization.

        Args:
            user_id: Platform user identifier
            org_id: Platform organization identifier
        """
        pass

    @abstractmethod
    def remove_user(self, user_id: str, user_name: str) -> None:
        """Remove a user."""
        pass

    @abstractmethod
    def remove_organization(self, org_id: str, org_name: str) -> None:
        """Remove an organization and everything provisioned for it."""
        pass

    @abstractmethod
    def remove_user_from_org(self, user_id: str, org_id: str) -> None:
        """Unlink a user from an organization."""
        pass

    def close(self) -> None:
        """Release any resources held by the backend."""
        pass

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    def __repr__(self):
        return f"{type(self).__name__}(name={self.name!r})"
