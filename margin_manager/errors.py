"""Exceptions raised by the margin management system."""

from __future__ import annotations

from .models import DeploymentStatus


class MarginError(Exception):
    """Base class for margin management failures."""


class UnknownDeploymentError(MarginError, KeyError):
    def __init__(self, deployment_id: str) -> None:
        super().__init__(deployment_id)
        self.deployment_id = deployment_id

    def __str__(self) -> str:
        return f"unknown margin deployment: {self.deployment_id}"


class DeploymentTransitionError(MarginError, ValueError):
    def __init__(
        self,
        deployment_id: str,
        current: DeploymentStatus,
        requested: DeploymentStatus,
    ) -> None:
        super().__init__(
            f"deployment {deployment_id} cannot move from {current.value} to {requested.value}"
        )
        self.deployment_id = deployment_id
        self.current = current
        self.requested = requested


__all__ = ["DeploymentTransitionError", "MarginError", "UnknownDeploymentError"]
