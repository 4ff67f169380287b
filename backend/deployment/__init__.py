"""
Deployment module for Deckhand

Turns project definitions into running containers.

Components:
    - state_machine: Project status transitions
    - traefik_labels: Routing label synthesis
    - runtime / image_runtime / compose_runtime: Runtime adapters
    - orchestrator: Deploy pipeline and lifecycle operations
    - routes: API endpoints for projects
"""

from .state_machine import ProjectStateMachine, InvalidTransitionError
from .runtime import (
    RuntimeAdapter,
    RuntimeAdapterError,
    ImagePullError,
    ContainerExitedError,
    ContainerTimeoutError,
    ComposeFileNotFoundError,
    ComposeError,
)
from .image_runtime import ImageRuntime
from .compose_runtime import ComposeRuntime
from .orchestrator import ProjectOrchestrator, DeployInProgressError

__all__ = [
    "ProjectStateMachine",
    "InvalidTransitionError",
    "RuntimeAdapter",
    "RuntimeAdapterError",
    "ImagePullError",
    "ContainerExitedError",
    "ContainerTimeoutError",
    "ComposeFileNotFoundError",
    "ComposeError",
    "ImageRuntime",
    "ComposeRuntime",
    "ProjectOrchestrator",
    "DeployInProgressError",
]
