"""
Project domain types.

A Project is the unit of deployment: a container image or a git-hosted
compose stack, plus routing and lifecycle state. Instances are plain
dataclasses detached from the database session, so they can be passed
between the store, the orchestrator and the watcher freely.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


class ProjectStatus(str, Enum):
    """Lifecycle status of a project."""
    PENDING = "pending"
    DEPLOYING = "deploying"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


class DeployKind(str, Enum):
    """How a project is turned into running containers."""
    IMAGE = "image"
    COMPOSE = "compose"


DEFAULT_PORT = 80


@dataclass
class Project:
    """A user-defined deployable unit (image or compose stack)."""
    id: str
    name: str
    git_url: str = ""
    branch: str = ""
    deploy_kind: DeployKind = DeployKind.IMAGE
    image: str = ""
    domain: str = ""
    use_subdomain: bool = False
    port: int = DEFAULT_PORT
    main_service: str = ""
    env_vars: Dict[str, str] = field(default_factory=dict)
    auto_deploy: bool = False
    last_commit: str = ""
    status: ProjectStatus = ProjectStatus.PENDING
    status_message: str = ""
    container_ids: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def effective_port(self) -> int:
        """Port the proxy should route to (80 when unset or zero)."""
        return self.port if self.port and self.port > 0 else DEFAULT_PORT

    def effective_domain(self, base_domain: str) -> str:
        """
        Resolve the domain this project is served on.

        An explicit domain always wins. Otherwise, when use_subdomain is set
        and a base domain is configured, the domain is <name>.<base_domain>.
        An empty result means routing is disabled for the project.
        """
        if self.domain:
            return self.domain
        if self.use_subdomain and base_domain:
            return f"{self.name}.{base_domain}"
        return ""


def env_vars_to_json(env_vars: Optional[Dict[str, str]]) -> str:
    """Serialize env vars for the text column (None -> '{}')."""
    return json.dumps(env_vars or {}, sort_keys=True)


def env_vars_from_json(data: Optional[str]) -> Dict[str, str]:
    """Parse the env vars text column back into a dict."""
    if not data:
        return {}
    parsed = json.loads(data)
    if not isinstance(parsed, dict):
        raise ValueError("env_vars column does not contain a JSON object")
    return {str(k): str(v) for k, v in parsed.items()}


def container_ids_to_json(container_ids: Optional[List[str]]) -> str:
    """Serialize handle list for the text column (None -> '[]')."""
    return json.dumps(list(container_ids or []))


def container_ids_from_json(data: Optional[str]) -> List[str]:
    """Parse the container_ids text column back into a list."""
    if not data:
        return []
    parsed = json.loads(data)
    if not isinstance(parsed, list):
        raise ValueError("container_ids column does not contain a JSON array")
    return [str(item) for item in parsed]


def parse_env_text(text: str) -> Dict[str, str]:
    """
    Parse KEY=VALUE lines into a dict.

    Blank lines and lines starting with '#' are ignored, as are lines
    without '='. Later duplicates override earlier ones.

    Examples:
        >>> parse_env_text("A=1\\n# comment\\nB = two\\n")
        {'A': '1', 'B': 'two'}
    """
    env_vars: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        key, sep, value = line.partition('=')
        if not sep:
            continue
        key = key.strip()
        if key:
            env_vars[key] = value.strip()
    return env_vars
