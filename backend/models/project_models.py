"""
Project Models for Deckhand API Endpoints

Pydantic models for project definitions.
- Request models for validation
- Response models built from Project dataclasses
- Field validators shared between create and update
"""

import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from models.project import DEFAULT_PORT, DeployKind, Project, parse_env_text


# =============================================================================
# Shared Validation Helpers
# =============================================================================

_VALID_URL_PREFIXES = ('https://', 'http://', 'git@', 'ssh://')
_DANGEROUS_URL_CHARS = (';', '|', '&', '$', '`', '\n', '\r')

# Used as container name, compose project name and checkout directory
_NAME_PATTERN = re.compile(r'^[a-z0-9][a-z0-9_-]*$')
_DOMAIN_PATTERN = re.compile(r'^[A-Za-z0-9]([A-Za-z0-9.-]*[A-Za-z0-9])?$')
_ENV_KEY_PATTERN = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


def _validate_name(v: Optional[str]) -> Optional[str]:
    """Validate project name."""
    if v is None:
        return None
    v = v.strip()
    if not v:
        raise ValueError('Project name is required')
    if not _NAME_PATTERN.match(v):
        raise ValueError(
            'Project name may only contain lowercase letters, digits, - and _, '
            'and must start with a letter or digit'
        )
    return v


def _validate_url(v: Optional[str]) -> Optional[str]:
    """Validate git repository URL (empty = no source tracking)."""
    if v is None:
        return None
    v = v.strip()
    if not v:
        return ''
    if not any(v.startswith(prefix) for prefix in _VALID_URL_PREFIXES):
        raise ValueError('Repository URL must start with https://, http://, git@, or ssh://')
    if ' ' in v:
        raise ValueError('Repository URL cannot contain spaces')
    if any(c in v for c in _DANGEROUS_URL_CHARS):
        raise ValueError('Repository URL contains invalid characters')
    return v


def _validate_branch(v: Optional[str]) -> Optional[str]:
    """Validate git branch name (empty = detect default branch)."""
    if v is None:
        return None
    v = v.strip()
    if not v:
        return ''
    if v.startswith('-') or v.startswith('.'):
        raise ValueError('Branch name cannot start with - or .')
    if '..' in v:
        raise ValueError('Branch name cannot contain ..')
    if v.endswith('.lock'):
        raise ValueError('Branch name cannot end with .lock')
    if not re.match(r'^[a-zA-Z0-9/_.-]+$', v):
        raise ValueError('Branch name contains invalid characters')
    return v


def _validate_domain(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip().lower()
    if v and not _DOMAIN_PATTERN.match(v):
        raise ValueError('Domain contains invalid characters')
    return v


def _validate_env_vars(v: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
    if v is None:
        return None
    for key in v:
        if not _ENV_KEY_PATTERN.match(key):
            raise ValueError(f'Invalid environment variable name: {key}')
    return v


def _merge_env(env_vars: Optional[Dict[str, str]], env_text: Optional[str]) -> Optional[Dict[str, str]]:
    """Combine the env_vars map with KEY=VALUE text; text entries win."""
    if env_text is None:
        return env_vars
    merged = dict(env_vars or {})
    merged.update(parse_env_text(env_text))
    _validate_env_vars(merged)
    return merged


# =============================================================================
# Project Models
# =============================================================================


class ProjectCreate(BaseModel):
    """Request model for creating a project."""
    name: str = Field(..., min_length=1, max_length=63)
    git_url: str = Field(default='', max_length=500)
    branch: str = Field(default='', max_length=100)
    deploy_kind: DeployKind = DeployKind.IMAGE
    image: str = Field(default='', max_length=500)
    domain: str = Field(default='', max_length=253)
    use_subdomain: bool = False
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    main_service: str = Field(default='', max_length=100)
    env_vars: Dict[str, str] = Field(default_factory=dict)
    env_text: Optional[str] = Field(None, description="KEY=VALUE lines, merged over env_vars")
    auto_deploy: bool = False

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _validate_name(v)

    @field_validator('git_url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        return _validate_url(v)

    @field_validator('branch')
    @classmethod
    def validate_branch(cls, v: str) -> str:
        return _validate_branch(v)

    @field_validator('domain')
    @classmethod
    def validate_domain(cls, v: str) -> str:
        return _validate_domain(v)

    @field_validator('env_vars')
    @classmethod
    def validate_env_vars(cls, v: Dict[str, str]) -> Dict[str, str]:
        return _validate_env_vars(v)

    @model_validator(mode='after')
    def check_source(self) -> 'ProjectCreate':
        if self.deploy_kind == DeployKind.IMAGE and not self.image.strip():
            raise ValueError('Image projects require an image')
        if self.deploy_kind == DeployKind.COMPOSE and not self.git_url:
            raise ValueError('Compose projects require a git URL')
        return self

    def to_fields(self) -> Dict[str, Any]:
        """Project fields for the orchestrator (env_text folded into env_vars)."""
        fields = self.model_dump(exclude={'env_text'})
        fields['image'] = self.image.strip()
        fields['env_vars'] = _merge_env(self.env_vars, self.env_text)
        return fields


class ProjectUpdate(BaseModel):
    """Request model for updating a project. Only fields that are set are changed."""
    name: Optional[str] = Field(None, max_length=63)
    git_url: Optional[str] = Field(None, max_length=500)
    branch: Optional[str] = Field(None, max_length=100)
    deploy_kind: Optional[DeployKind] = None
    image: Optional[str] = Field(None, max_length=500)
    domain: Optional[str] = Field(None, max_length=253)
    use_subdomain: Optional[bool] = None
    port: Optional[int] = Field(None, ge=1, le=65535)
    main_service: Optional[str] = Field(None, max_length=100)
    env_vars: Optional[Dict[str, str]] = None
    env_text: Optional[str] = Field(None, description="KEY=VALUE lines, replaces env_vars when given alone")
    auto_deploy: Optional[bool] = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        return _validate_name(v)

    @field_validator('git_url')
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        return _validate_url(v)

    @field_validator('branch')
    @classmethod
    def validate_branch(cls, v: Optional[str]) -> Optional[str]:
        return _validate_branch(v)

    @field_validator('domain')
    @classmethod
    def validate_domain(cls, v: Optional[str]) -> Optional[str]:
        return _validate_domain(v)

    @field_validator('env_vars')
    @classmethod
    def validate_env_vars(cls, v: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
        return _validate_env_vars(v)

    def to_updates(self) -> Dict[str, Any]:
        """Fields explicitly set in the request, with env_text folded into env_vars."""
        updates = {
            key: value
            for key, value in self.model_dump(exclude_unset=True, exclude={'env_text'}).items()
            if value is not None
        }
        if self.env_text is not None:
            updates['env_vars'] = _merge_env(self.env_vars, self.env_text)
        return updates


class ProjectResponse(BaseModel):
    """Response model for a project."""
    id: str
    name: str
    git_url: str
    branch: str
    deploy_kind: DeployKind
    image: str
    domain: str
    use_subdomain: bool
    port: int
    main_service: str
    env_vars: Dict[str, str]
    auto_deploy: bool
    last_commit: str
    status: str
    status_message: str
    container_ids: List[str]
    effective_domain: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_project(cls, project: Project, base_domain: str) -> 'ProjectResponse':
        """Create response from a Project."""
        return cls(
            id=project.id,
            name=project.name,
            git_url=project.git_url,
            branch=project.branch,
            deploy_kind=project.deploy_kind,
            image=project.image,
            domain=project.domain,
            use_subdomain=project.use_subdomain,
            port=project.port,
            main_service=project.main_service,
            env_vars=project.env_vars,
            auto_deploy=project.auto_deploy,
            last_commit=project.last_commit,
            status=project.status.value,
            status_message=project.status_message,
            container_ids=project.container_ids,
            effective_domain=project.effective_domain(base_domain),
            created_at=project.created_at.isoformat() + 'Z' if project.created_at else None,
            updated_at=project.updated_at.isoformat() + 'Z' if project.updated_at else None,
        )


class CheckResponse(BaseModel):
    """Response model for a manual update check."""
    updated: bool
    project: ProjectResponse


class LabelsResponse(BaseModel):
    """Response model for the routing label preview."""
    domain: str
    labels: Dict[str, str]
