"""
Database models and operations for Deckhand
Uses SQLite for persistent storage of project definitions and status
"""

from datetime import datetime, timezone
from typing import List, Dict, Any
from sqlalchemy import create_engine, Column, String, Integer, Boolean, DateTime, Text, Index, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
import os
import logging

from models.project import (
    DeployKind,
    Project,
    ProjectStatus,
    container_ids_from_json,
    container_ids_to_json,
    env_vars_from_json,
    env_vars_to_json,
)

logger = logging.getLogger(__name__)


def utcnow():
    """Helper to get timezone-aware UTC datetime for database defaults"""
    return datetime.now(timezone.utc)


Base = declarative_base()


class ProjectNotFoundError(LookupError):
    """Raised when a project id or name does not exist in the store."""

    def __init__(self, key: str):
        super().__init__(f"Project not found: {key}")
        self.key = key


class DuplicateProjectError(ValueError):
    """Raised when creating a project whose name is already taken."""

    def __init__(self, name: str):
        super().__init__(f"A project named '{name}' already exists")
        self.name = name


class ProjectRecord(Base):
    """Persisted project definition and status"""
    __tablename__ = "projects"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False, unique=True)
    git_url = Column(String, nullable=False, default='')
    branch = Column(String, nullable=False, default='main')
    deploy_kind = Column(String, nullable=False, default=DeployKind.IMAGE.value)
    image = Column(String, nullable=False, default='')
    domain = Column(String, nullable=False, default='')
    use_subdomain = Column(Boolean, nullable=False, default=False)
    port = Column(Integer, nullable=False, default=80)
    main_service = Column(String, nullable=False, default='')
    env_vars = Column(Text, nullable=False, default='{}')  # JSON object
    auto_deploy = Column(Boolean, nullable=False, default=False)
    last_commit = Column(String, nullable=False, default='')
    status = Column(String, nullable=False, default=ProjectStatus.PENDING.value)
    status_message = Column(Text, nullable=False, default='')
    container_ids = Column(Text, nullable=False, default='[]')  # JSON array
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('idx_projects_status', 'status'),
        Index('idx_projects_auto_deploy', 'auto_deploy'),
    )


# Columns a full update may write; id, status and timestamps have dedicated paths
_UPDATABLE_FIELDS = (
    'git_url', 'branch', 'deploy_kind', 'image', 'domain', 'use_subdomain',
    'port', 'main_service', 'env_vars', 'auto_deploy',
)


def _to_project(record: ProjectRecord) -> Project:
    """Convert an ORM record into a detached Project, parsing the JSON blobs."""
    return Project(
        id=record.id,
        name=record.name,
        git_url=record.git_url or '',
        branch=record.branch or '',
        deploy_kind=DeployKind(record.deploy_kind),
        image=record.image or '',
        domain=record.domain or '',
        use_subdomain=bool(record.use_subdomain),
        port=record.port or 0,
        main_service=record.main_service or '',
        env_vars=env_vars_from_json(record.env_vars),
        auto_deploy=bool(record.auto_deploy),
        last_commit=record.last_commit or '',
        status=ProjectStatus(record.status),
        status_message=record.status_message or '',
        container_ids=container_ids_from_json(record.container_ids),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _column_value(field_name: str, value: Any) -> Any:
    """Map a Project attribute value onto its column representation."""
    if field_name == 'env_vars':
        return env_vars_to_json(value)
    if field_name == 'container_ids':
        return container_ids_to_json(value)
    if field_name in ('deploy_kind', 'status'):
        return value.value if hasattr(value, 'value') else str(value)
    return value


class DatabaseManager:
    """
    Project store backed by SQLite.

    Every operation opens its own session and commits before returning, so
    individual updates are atomic. Nothing spans a whole deploy run.
    Missing ids/names raise ProjectNotFoundError; SQLAlchemy errors propagate.
    """

    def __init__(self, db_path: str = "data/deckhand.db"):
        self.db_path = db_path

        # Ensure data directory exists
        data_dir = os.path.dirname(db_path)
        if data_dir:
            os.makedirs(data_dir, exist_ok=True)
            try:
                os.chmod(data_dir, 0o700)
            except OSError as e:
                logger.warning(f"Could not set permissions on data directory {data_dir}: {e}")

        self.engine = create_engine(
            f"sqlite:///{db_path}",
            connect_args={
                "check_same_thread": False,
                "timeout": 20
            },
            poolclass=StaticPool,
            echo=False
        )

        self._configure_sqlite_pragmas()

        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

        # Create tables if they don't exist
        Base.metadata.create_all(bind=self.engine)

    def _configure_sqlite_pragmas(self):
        """
        Configure SQLite PRAGMA statements for performance and safety.

        - WAL mode: concurrent reads during writes
        - SYNCHRONOUS=NORMAL: safe with WAL, faster than FULL
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(text("PRAGMA journal_mode=WAL"))
                conn.execute(text("PRAGMA synchronous=NORMAL"))
                conn.execute(text("PRAGMA foreign_keys=ON"))
                conn.commit()
            logger.info("SQLite PRAGMA configuration applied successfully (WAL mode)")
        except Exception as e:
            logger.error(f"Failed to configure SQLite PRAGMAs: {e}", exc_info=True)
            # Non-fatal: SQLite will work with defaults

    def get_session(self) -> Session:
        """Get a database session"""
        return self.SessionLocal()

    def close(self):
        """Dispose the engine and its connections"""
        self.engine.dispose()

    def _get_record(self, session: Session, project_id: str) -> ProjectRecord:
        record = session.query(ProjectRecord).filter(ProjectRecord.id == project_id).first()
        if record is None:
            raise ProjectNotFoundError(project_id)
        return record

    # Project Operations
    def create_project(self, project: Project) -> Project:
        """Insert a new project. Raises DuplicateProjectError if the name is taken."""
        with self.get_session() as session:
            now = utcnow()
            record = ProjectRecord(
                id=project.id,
                name=project.name,
                status=_column_value('status', project.status),
                status_message=project.status_message,
                last_commit=project.last_commit,
                container_ids=container_ids_to_json(project.container_ids),
                created_at=now,
                updated_at=now,
            )
            for field_name in _UPDATABLE_FIELDS:
                setattr(record, field_name, _column_value(field_name, getattr(project, field_name)))

            session.add(record)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                if self._name_exists(session, project.name):
                    raise DuplicateProjectError(project.name) from e
                raise
            session.refresh(record)
            logger.info(f"Created project {project.name} ({project.id[:8]})")
            return _to_project(record)

    def _name_exists(self, session: Session, name: str) -> bool:
        return session.query(ProjectRecord.id).filter(ProjectRecord.name == name).first() is not None

    def get_project(self, project_id: str) -> Project:
        """Get a project by id"""
        with self.get_session() as session:
            return _to_project(self._get_record(session, project_id))

    def get_project_by_name(self, name: str) -> Project:
        """Get a project by its unique name"""
        with self.get_session() as session:
            record = session.query(ProjectRecord).filter(ProjectRecord.name == name).first()
            if record is None:
                raise ProjectNotFoundError(name)
            return _to_project(record)

    def list_projects(self) -> List[Project]:
        """Get all projects, newest first"""
        with self.get_session() as session:
            records = session.query(ProjectRecord).order_by(ProjectRecord.created_at.desc()).all()
            return [_to_project(r) for r in records]

    def list_auto_deploy_enabled(self) -> List[Project]:
        """Get all projects with auto-deploy enabled, oldest first"""
        with self.get_session() as session:
            records = (
                session.query(ProjectRecord)
                .filter(ProjectRecord.auto_deploy == True)  # noqa: E712
                .order_by(ProjectRecord.created_at)
                .all()
            )
            return [_to_project(r) for r in records]

    def list_by_status(self, status: ProjectStatus) -> List[Project]:
        """Get all projects currently in the given status"""
        with self.get_session() as session:
            records = session.query(ProjectRecord).filter(
                ProjectRecord.status == _column_value('status', status)
            ).all()
            return [_to_project(r) for r in records]

    def update_project(self, project_id: str, updates: Dict[str, Any]) -> Project:
        """
        Update definition fields of a project.

        Only the fields in _UPDATABLE_FIELDS are accepted; the name is
        immutable because it anchors routing and the checkout directory.
        """
        unknown = set(updates) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        with self.get_session() as session:
            try:
                record = self._get_record(session, project_id)
                for field_name, value in updates.items():
                    setattr(record, field_name, _column_value(field_name, value))
                record.updated_at = utcnow()
                session.commit()
                session.refresh(record)
                logger.info(f"Updated project {record.name} ({project_id[:8]})")
                return _to_project(record)
            except ProjectNotFoundError:
                raise
            except Exception as e:
                session.rollback()
                logger.error(f"Failed to update project {project_id[:8]}: {e}")
                raise

    def _update_columns(self, project_id: str, **columns) -> None:
        with self.get_session() as session:
            record = self._get_record(session, project_id)
            for column, value in columns.items():
                setattr(record, column, value)
            record.updated_at = utcnow()
            session.commit()

    def update_status(self, project_id: str, status: ProjectStatus, message: str = '') -> None:
        """Set the status and status message of a project"""
        status = ProjectStatus(status)
        self._update_columns(project_id, status=status.value, status_message=message or '')
        logger.debug(f"Project {project_id[:8]} status -> {status.value}")

    def update_last_commit(self, project_id: str, commit: str) -> None:
        """Record the last observed commit hash"""
        self._update_columns(project_id, last_commit=commit or '')

    def update_container_ids(self, project_id: str, container_ids: List[str]) -> None:
        """Replace the list of runtime handles owned by a project"""
        self._update_columns(project_id, container_ids=container_ids_to_json(container_ids))

    def delete_project(self, project_id: str) -> None:
        """Delete a project record"""
        with self.get_session() as session:
            try:
                record = self._get_record(session, project_id)
                name = record.name
                session.delete(record)
                session.commit()
                logger.info(f"Deleted project {name} ({project_id[:8]})")
            except ProjectNotFoundError:
                raise
            except Exception as e:
                session.rollback()
                logger.error(f"Failed to delete project {project_id[:8]}: {e}")
                raise
