"""
Unit tests for the project store (DatabaseManager).

Tests verify:
- CRUD round trip including JSON columns
- Name uniqueness
- Not-found handling on every id-based operation
- Status, commit and handle updates
"""

import json

import pytest
from sqlalchemy import text

from database import DatabaseManager, DuplicateProjectError, ProjectNotFoundError
from models.project import DeployKind, ProjectStatus


class TestCreateAndRead:
    """Tests for create_project / get_project"""

    def test_create_and_get(self, db_manager: DatabaseManager, make_project):
        project = make_project(env_vars={"A": "1", "B": "two"}, domain="app.example.com")

        created = db_manager.create_project(project)
        fetched = db_manager.get_project(project.id)

        assert created.id == project.id
        assert fetched.name == "webapp"
        assert fetched.env_vars == {"A": "1", "B": "two"}
        assert fetched.domain == "app.example.com"
        assert fetched.deploy_kind == DeployKind.IMAGE
        assert fetched.status == ProjectStatus.PENDING
        assert fetched.container_ids == []
        assert fetched.created_at is not None

    def test_json_columns_stored_as_text(self, db_manager, make_project):
        project = make_project(env_vars={"KEY": "value"})
        db_manager.create_project(project)
        db_manager.update_container_ids(project.id, ["c1", "c2"])

        with db_manager.engine.connect() as conn:
            row = conn.execute(
                text("SELECT env_vars, container_ids FROM projects WHERE id = :id"),
                {"id": project.id},
            ).one()

        assert json.loads(row[0]) == {"KEY": "value"}
        assert json.loads(row[1]) == ["c1", "c2"]

    def test_get_by_name(self, db_manager, make_project):
        project = make_project(name="blog")
        db_manager.create_project(project)
        assert db_manager.get_project_by_name("blog").id == project.id

    def test_duplicate_name_rejected(self, db_manager, make_project):
        db_manager.create_project(make_project(name="same"))
        with pytest.raises(DuplicateProjectError):
            db_manager.create_project(make_project(name="same"))

    def test_missing_project_raises(self, db_manager):
        with pytest.raises(ProjectNotFoundError):
            db_manager.get_project("nope")
        with pytest.raises(ProjectNotFoundError):
            db_manager.get_project_by_name("nope")


class TestListing:
    """Tests for list operations"""

    def test_list_projects(self, db_manager, make_project):
        db_manager.create_project(make_project(name="one"))
        db_manager.create_project(make_project(name="two"))
        assert {p.name for p in db_manager.list_projects()} == {"one", "two"}

    def test_list_auto_deploy_enabled(self, db_manager, make_project):
        db_manager.create_project(make_project(name="auto", auto_deploy=True))
        db_manager.create_project(make_project(name="manual", auto_deploy=False))
        assert [p.name for p in db_manager.list_auto_deploy_enabled()] == ["auto"]

    def test_list_by_status(self, db_manager, make_project):
        a = make_project(name="a")
        b = make_project(name="b")
        db_manager.create_project(a)
        db_manager.create_project(b)
        db_manager.update_status(b.id, ProjectStatus.DEPLOYING)

        assert [p.id for p in db_manager.list_by_status(ProjectStatus.DEPLOYING)] == [b.id]


class TestUpdates:
    """Tests for update operations"""

    def test_update_project_fields(self, db_manager, make_project):
        project = make_project()
        db_manager.create_project(project)

        updated = db_manager.update_project(project.id, {"image": "nginx:1.27", "env_vars": {"X": "y"}, "port": 3000})

        assert updated.image == "nginx:1.27"
        assert updated.env_vars == {"X": "y"}
        assert updated.port == 3000

    def test_name_cannot_be_updated(self, db_manager, make_project):
        project = make_project()
        db_manager.create_project(project)
        with pytest.raises(ValueError):
            db_manager.update_project(project.id, {"name": "renamed"})
        assert db_manager.get_project(project.id).name == "webapp"

    def test_update_status_and_message(self, db_manager, make_project):
        project = make_project()
        db_manager.create_project(project)

        db_manager.update_status(project.id, ProjectStatus.ERROR, "boom")

        fetched = db_manager.get_project(project.id)
        assert fetched.status == ProjectStatus.ERROR
        assert fetched.status_message == "boom"

    def test_update_status_rejects_unknown_value(self, db_manager, make_project):
        project = make_project()
        db_manager.create_project(project)
        with pytest.raises(ValueError):
            db_manager.update_status(project.id, "exploded")

    def test_update_last_commit(self, db_manager, make_project):
        project = make_project()
        db_manager.create_project(project)
        db_manager.update_last_commit(project.id, "f" * 40)
        assert db_manager.get_project(project.id).last_commit == "f" * 40

    @pytest.mark.parametrize("operation", [
        lambda db: db.update_project("missing", {"image": "x"}),
        lambda db: db.update_status("missing", ProjectStatus.RUNNING),
        lambda db: db.update_last_commit("missing", "abc"),
        lambda db: db.update_container_ids("missing", []),
        lambda db: db.delete_project("missing"),
    ])
    def test_missing_id_raises(self, db_manager, operation):
        with pytest.raises(ProjectNotFoundError):
            operation(db_manager)


class TestDelete:
    """Tests for delete_project"""

    def test_delete_then_not_found(self, db_manager, make_project):
        project = make_project()
        db_manager.create_project(project)

        db_manager.delete_project(project.id)

        with pytest.raises(ProjectNotFoundError):
            db_manager.get_project(project.id)
        with pytest.raises(ProjectNotFoundError):
            db_manager.delete_project(project.id)

    def test_name_reusable_after_delete(self, db_manager, make_project):
        first = make_project(name="reuse")
        db_manager.create_project(first)
        db_manager.delete_project(first.id)

        db_manager.create_project(make_project(name="reuse"))
        assert db_manager.get_project_by_name("reuse").id != first.id
