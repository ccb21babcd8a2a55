"""
Tests for ProjectService.
"""

import pytest

from task_ledger.errors import ConflictError, NotFoundError, ValidationError
from task_ledger.projects import ProjectService

ORG = "org-test"
USER = "user-test"


class TestCreateProject:

    def test_key_derived_from_name(self, projects):
        project = projects.create_project(ORG, USER, name="Auth Service")
        assert project.key == "AUTH"
        assert project.version == 1
        assert project.is_current

    def test_collision_appends_digit(self, projects):
        first = projects.create_project(ORG, USER, name="Auth Service")
        second = projects.create_project(ORG, USER, name="Authentication")
        third = projects.create_project(ORG, USER, name="Authorization")
        assert (first.key, second.key, third.key) == ("AUTH", "AUTH2", "AUTH3")

    def test_keys_are_scoped_per_organization(self, projects):
        projects.create_project(ORG, USER, name="Auth Service")
        other = projects.create_project("other-org", USER, name="Auth Service")
        assert other.key == "AUTH"

    def test_explicit_key_uses_same_fallback(self, projects):
        projects.create_project(ORG, USER, name="Anything", key="CORE")
        assert projects.create_project(ORG, USER, name="Else", key="CORE").key == "CORE2"

    def test_all_key_candidates_taken(self, projects):
        for _ in range(9):
            projects.create_project(ORG, USER, name="Auth")
        with pytest.raises(ConflictError):
            projects.create_project(ORG, USER, name="Auth")

    def test_invalid_inputs(self, projects):
        with pytest.raises(ValidationError, match="need at least 2 alpha characters"):
            projects.create_project(ORG, USER, name="7")
        with pytest.raises(ValidationError):
            projects.create_project(ORG, USER, name="Fine", key="bad-key")


class TestProjectLifecycle:

    def test_get_and_not_found(self, projects, project):
        assert projects.get_project(ORG, "AUTH").project_id == project.project_id
        with pytest.raises(NotFoundError, match="Project not found"):
            projects.get_project(ORG, "NOPE")
        with pytest.raises(NotFoundError):
            projects.get_project("other-org", "AUTH")

    def test_update_appends_version(self, projects, project):
        updated = projects.update_project(ORG, "editor", "AUTH", name="Auth Platform")
        assert updated.version == 2
        assert updated.name == "Auth Platform"
        assert updated.created_by_user_id == "editor"

        versions = projects.get_project_versions(ORG, "AUTH")
        assert [v.version for v in versions] == [2, 1]
        assert [v.name for v in versions] == ["Auth Platform", "Auth Service"]

    def test_update_without_changes_keeps_version(self, projects, project):
        assert projects.update_project(ORG, USER, "AUTH").version == 1

    def test_delete_keeps_history(self, projects, project):
        deleted = projects.delete_project(ORG, USER, "AUTH")
        assert deleted.deleted_at is not None
        assert not deleted.is_current

        with pytest.raises(NotFoundError):
            projects.get_project(ORG, "AUTH")
        versions = projects.get_project_versions(ORG, "AUTH")
        assert [v.version for v in versions] == [2, 1]
        assert versions[0].deleted_at is not None

    def test_delete_cascades_to_children(self, projects, tasks, documents, project, db):
        a = tasks.create_task(ORG, USER, "AUTH", title="A")
        b = tasks.create_task(ORG, USER, "AUTH", title="B", depends_on=[a.key])
        doc = documents.create_document(ORG, USER, "AUTH", title="Notes")

        projects.delete_project(ORG, USER, "AUTH")

        with pytest.raises(NotFoundError):
            tasks.get_task(ORG, a.key)
        with pytest.raises(NotFoundError):
            documents.get_document(ORG, doc.key)
        assert tasks.get_task_versions(ORG, b.key)[0].deleted_at is not None
        assert db.get_dependency_ids([b.task_id]) == {b.task_id: []}
        assert db.get_position(a.task_id) is None

    def test_deleted_key_can_be_reused(self, projects, project):
        projects.delete_project(ORG, USER, "AUTH")
        again = projects.create_project(ORG, USER, name="Auth Again")
        assert again.key == "AUTH"
        assert again.project_id != project.project_id


class TestListProjects:

    def test_pages_walk_all_projects_once(self, db):
        service = ProjectService(db, page_size=2, max_page_size=10)
        names = ["Alpha", "Bravo", "Charlie", "Delta", "Echo"]
        for name in names:
            service.create_project(ORG, USER, name=name)

        seen = []
        cursor = None
        pages = 0
        while True:
            page = service.list_projects(ORG, cursor=cursor)
            seen.extend(p.name for p in page.data)
            pages += 1
            if page.next_cursor is None:
                break
            cursor = page.next_cursor

        assert seen == list(reversed(names))
        assert pages == 3

    def test_limit_bounds(self, projects):
        with pytest.raises(ValidationError):
            projects.list_projects(ORG, limit=0)
        with pytest.raises(ValidationError):
            projects.list_projects(ORG, limit=10_000)

    def test_bad_cursor(self, projects):
        with pytest.raises(ValidationError, match="Invalid cursor"):
            projects.list_projects(ORG, cursor="garbage")
