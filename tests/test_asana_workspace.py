"""Tests for the Asana task and subtask operations."""

import pytest

from asana_workspace import AsanaWorkspace, SECTION_PAGE_SIZE
from data import Config, ConfigError, TaskDescriptor


def tasks_api(sdk):
    return sdk.TasksApi.return_value


def stories_api(sdk):
    return sdk.StoriesApi.return_value


class TestCreateTask:
    def test_requires_token(self, asana_sdk):
        with pytest.raises(ConfigError):
            AsanaWorkspace(Config())

    def test_basic_task(self, asana_ws, asana_sdk):
        creation = asana_ws.create_task(TaskDescriptor(name="My task", notes="Details", project_id="1111"))

        assert creation.task_id == "5555"
        assert creation.duplicate is False
        tasks_api(asana_sdk).get_tasks_for_section.assert_not_called()
        tasks_api(asana_sdk).create_task.assert_called_once_with(
            {"data": {"name": "My task", "notes": "Details", "projects": ["1111"], "tags": [], "followers": []}},
            {},
        )

    def test_optional_fields(self, asana_ws, asana_sdk):
        asana_ws.create_task(TaskDescriptor(
            name="My task", notes="Details", project_id="1111",
            tags=["tag-456", "tag-xyz"], followers=["collab-789"],
            assignee="asana-user-123", custom_fields={"12345": "field_value"},
        ))
        data = tasks_api(asana_sdk).create_task.call_args[0][0]["data"]
        assert data["tags"] == ["tag-456", "tag-xyz"]
        assert data["followers"] == ["collab-789"]
        assert data["assignee"] == "asana-user-123"
        assert data["custom_fields"] == {"12345": "field_value"}
        assert "memberships" not in data

    def test_due_date(self, asana_ws, asana_sdk):
        asana_ws.create_task(TaskDescriptor(name="Review", notes="", project_id="1111", due_on="2024-09-16"))
        data = tasks_api(asana_sdk).create_task.call_args[0][0]["data"]
        assert data["due_on"] == "2024-09-16"

    def test_section_without_duplicate(self, asana_ws, asana_sdk):
        tasks_api(asana_sdk).get_tasks_for_section.return_value = [{"name": "Other", "gid": "1"}]

        creation = asana_ws.create_task(
            TaskDescriptor(name="My task", notes="", project_id="1111", section_id="section-123"))

        assert creation.task_id == "5555"
        assert creation.duplicate is False
        data = tasks_api(asana_sdk).create_task.call_args[0][0]["data"]
        assert data["memberships"] == [{"project": "1111", "section": "section-123"}]

    def test_duplicate_in_section_is_not_created(self, asana_ws, asana_sdk):
        tasks_api(asana_sdk).get_tasks_for_section.return_value = [{"name": "My task", "gid": "existing-123"}]

        creation = asana_ws.create_task(
            TaskDescriptor(name="My task", notes="", project_id="1111", section_id="section-123"))

        assert creation.task_id == "existing-123"
        assert creation.duplicate is True
        tasks_api(asana_sdk).create_task.assert_not_called()

    def test_failure_returns_sentinel(self, asana_ws, asana_sdk):
        tasks_api(asana_sdk).create_task.side_effect = Exception("boom")

        creation = asana_ws.create_task(TaskDescriptor(name="My task", notes="", project_id="1111"))

        assert creation.task_id == "0"
        assert not creation.ok

    def test_comment_follows_creation(self, asana_ws, asana_sdk):
        creation = asana_ws.create_task_with_comment(
            TaskDescriptor(name="Issue", notes="", project_id="1111"), "Link to Issue: url")

        assert creation.task_id == "5555"
        stories_api(asana_sdk).create_story_for_task.assert_called_once_with(
            {"data": {"text": "Link to Issue: url", "is_pinned": True}}, "5555", {})

    def test_no_comment_when_creation_fails(self, asana_ws, asana_sdk):
        tasks_api(asana_sdk).create_task.side_effect = Exception("boom")

        asana_ws.create_task_with_comment(TaskDescriptor(name="Issue", notes="", project_id="1111"), "text")

        stories_api(asana_sdk).create_story_for_task.assert_not_called()


class TestFindTaskInSection:
    def test_empty_section(self, asana_ws):
        assert asana_ws.find_task_in_section("section-123", "My task") == "0"

    def test_exact_name_match(self, asana_ws, asana_sdk):
        tasks_api(asana_sdk).get_tasks_for_section.return_value = [
            {"name": "My task (copy)", "gid": "1"},
            {"name": "My task", "gid": "2"},
            {"name": "My task", "gid": "3"},
        ]
        assert asana_ws.find_task_in_section("section-123", "My task") == "2"

    def test_only_first_page_is_scanned(self, asana_ws, asana_sdk):
        page = [{"name": f"task {i}", "gid": str(i)} for i in range(SECTION_PAGE_SIZE)]
        tasks_api(asana_sdk).get_tasks_for_section.return_value = iter(page + [{"name": "late", "gid": "late"}])

        assert asana_ws.find_task_in_section("section-123", "late") == "0"

    def test_listing_error(self, asana_ws, asana_sdk):
        tasks_api(asana_sdk).get_tasks_for_section.side_effect = Exception("boom")
        assert asana_ws.find_task_in_section("section-123", "My task") == "0"


class TestStoriesAndUpdates:
    def test_create_story(self, asana_ws, asana_sdk):
        assert asana_ws.create_story("2222", "hello", True) == "story-1"
        stories_api(asana_sdk).create_story_for_task.assert_called_once_with(
            {"data": {"text": "hello", "is_pinned": True}}, "2222", {})

    def test_create_story_error_returns_none(self, asana_ws, asana_sdk):
        stories_api(asana_sdk).create_story_for_task.side_effect = Exception("boom")
        assert asana_ws.create_story("2222", "hello") is None

    def test_create_story_null_response(self, asana_ws, asana_sdk):
        stories_api(asana_sdk).create_story_for_task.return_value = None
        assert asana_ws.create_story("2222", "hello") is None

    def test_create_subtask_sets_parent(self, asana_ws, asana_sdk):
        asana_ws.create_subtask("parent", "child")
        tasks_api(asana_sdk).set_parent_for_task.assert_called_once_with({"data": {"parent": "parent"}}, "child", {})

    def test_create_subtask_error_propagates(self, asana_ws, asana_sdk):
        tasks_api(asana_sdk).set_parent_for_task.side_effect = RuntimeError("boom")
        with pytest.raises(RuntimeError):
            asana_ws.create_subtask("parent", "child")

    def test_complete_task(self, asana_ws, asana_sdk):
        assert asana_ws.complete_task("2222", False) is True
        tasks_api(asana_sdk).update_task.assert_called_once_with({"data": {"completed": False}}, "2222", {})

    def test_update_failure(self, asana_ws, asana_sdk):
        tasks_api(asana_sdk).update_task.side_effect = Exception("boom")
        assert asana_ws.update_task("2222", {"name": "x"}) is False

    def test_add_to_project(self, asana_ws, asana_sdk):
        assert asana_ws.add_task_to_project("task-abc", "1111")
        tasks_api(asana_sdk).add_project_for_task.assert_called_once_with(
            {"data": {"project": "1111", "insert_after": None}}, "task-abc")

    def test_add_to_project_section(self, asana_ws, asana_sdk):
        assert asana_ws.add_task_to_project("task-abc", "1111", "section-123")
        tasks_api(asana_sdk).add_project_for_task.assert_called_once_with(
            {"data": {"project": "1111", "section": "section-123"}}, "task-abc")


class TestNoAutoclose:
    def test_member_of_listed_project(self, asana_ws, asana_sdk):
        tasks_api(asana_sdk).get_task.return_value = {
            "gid": "t1", "projects": [{"gid": "9999"}], "memberships": [{"project": {"gid": "3333"}}],
        }
        assert asana_ws.is_in_no_autoclose_projects("t1", frozenset({"3333"})) is True

    def test_not_member(self, asana_ws, asana_sdk):
        tasks_api(asana_sdk).get_task.return_value = {"gid": "t1", "projects": [{"gid": "9999"}]}
        assert asana_ws.is_in_no_autoclose_projects("t1", frozenset({"3333"})) is False

    def test_lookup_failure_allows_autoclose(self, asana_ws, asana_sdk):
        tasks_api(asana_sdk).get_task.side_effect = Exception("boom")
        assert asana_ws.is_in_no_autoclose_projects("t1", frozenset({"3333"})) is False

    def test_empty_set_skips_lookup(self, asana_ws, asana_sdk):
        assert asana_ws.is_in_no_autoclose_projects("t1", frozenset()) is False
        tasks_api(asana_sdk).get_task.assert_not_called()


class TestLookups:
    def test_find_task_by_story_text(self, asana_ws, asana_sdk):
        tasks_api(asana_sdk).get_tasks_for_project.return_value = [
            {"gid": "a", "name": "A"}, {"gid": "b", "name": "B"},
        ]
        stories_api(asana_sdk).get_stories_for_task.side_effect = lambda gid, opts: {
            "a": [{"text": "unrelated"}],
            "b": [{"text": "Link to Pull Request: https://github.com/o/r/pull/1"}],
        }[gid]

        task = asana_ws.find_task_by_story_text("1111", "Link to Pull Request: https://github.com/o/r/pull/1")

        assert task.gid == "b"

    def test_story_text_must_match_whole_story(self, asana_ws, asana_sdk):
        tasks_api(asana_sdk).get_tasks_for_project.return_value = [
            {"gid": "t123", "name": "PR 123"}, {"gid": "t12", "name": "PR 12"},
        ]
        stories_api(asana_sdk).get_stories_for_task.side_effect = lambda gid, opts: {
            "t123": [{"text": "Link to Pull Request: https://github.com/o/r/pull/123"}],
            "t12": [{"text": "Link to Pull Request: https://github.com/o/r/pull/12"}],
        }[gid]

        task = asana_ws.find_task_by_story_text("1111", "Link to Pull Request: https://github.com/o/r/pull/12")

        assert task.gid == "t12"

    def test_other_mentions_of_the_url_are_ignored(self, asana_ws, asana_sdk):
        tasks_api(asana_sdk).get_tasks_for_project.return_value = [
            {"gid": "feature", "name": "Feature"}, {"gid": "pr-task", "name": "PR task"},
        ]
        stories_api(asana_sdk).get_stories_for_task.side_effect = lambda gid, opts: {
            "feature": [{"text": "PR: https://github.com/o/r/pull/123"}],
            "pr-task": [{"text": "Link to Pull Request: https://github.com/o/r/pull/123"}],
        }[gid]

        task = asana_ws.find_task_by_story_text("1111", "Link to Pull Request: https://github.com/o/r/pull/123")

        assert task.gid == "pr-task"

    def test_no_match(self, asana_ws, asana_sdk):
        tasks_api(asana_sdk).get_tasks_for_project.return_value = [{"gid": "a", "name": "A"}]
        stories_api(asana_sdk).get_stories_for_task.return_value = [
            {"text": "Link to Pull Request: https://github.com/o/r/pull/123"},
        ]
        assert asana_ws.find_task_by_story_text("1111", "Link to Pull Request: https://github.com/o/r/pull/12") is None

    def test_get_subtasks(self, asana_ws, asana_sdk):
        tasks_api(asana_sdk).get_subtasks_for_task.return_value = [
            {"gid": "s1", "name": "Code review", "notes": "@alice", "completed": False},
        ]
        subtasks = asana_ws.get_subtasks_for_task("p1")
        assert [(s.gid, s.parent_gid, s.notes) for s in subtasks] == [("s1", "p1", "@alice")]

    def test_get_permalink(self, asana_ws):
        assert asana_ws.get_permalink("2222") == "https://app.asana.com/0/1111/2222/f"

    def test_set_enum_custom_field(self, asana_ws, asana_sdk):
        asana_sdk.CustomFieldsApi.return_value.get_custom_field.return_value = {
            "enum_options": [{"gid": "opt-open", "name": "Open"}, {"gid": "opt-merged", "name": "Merged"}],
        }
        assert asana_ws.set_custom_field_value("2222", "cf-1", "Merged")
        tasks_api(asana_sdk).update_task.assert_called_once_with(
            {"data": {"custom_fields": {"cf-1": "opt-merged"}}}, "2222", {})

    def test_set_text_custom_field(self, asana_ws, asana_sdk):
        asana_sdk.CustomFieldsApi.return_value.get_custom_field.return_value = {"enum_options": []}
        assert asana_ws.set_custom_field_value("2222", "cf-1", "Merged")
        tasks_api(asana_sdk).update_task.assert_called_once_with(
            {"data": {"custom_fields": {"cf-1": "Merged"}}}, "2222", {})
