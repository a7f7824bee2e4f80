"""Tests for MembershipStore: versioning, retries, cascades, persistence."""

from __future__ import annotations

import json

import pytest

from taskhub_v1.core.errors import ConflictError, NotFound, OwnerProtected
from taskhub_v1.core.teams import membership
from taskhub_v1.core.teams.models import Actor, EntityType
from taskhub_v1.core.teams.roles import TeamRole
from taskhub_v1.core.teams.store import MembershipStore


def _seed(store):
    owner = Actor("u1")
    team = store.insert(membership.new_team(owner, "Core"))
    project = store.insert(membership.new_project(owner, "API", team=team))
    task = store.insert(membership.new_task(owner, "Fix", project=project))
    return team, project, task


class TestLoadSave:
    def test_insert_sets_version_one(self, store):
        team, _, _ = _seed(store)
        assert team.version == 1
        assert store.get_team(team.id).version == 1

    def test_insert_duplicate_id(self, store):
        team, _, _ = _seed(store)
        with pytest.raises(ConflictError):
            store.insert(store.get_team(team.id))

    def test_insert_rejects_deleted_parent_team(self, store):
        team, _, _ = _seed(store)
        stale = store.get_team(team.id)
        store.delete_team(team.id)
        with pytest.raises(NotFound):
            store.insert(membership.new_project(Actor("u1"), "Late", team=stale))
        assert [p.team_id for p in store.list_projects()] == [None]

    def test_insert_rejects_deleted_parent_project(self, store):
        _, project, _ = _seed(store)
        store.delete_project(project.id)
        with pytest.raises(NotFound):
            store.insert(membership.new_task(Actor("u1"), "Late", project=project))

    def test_task_insert_follows_detached_project(self, store):
        team, project, _ = _seed(store)
        stale = store.get_project(project.id)
        store.delete_team(team.id)
        task = store.insert(membership.new_task(Actor("u1"), "After", project=stale))
        assert task.team_id is None

    def test_load_missing(self, store):
        with pytest.raises(NotFound) as exc_info:
            store.load("team", "nope")
        assert exc_info.value.entity_type == "team"

    def test_load_returns_independent_snapshot(self, store):
        team, _, _ = _seed(store)
        snap = store.get_team(team.id)
        snap.name = "Changed"
        membership.add_team_member(snap, "u2")
        fresh = store.get_team(team.id)
        assert fresh.name == "Core"
        assert not fresh.is_member("u2")

    def test_save_bumps_version(self, store):
        team, _, _ = _seed(store)
        snap = store.get_team(team.id)
        snap.name = "Renamed"
        saved = store.save(snap)
        assert saved.version == 2
        assert store.get_team(team.id).name == "Renamed"

    def test_stale_save_conflicts(self, store):
        team, _, _ = _seed(store)
        first = store.get_team(team.id)
        second = store.get_team(team.id)
        membership.add_team_member(first, "u2")
        store.save(first)
        membership.add_team_member(second, "u3")
        with pytest.raises(ConflictError):
            store.save(second)
        stored = store.get_team(team.id)
        assert stored.is_member("u2")
        assert not stored.is_member("u3")


class TestUpdate:
    def test_update_applies_and_returns_fn_result(self, store):
        team, _, _ = _seed(store)
        rec = store.update(
            EntityType.TEAM, team.id, lambda t: membership.add_team_member(t, "u2"),
        )
        assert rec.user_id == "u2"
        assert store.get_team(team.id).is_member("u2")

    def test_update_retries_after_interleaved_write(self, store):
        team, _, _ = _seed(store)
        calls = []

        def fn(t):
            calls.append(t.version)
            if len(calls) == 1:
                # Someone else writes between our load and save.
                other = store.get_team(team.id)
                membership.add_team_member(other, "u9")
                store.save(other)
            membership.add_team_member(t, "u2")

        store.update(EntityType.TEAM, team.id, fn)
        assert calls == [1, 2]
        stored = store.get_team(team.id)
        assert stored.is_member("u2") and stored.is_member("u9")

    def test_update_gives_up_after_max_attempts(self, store):
        team, _, _ = _seed(store)
        store.configure_retries(3)
        attempts = []

        def always_collide(t):
            attempts.append(1)
            other = store.get_team(team.id)
            other.description = f"rev {len(attempts)}"
            store.save(other)
            t.name = "mine"

        with pytest.raises(ConflictError, match="3 conflicting attempts"):
            store.update(EntityType.TEAM, team.id, always_collide)
        assert len(attempts) == 3
        assert store.get_team(team.id).name == "Core"

    def test_fn_error_propagates_and_writes_nothing(self, store):
        team, _, _ = _seed(store)
        with pytest.raises(OwnerProtected):
            store.update(
                EntityType.TEAM, team.id, lambda t: membership.remove_team_member(t, "u1"),
            )
        assert store.get_team(team.id).version == 1


class TestActorIndex:
    def test_teams_for_user_follows_saved_team(self, store):
        team, _, _ = _seed(store)
        assert store.teams_for_user("u2") == []
        store.update(EntityType.TEAM, team.id, lambda t: membership.add_team_member(t, "u2"))
        [(found, role)] = store.teams_for_user("u2")
        assert found.id == team.id
        assert role == TeamRole.MEMBER
        store.update(EntityType.TEAM, team.id, lambda t: membership.remove_team_member(t, "u2"))
        assert store.teams_for_user("u2") == []

    def test_role_change_visible_in_index(self, store):
        team, _, _ = _seed(store)
        store.update(EntityType.TEAM, team.id, lambda t: membership.add_team_member(t, "u2"))
        store.update(
            EntityType.TEAM, team.id,
            lambda t: membership.update_team_member_role(t, "u2", "manager"),
        )
        assert store.teams_for_user("u2")[0][1] == TeamRole.MANAGER


class TestCascades:
    def test_delete_team_detaches_projects_and_purges_index(self, store):
        team, project, task = _seed(store)
        store.delete_team(team.id)
        with pytest.raises(NotFound):
            store.get_team(team.id)
        detached = store.get_project(project.id)
        assert detached.team_id is None
        assert detached.version == 2
        assert store.get_task(task.id).team_id is None
        assert store.teams_for_user("u1") == []

    def test_delete_project_removes_tasks(self, store):
        _, project, task = _seed(store)
        store.delete_project(project.id)
        with pytest.raises(NotFound):
            store.get_task(task.id)
        assert store.list_tasks() == []

    def test_delete_missing(self, store):
        with pytest.raises(NotFound):
            store.delete_task("nope")

    def test_list_filters(self, store):
        team, project, task = _seed(store)
        store.insert(membership.new_project(Actor("u1"), "Solo"))
        assert [p.id for p in store.list_projects(team_id=team.id)] == [project.id]
        assert len(store.list_projects()) == 2
        assert [t.id for t in store.list_tasks(project_id=project.id)] == [task.id]


class TestPersistence:
    def test_replay_restores_state(self, tmp_path):
        path = str(tmp_path / "store.jsonl")
        store = MembershipStore()
        store.configure_persistence(path)
        team, project, task = _seed(store)
        store.update(EntityType.TEAM, team.id, lambda t: membership.add_team_member(t, "u2"))
        store.delete_task(task.id)

        fresh = MembershipStore()
        fresh.configure_persistence(path)
        restored = fresh.get_team(team.id)
        assert restored.is_member("u2")
        assert restored.version == 2
        assert fresh.get_project(project.id).team_id == team.id
        assert fresh.list_tasks() == []
        assert fresh.teams_for_user("u2")[0][0].id == team.id

    def test_replay_team_delete(self, tmp_path):
        path = str(tmp_path / "store.jsonl")
        store = MembershipStore()
        store.configure_persistence(path)
        team, project, _ = _seed(store)
        store.delete_team(team.id)

        fresh = MembershipStore()
        fresh.configure_persistence(path)
        assert fresh.list_teams() == []
        assert fresh.get_project(project.id).team_id is None

    def test_corrupt_lines_skipped(self, tmp_path):
        path = tmp_path / "store.jsonl"
        store = MembershipStore()
        store.configure_persistence(str(path))
        team, _, _ = _seed(store)
        with open(path, "a", encoding="utf-8") as f:
            f.write("{not json\n")
            f.write(json.dumps({"action": "team_deleted", "id": "ghost"}) + "\n")

        fresh = MembershipStore()
        fresh.configure_persistence(str(path))
        assert fresh.get_team(team.id).name == "Core"

    def test_events_are_jsonl(self, tmp_path):
        path = tmp_path / "store.jsonl"
        store = MembershipStore()
        store.configure_persistence(str(path))
        _seed(store)
        actions = [json.loads(line)["action"] for line in path.read_text().splitlines()]
        assert actions == ["team_saved", "project_saved", "task_saved"]

    def test_reset_clears_everything(self, store):
        _seed(store)
        store.reset()
        assert store.list_teams() == []
        assert store.list_projects() == []
        assert store.teams_for_user("u1") == []

    def test_replay_restores_task_activity(self, tmp_path):
        path = str(tmp_path / "store.jsonl")
        store = MembershipStore()
        store.configure_persistence(path)
        _, _, task = _seed(store)
        store.update(EntityType.TASK, task.id, lambda t: membership.add_comment(t, "u1", "done?"))
        store.update(EntityType.TASK, task.id, lambda t: membership.add_time_entry(t, "u1", 3))

        fresh = MembershipStore()
        fresh.configure_persistence(path)
        restored = fresh.get_task(task.id)
        assert [c.content for c in restored.comments] == ["done?"]
        assert restored.logged_hours == 3.0
