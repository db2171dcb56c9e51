"""Tests for BrainRepository: brains, projects, entities and events."""

import pytest

from brainstore.atomic import AtomicWriter
from brainstore.canonical import decode
from brainstore.errors import Conflict, IntegrityFailure, NotFound, ValidationFailure
from brainstore.runtime import Runtime


# --- Brains ---


def test_boot_creates_system_and_default_brain(runtime):
    assert runtime.paths.system_brain().exists()
    assert runtime.paths.user_brain("default").exists()
    assert runtime.repository.active_brain() == "default"
    assert [b["slug"] for b in runtime.repository.list_brains()] == ["default"]


def test_boot_is_idempotent(settings, runtime):
    before = runtime.paths.system_brain().read_bytes()
    Runtime.boot(settings)
    assert runtime.paths.system_brain().read_bytes() == before


def test_create_switch_delete_brain(repo, recorded):
    info = repo.create_brain("Work Notes")
    assert info["slug"] == "work-notes"
    assert not info["active"]

    repo.set_active_brain("work-notes")
    assert repo.active_brain() == "work-notes"

    with pytest.raises(Conflict):
        repo.delete_brain("work-notes")

    repo.set_active_brain("default")
    result = repo.delete_brain("work-notes")
    assert result["deleted"]
    assert [b["slug"] for b in repo.list_brains()] == ["default"]
    assert recorded == [
        "brain.write.completed", "brain.created",
        "brain.write.completed", "brain.activated",
        "brain.write.completed", "brain.activated",
        "brain.deleted",
    ]


def test_create_brain_conflicts(repo):
    with pytest.raises(Conflict):
        repo.create_brain("default")
    with pytest.raises(Conflict):
        repo.create_brain("system")
    with pytest.raises(ValidationFailure):
        repo.create_brain("!!!")


def test_system_brain_is_protected(repo):
    with pytest.raises(Conflict):
        repo.set_active_brain("system")
    with pytest.raises(Conflict):
        repo.delete_brain("system")


def test_unknown_brain(repo):
    with pytest.raises(NotFound):
        repo.set_active_brain("nope")
    with pytest.raises(NotFound):
        repo.delete_brain("nope")
    with pytest.raises(NotFound):
        repo.list_projects(brain="nope")


def test_brains_are_isolated(repo):
    repo.create_brain("other")
    repo.save_entity("demo", "article", {"title": "elsewhere"}, brain="other")

    assert repo.list_projects() == []
    assert repo.get_entity("demo", "article", brain="other")["payload"] == {"title": "elsewhere"}


def test_brain_report(demo_repo):
    report = demo_repo.brain_report()
    assert report["slug"] == "default"
    assert report["project_count"] == 1
    assert report["entity_count"] == 4
    assert report["version_count"] == 5
    assert report["commit_count"] == 5


# --- Config ---


def test_config_roundtrip(repo):
    repo.set_config("theme", {"dark": True})
    assert repo.get_config("theme") == {"dark": True}
    assert repo.list_config() == {"theme": {"dark": True}}

    repo.delete_config("theme")
    with pytest.raises(NotFound):
        repo.get_config("theme")
    with pytest.raises(NotFound):
        repo.delete_config("theme")


# --- Projects ---


def test_create_project(repo):
    summary = repo.create_project("Demo", title="Demo Project")
    assert summary["slug"] == "demo"
    assert summary["title"] == "Demo Project"
    with pytest.raises(Conflict):
        repo.create_project("demo")


def test_update_project(repo):
    repo.create_project("demo")
    assert repo.update_project("demo", description="Notes")["description"] == "Notes"
    with pytest.raises(ValidationFailure):
        repo.update_project("demo")
    with pytest.raises(NotFound):
        repo.update_project("missing", title="x")


def test_save_creates_project_lazily(repo):
    result = repo.save_entity("fresh", "note", {"text": "hi"})
    assert result["created"]
    assert [p["slug"] for p in repo.list_projects()] == ["fresh"]


def test_archive_and_restore_project(demo_repo):
    report = demo_repo.archive_project("demo")
    assert report["status"] == "archived"
    assert report["entities_archived"] == 4

    with pytest.raises(NotFound):
        demo_repo.get_entity("demo", "article")
    with pytest.raises(Conflict):
        demo_repo.save_entity("demo", "article", {"title": "C"})
    with pytest.raises(Conflict):
        demo_repo.archive_project("demo")

    restored = demo_repo.restore_project("demo")
    assert restored["entities_reactivated"] == 4
    assert demo_repo.get_entity("demo", "article")["version"] == 2


def test_delete_project(demo_repo):
    result = demo_repo.delete_project("demo")
    assert result == {"project": "demo", "entities_removed": 4, "commits_removed": 5}
    assert demo_repo.list_projects() == []
    assert demo_repo.brain_report()["commit_count"] == 0


def test_project_report(demo_repo):
    report = demo_repo.project_report("demo")
    assert report["entity_count"] == 4
    assert report["active_entities"] == 4
    assert report["version_count"] == 5
    assert report["root_entities"] == ["article", "characters"]


# --- Saving and reading ---


def test_second_save_supersedes_first(demo_repo):
    current = demo_repo.get_entity("demo", "article")
    assert current["version"] == 2
    assert current["payload"] == {"title": "B"}
    assert current["active"]

    statuses = [v["status"] for v in demo_repo.list_versions("demo", "article")]
    assert statuses == ["inactive", "active"]


def test_read_by_number_and_commit(demo_repo):
    first = demo_repo.get_entity("demo", "article", "@1")
    assert first["payload"] == {"title": "A"}
    assert not first["active"]

    by_commit = demo_repo.get_entity("demo", "article", "#" + first["commit"])
    assert by_commit["version"] == 1
    assert demo_repo.resolve_version("demo", "article", "#" + first["commit"][:8]).version == 1


def test_save_returns_commit_metadata(repo):
    result = repo.save_entity("demo", "article", {"title": "A"}, meta={"author": "me"})
    assert result["version"] == 1
    assert len(result["hash"]) == 64
    assert len(result["commit"]) == 64
    assert repo.get_entity("demo", "article")["meta"] == {"author": "me"}


def test_save_validation(repo):
    with pytest.raises(ValidationFailure):
        repo.save_entity("demo", "article", {"bad": float("inf")})
    with pytest.raises(ValidationFailure):
        repo.save_entity("demo", "article")
    with pytest.raises(ValidationFailure):
        repo.save_entity("demo", " / ", {"x": 1})
    with pytest.raises(ValidationFailure):
        repo.save_entity("???", "article", {"x": 1})
    assert repo.list_projects() == []


def test_save_with_parent_repositions(demo_repo):
    result = demo_repo.save_entity("demo", "article", parent="characters")
    assert result["entity"] == "characters/article"
    assert result["moved"] == {"article": "characters/article"}
    assert "version" not in result
    assert demo_repo.get_entity("demo", "characters/article")["version"] == 2


def test_save_schema_binding(demo_repo):
    demo_repo.save_entity("demo", "schemas/article", {"type": "object"})
    demo_repo.save_entity("demo", "article", schema="schemas/article@1")
    assert demo_repo.get_entity("demo", "article")["schema"] == {
        "slug": "schemas/article", "reference": "@1",
    }


def test_missing_things_raise_not_found(demo_repo):
    with pytest.raises(NotFound):
        demo_repo.get_entity("nope", "article")
    with pytest.raises(NotFound):
        demo_repo.get_entity("demo", "nope")
    with pytest.raises(NotFound):
        demo_repo.get_entity("demo", "article", "@9")
    with pytest.raises(NotFound):
        demo_repo.find_commit("0" * 64)


def test_find_commit(demo_repo):
    commit = demo_repo.get_entity("demo", "characters/heroes/aria")["commit"]
    found = demo_repo.find_commit(commit[:10])
    assert found["entity"] == "characters/heroes/aria"
    assert found["version"] == 1
    with pytest.raises(ValidationFailure):
        demo_repo.find_commit("abc")


def test_entity_report(demo_repo):
    report = demo_repo.entity_report("demo", "characters")
    assert report["parent"] is None
    assert report["children"] == []
    report = demo_repo.entity_report("demo", "characters/heroes/aria")
    assert report["parent"] == "characters/heroes"
    assert report["commit_count"] == 1


def test_list_entities(demo_repo):
    everything = [e["slug"] for e in demo_repo.list_entities("demo")]
    assert everything == ["article", "characters", "characters/heroes/aria", "characters/heroes/bran"]
    roots = [e["slug"] for e in demo_repo.list_entities("demo", parent="")]
    assert roots == ["article", "characters"]
    heroes = [e["slug"] for e in demo_repo.list_entities("demo", parent="characters/heroes")]
    assert heroes == ["characters/heroes/aria", "characters/heroes/bran"]


def test_list_commits(demo_repo):
    commits = demo_repo.list_commits("demo")
    assert len(commits) == 5
    stamps = [c["committed_at"] for c in commits]
    assert stamps == sorted(stamps, reverse=True)

    assert len(demo_repo.list_commits("demo", limit=2)) == 2
    assert len(demo_repo.list_commits("demo", "article")) == 2
    assert len(demo_repo.list_commits("demo", since="1 hour ago")) == 5
    assert demo_repo.list_commits("demo", since="2999-01-01") == []
    with pytest.raises(ValidationFailure):
        demo_repo.list_commits("demo", since="whenever")


# --- Moves and removal ---


def test_move_entity_to_root(demo_repo):
    commit = demo_repo.get_entity("demo", "characters/heroes/aria")["commit"]
    result = demo_repo.move_entity("demo", "characters/heroes/aria")

    assert result["moved"] == {"characters/heroes/aria": "aria"}
    assert demo_repo.get_entity("demo", "aria")["payload"] == {"name": "Aria"}
    assert demo_repo.find_commit(commit)["entity"] == "aria"
    assert demo_repo.integrity_report()["ok"]


def test_move_into_own_subtree_conflicts(demo_repo):
    with pytest.raises(Conflict):
        demo_repo.move_entity("demo", "characters", "characters/heroes")


def test_move_merge_keeps_existing_children(demo_repo):
    result = demo_repo.move_entity("demo", "article", "characters", mode="merge")

    assert result["moved"] == {"article": "characters/article"}
    assert [e["slug"] for e in demo_repo.list_entities("demo")] == [
        "characters",
        "characters/article",
        "characters/heroes/aria",
        "characters/heroes/bran",
    ]
    assert demo_repo.get_entity("demo", "characters/article")["payload"] == {"title": "B"}
    assert demo_repo.integrity_report()["ok"]


def test_move_replace_promotes_target_children(demo_repo):
    result = demo_repo.move_entity("demo", "article", "characters", mode="replace")

    assert result["moved"] == {
        "characters/heroes/aria": "heroes/aria",
        "characters/heroes/bran": "heroes/bran",
        "article": "characters/article",
    }
    assert [e["slug"] for e in demo_repo.list_entities("demo")] == [
        "characters",
        "characters/article",
        "heroes/aria",
        "heroes/bran",
    ]
    assert demo_repo.get_entity("demo", "heroes/aria")["payload"] == {"name": "Aria"}
    assert demo_repo.integrity_report()["ok"]


def test_move_collision_changes_nothing(demo_repo, runtime, recorded):
    demo_repo.save_entity("demo", "characters/article", {"title": "Other"})
    path = runtime.paths.user_brain("default")
    before = path.read_bytes()
    recorded.clear()

    with pytest.raises(Conflict):
        demo_repo.move_entity("demo", "article", "characters", mode="merge")

    assert path.read_bytes() == before
    assert recorded == []
    assert demo_repo.get_entity("demo", "article")["payload"] == {"title": "B"}


def test_commit_resolves_after_move(demo_repo):
    first = demo_repo.get_entity("demo", "article", "@1")["commit"]
    demo_repo.move_entity("demo", "article", "archive")

    version = demo_repo.resolve_version("demo", "archive/article", "#" + first)

    assert version.version == 1
    assert version.payload == {"title": "A"}
    assert demo_repo.find_commit(first)["entity"] == "archive/article"
    with pytest.raises(NotFound):
        demo_repo.resolve_version("demo", "article", "#" + first)


def test_soft_remove_and_restore(demo_repo):
    result = demo_repo.remove_entity("demo", "characters", recursive=True)
    assert result["removed"] == ["characters", "characters/heroes/aria", "characters/heroes/bran"]
    with pytest.raises(NotFound):
        demo_repo.get_entity("demo", "characters/heroes/aria")

    restored = demo_repo.restore_version("demo", "characters/heroes/aria")
    assert restored["version"] == 1
    assert demo_repo.get_entity("demo", "characters/heroes/aria")["payload"] == {"name": "Aria"}


def test_soft_remove_promotes_children(demo_repo):
    result = demo_repo.remove_entity("demo", "characters")
    assert result["promoted"] == {
        "characters/heroes/aria": "heroes/aria",
        "characters/heroes/bran": "heroes/bran",
    }
    assert demo_repo.get_entity("demo", "heroes/aria")["version"] == 1
    assert demo_repo.get_entity("demo", "characters", "@1")["status"] == "archived"


def test_hard_delete_promotes_children(demo_repo):
    result = demo_repo.delete_entity("demo", "characters")

    assert result["deleted"] == ["characters"]
    assert result["commits_removed"] == 1
    assert sorted(e["slug"] for e in demo_repo.list_entities("demo")) == [
        "article", "heroes/aria", "heroes/bran",
    ]
    assert demo_repo.integrity_report()["ok"]


def test_hard_delete_recursive(demo_repo):
    result = demo_repo.delete_entity("demo", ["characters"], recursive=True)
    assert len(result["deleted"]) == 3
    assert result["commits_removed"] == 3
    assert [e["slug"] for e in demo_repo.list_entities("demo")] == ["article"]


def test_restore_specific_version(demo_repo):
    result = demo_repo.restore_version("demo", "article", "@1")
    assert result["version"] == 1
    assert result["previous"] == 2
    assert demo_repo.get_entity("demo", "article")["payload"] == {"title": "A"}
    with pytest.raises(Conflict):
        demo_repo.restore_version("demo", "article", "@1")


# --- Events and failure atomicity ---


def test_events_follow_persist(demo_repo, runtime):
    seen_on_disk = []

    def check_file(event):
        path = runtime.paths.user_brain("default")
        document = decode(path.read_bytes())
        article = document["projects"]["demo"]["entities"]["article"]
        seen_on_disk.append(article["active_version"])

    runtime.events.subscribe("brain.entity.saved", check_file)
    demo_repo.save_entity("demo", "article", {"title": "C"})

    assert seen_on_disk == [3]


def test_event_order_for_save(repo, recorded):
    repo.save_entity("demo", "article", {"title": "A"})
    assert recorded == ["brain.write.completed", "brain.entity.saved"]


def test_listener_failure_does_not_break_save(demo_repo, runtime):
    def broken(event):
        raise RuntimeError("downstream bug")

    runtime.events.subscribe("brain.entity.saved", broken)
    result = demo_repo.save_entity("demo", "article", {"title": "C"})

    assert result["version"] == 3
    assert runtime.events.failures == 1
    assert demo_repo.get_entity("demo", "article")["version"] == 3


def test_failed_persist_leaves_no_trace(demo_repo, runtime, recorded, monkeypatch):
    path = runtime.paths.user_brain("default")
    before = path.read_bytes()
    monkeypatch.setattr(AtomicWriter, "_read_back", lambda self, target: b"garbage")

    with pytest.raises(IntegrityFailure):
        demo_repo.save_entity("demo", "article", {"title": "C"})

    monkeypatch.undo()
    assert path.read_bytes() == before
    assert demo_repo.get_entity("demo", "article")["version"] == 2
    assert "brain.entity.saved" not in recorded
    assert recorded.count("brain.write.retry") == 1


def test_failed_mutation_emits_nothing(demo_repo, recorded):
    with pytest.raises(NotFound):
        demo_repo.delete_entity("demo", ["article", "missing"])
    assert recorded == []
    assert demo_repo.get_entity("demo", "article")["version"] == 2


def test_integrity_report_on_healthy_brain(demo_repo):
    report = demo_repo.integrity_report()
    assert report["ok"], report["issues"]
    assert report["canonical"]
    assert report["versions"] == 5
    assert report["last_write"] is not None


def test_delete_parent_reparents_direct_child(repo):
    repo.save_entity("demo", "parent", {"kind": "folder"})
    repo.save_entity("demo", "parent/child", {"kind": "leaf"})

    result = repo.delete_entity("demo", "parent")

    assert result["promoted"] == {"parent/child": "child"}
    assert repo.get_entity("demo", "child")["payload"] == {"kind": "leaf"}
    with pytest.raises(NotFound):
        repo.get_entity("demo", "parent")
