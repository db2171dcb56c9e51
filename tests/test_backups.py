"""Tests for brain backups and restores."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from brainstore.backups import backup_name, parse_backup_name
from brainstore.errors import Conflict, NotFound, ValidationFailure


def test_backup_name_roundtrip(temp_root):
    when = datetime(2025, 1, 15, 14, 30, 0, tzinfo=timezone.utc)
    name = backup_name("default", when, "before-upgrade", compress=True)
    assert name == "default--20250115-143000--before-upgrade.brain.gz"

    info = parse_backup_name(temp_root / name)
    assert info.slug == "default"
    assert info.label == "before-upgrade"
    assert info.created_at == when
    assert info.compressed


def test_parse_backup_name_rejects_other_files(temp_root):
    assert parse_backup_name(temp_root / "notes.txt") is None
    assert parse_backup_name(temp_root / "default.brain") is None
    assert parse_backup_name(temp_root / "default--yesterday.brain") is None


def test_parse_backup_name_with_separator_in_slug(temp_root):
    info = parse_backup_name(temp_root / "my--notes--20250115-143000--nightly--2.brain")
    assert info.slug == "my--notes"
    assert info.label == "nightly--2"
    assert info.created_at == datetime(2025, 1, 15, 14, 30, 0, tzinfo=timezone.utc)

    info = parse_backup_name(temp_root / "my--notes--20250115-143000.brain")
    assert info.slug == "my--notes"
    assert info.label is None


def test_backup_brain_with_double_dash_slug(repo):
    slug = repo.create_brain("my  notes")["slug"]
    assert slug == "my--notes"

    first = repo.backup(slug, label="nightly")
    second = repo.backup(slug, label="nightly")

    assert first["slug"] == slug
    assert first["label"] == "nightly"
    assert second["label"] == "nightly-2"
    assert {b["file"] for b in repo.list_backups(slug)} == {first["file"], second["file"]}
    assert repo.prune_backups(slug, keep=1)["count"] == 1
    assert len(repo.list_backups(slug)) == 1


def test_backup_info_matches_listing(demo_repo):
    info = demo_repo.backup(label="snap", compress=True)
    assert demo_repo.list_backups()[0] == info


def test_backup_copies_brain_file(demo_repo, runtime):
    info = demo_repo.backup()

    assert info["slug"] == "default"
    assert info["file"].startswith("default--")
    assert Path(info["path"]).read_bytes() == runtime.paths.user_brain("default").read_bytes()
    assert [b["file"] for b in demo_repo.list_backups()] == [info["file"]]


def test_compressed_backup_reads_back(demo_repo, runtime):
    info = demo_repo.backup(compress=True)
    assert info["compressed"]
    assert runtime.backups.read(info["file"]) == runtime.paths.user_brain("default").read_bytes()


def test_same_second_backups_get_distinct_names(demo_repo):
    first = demo_repo.backup(label="nightly")
    second = demo_repo.backup(label="nightly")

    assert first["file"] != second["file"]
    assert len(demo_repo.list_backups("default")) == 2


def test_backup_unknown_brain(repo):
    with pytest.raises(NotFound):
        repo.backup("nope")


def test_list_backups_filters_by_brain(demo_repo):
    demo_repo.create_brain("other")
    demo_repo.backup()
    demo_repo.backup("other")

    assert [b["slug"] for b in demo_repo.list_backups("other")] == ["other"]
    assert len(demo_repo.list_backups()) == 2


# --- Prune ---


def test_prune_without_criteria_is_skipped(demo_repo):
    demo_repo.backup()
    result = demo_repo.prune_backups()
    assert result["skipped"]
    assert len(demo_repo.list_backups()) == 1


def test_prune_keep_newest(demo_repo):
    for _ in range(3):
        demo_repo.backup()
    newest = demo_repo.list_backups()[0]["file"]

    dry = demo_repo.prune_backups(keep=1, dry_run=True)
    assert dry["count"] == 2
    assert len(demo_repo.list_backups()) == 3

    result = demo_repo.prune_backups(keep=1)
    assert result["count"] == 2
    assert [b["file"] for b in demo_repo.list_backups()] == [newest]


def test_prune_keep_counts_per_brain(demo_repo):
    demo_repo.create_brain("other")
    demo_repo.backup()
    demo_repo.backup()
    demo_repo.backup("other")

    result = demo_repo.prune_backups(keep=1)

    assert result["count"] == 1
    assert sorted(b["slug"] for b in demo_repo.list_backups()) == ["default", "other"]


def test_prune_older_than(demo_repo):
    demo_repo.backup()
    assert demo_repo.prune_backups(older_than=30)["count"] == 0
    assert demo_repo.prune_backups(older_than="2999-01-01")["count"] == 1
    assert demo_repo.list_backups() == []


def test_prune_rejects_bad_arguments(demo_repo):
    with pytest.raises(ValidationFailure):
        demo_repo.prune_backups(keep=-1)
    with pytest.raises(ValidationFailure):
        demo_repo.prune_backups(older_than="whenever")


# --- Restore ---


def test_restore_under_new_slug(demo_repo):
    info = demo_repo.backup()
    demo_repo.delete_project("demo")

    result = demo_repo.restore_from_backup(info["file"], target="copy")

    assert result["brain"] == "copy"
    assert not result["overwritten"]
    assert demo_repo.get_entity("demo", "article", brain="copy")["payload"] == {"title": "B"}
    assert demo_repo.list_projects() == []
    assert demo_repo.integrity_report("copy")["ok"]


def test_restore_over_existing_requires_overwrite(demo_repo, recorded):
    info = demo_repo.backup()
    demo_repo.delete_project("demo")

    with pytest.raises(Conflict):
        demo_repo.restore_from_backup(info["path"])

    result = demo_repo.restore_from_backup(info["path"], overwrite=True)
    assert result["overwritten"]
    assert demo_repo.get_entity("demo", "article")["version"] == 2
    assert recorded[-1] == "brain.restored"


def test_restore_and_activate(demo_repo):
    info = demo_repo.backup(compress=True)
    demo_repo.restore_from_backup(info["file"], target="restored", activate=True)
    assert demo_repo.active_brain() == "restored"
    assert [p["slug"] for p in demo_repo.list_projects()] == ["demo"]


def test_restore_refuses_system_and_missing_files(demo_repo):
    info = demo_repo.backup()
    with pytest.raises(Conflict):
        demo_repo.restore_from_backup(info["file"], target="system", overwrite=True)
    with pytest.raises(NotFound):
        demo_repo.restore_from_backup("missing.brain")


def test_restore_rejects_corrupt_backup(demo_repo, runtime):
    corrupt = runtime.paths.backups / "default--20250101-000000.brain"
    corrupt.write_bytes(b"{not json")
    with pytest.raises(ValidationFailure):
        demo_repo.restore_from_backup(corrupt.name, target="broken")
