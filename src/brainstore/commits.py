"""Commit index: commit hash -> (project, entity, version).

The version ledgers are the source of truth; this index is derived from
them and can always be rebuilt by replaying every entity's ledger. It is
rebuilt rather than trusted whenever an inconsistency is detected.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .models import Brain, CommitEntry


@dataclass
class IndexDiff:
    """Difference between the stored index and the ledgers."""

    missing: list[str] = field(default_factory=list)  # in ledgers, not in index
    stale: list[str] = field(default_factory=list)  # in index, not in ledgers
    mismatched: list[str] = field(default_factory=list)  # present in both, wrong location

    @property
    def clean(self) -> bool:
        return not (self.missing or self.stale or self.mismatched)

    def to_dict(self) -> dict:
        return {
            "missing": len(self.missing),
            "stale": len(self.stale),
            "mismatched": len(self.mismatched),
        }


class CommitIndex:
    """O(1) commit lookups over a brain's `commits` map."""

    def __init__(self, brain: Brain):
        self.brain = brain

    @property
    def entries(self) -> dict[str, CommitEntry]:
        return self.brain.commits

    def lookup(self, commit: str) -> CommitEntry | None:
        return self.entries.get(commit.lower())

    def find_prefix(self, prefix: str) -> list[str]:
        """Commit hashes starting with prefix."""
        prefix = prefix.lower()
        return [h for h in self.entries if h.startswith(prefix)]

    def insert(self, commit: str, project: str, entity: str, version: int) -> None:
        self.entries[commit] = CommitEntry(project=project, entity=entity, version=version)

    def remove(self, commit: str) -> bool:
        return self.entries.pop(commit, None) is not None

    def remove_where(self, project: str, entity: str | None = None) -> list[str]:
        """Drop all entries of a project (or one entity of it)."""
        doomed = [
            h for h, e in self.entries.items()
            if e.project == project and (entity is None or e.entity == entity)
        ]
        for h in doomed:
            del self.entries[h]
        return doomed

    def relocate(self, project: str, old_entity: str, new_entity: str) -> int:
        """Point entries of an entity at its new path after a move."""
        moved = 0
        for entry in self.entries.values():
            if entry.project == project and entry.entity == old_entity:
                entry.entity = new_entity
                moved += 1
        return moved

    def for_project(self, project: str, entity: str | None = None) -> dict[str, CommitEntry]:
        return {
            h: e for h, e in self.entries.items()
            if e.project == project and (entity is None or e.entity == entity)
        }

    # --- Derivation from ledgers ---

    def expected(self, project: str | None = None) -> dict[str, CommitEntry]:
        """Index entries implied by the ledgers."""
        result: dict[str, CommitEntry] = {}
        for p_slug, proj in self.brain.projects.items():
            if project is not None and p_slug != project:
                continue
            for path, entity in proj.entities.items():
                for version in entity.versions.values():
                    if version.commit:
                        result[version.commit] = CommitEntry(
                            project=p_slug, entity=path, version=version.version
                        )
        return result

    def orphaned(self) -> dict[str, CommitEntry]:
        """Entries whose project no longer exists in the brain."""
        return {h: e for h, e in self.entries.items() if e.project not in self.brain.projects}

    def _scope(self, project: str | None) -> dict[str, CommitEntry]:
        # a project-scoped pass also sweeps entries of deleted projects
        if project is None:
            return dict(self.entries)
        return {**self.for_project(project), **self.orphaned()}

    def diff(self, project: str | None = None) -> IndexDiff:
        expected = self.expected(project)
        current = self._scope(project)
        result = IndexDiff()
        for h, entry in expected.items():
            stored = self.entries.get(h)
            if stored is None:
                result.missing.append(h)
            elif stored != entry:
                result.mismatched.append(h)
        for h in current:
            if h not in expected:
                result.stale.append(h)
        return result

    def rebuild(self, project: str | None = None) -> IndexDiff:
        """Recompute entries from ledgers; returns what had to change.

        Scoped to one project, this still drops entries left behind by
        deleted projects, but never touches other live projects.
        """
        result = self.diff(project)
        for h in self._scope(project):
            del self.entries[h]
        for h, entry in self.expected(project).items():
            self.entries[h] = entry
        return result

    def check_consistency(self) -> list[str]:
        """Validate that the index matches the ledgers. Returns list of errors."""
        result = self.diff()
        errors: list[str] = []
        if result.missing:
            errors.append(f"commit index missing {len(result.missing)} entries")
        if result.stale:
            errors.append(f"commit index has {len(result.stale)} stale entries")
        if result.mismatched:
            errors.append(f"commit index has {len(result.mismatched)} wrong locations")
        return errors
