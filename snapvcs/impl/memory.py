import json
import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from snapvcs.base import (
    Blob,
    CommitGraph,
    CommitHistory,
    CommitId,
    ContentHash,
    ContentStore,
    RepoState,
    Snapshot,
    StagingArea,
    StateStore,
    StateTransaction,
)
from snapvcs.commit import ID_WIDTH, Commit, hash_bytes, short_id
from snapvcs.errors import ErrorKind, Result

logger = logging.getLogger(__name__)

DEFAULT_BRANCH = "main"

SCHEMA_VERSION = 1
CONTENT_INDEX = "content_index"
STAGING_AREA = "staging_area"
COMMIT_GRAPH = "commit_graph"

MemoryBlobData = dict[ContentHash, Blob]
MemoryStructureData = dict[str, dict[str, Any]]


class MemoryContentStore(ContentStore):
    def __init__(
        self,
        blobs: MemoryBlobData | None = None,
        refcounts: dict[ContentHash, int] | None = None,
    ) -> None:
        self.blobs: MemoryBlobData = blobs if blobs is not None else {}
        self.refcounts: dict[ContentHash, int] = refcounts or {}

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("ContentStore(...)")
        else:
            with p.group(4, "ContentStore(", ")"):
                p.breakable()
                p.text(f"blobs={len(self.blobs)},")
                p.breakable()
                p.text("refcounts=")
                p.pretty(self.refcounts)
                p.breakable()

    def __len__(self) -> int:
        return len(self.blobs)

    def put(self, data: Blob) -> Result[ContentHash]:
        content_hash = hash_bytes(data)
        if content_hash in self.blobs:
            logger.debug("Blob %s already stored", content_hash)
        else:
            self.blobs[content_hash] = bytes(data)
            logger.debug("Stored blob %s (%d bytes)", content_hash, len(data))
        return Result.ok(content_hash)

    def get(self, content_hash: ContentHash) -> Result[Blob]:
        data = self.blobs.get(content_hash)
        if data is None:
            return Result.fail(ErrorKind.NOT_FOUND, f"No blob {content_hash}")
        return Result.ok(data)

    def remove(self, content_hash: ContentHash) -> Result[None]:
        if content_hash not in self.blobs:
            return Result.fail(ErrorKind.NOT_FOUND, f"No blob {content_hash}")
        count = self.refcount(content_hash)
        if count > 0:
            return Result.fail(
                ErrorKind.PROTECTED_STATE,
                f"Blob {content_hash} is referenced by {count} commit entries",
            )
        del self.blobs[content_hash]
        self.refcounts.pop(content_hash, None)
        logger.debug("Removed blob %s", content_hash)
        return Result.ok()

    def retain(self, hashes: Iterable[ContentHash]) -> None:
        for content_hash in hashes:
            self.refcounts[content_hash] = self.refcounts.get(content_hash, 0) + 1

    def release(self, hashes: Iterable[ContentHash]) -> None:
        for content_hash in hashes:
            count = self.refcounts.get(content_hash, 0) - 1
            if count > 0:
                self.refcounts[content_hash] = count
            else:
                self.refcounts.pop(content_hash, None)

    def refcount(self, content_hash: ContentHash) -> int:
        return self.refcounts.get(content_hash, 0)

    def contains(self, content_hash: ContentHash) -> bool:
        return content_hash in self.blobs

    def hashes(self) -> list[ContentHash]:
        return list(self.blobs)

    def to_state(self) -> dict[str, Any]:
        # Blob bytes are persisted separately by the state store.
        return {"refcounts": dict(self.refcounts)}

    @classmethod
    def from_state(
        cls, data: dict[str, Any], blobs: MemoryBlobData
    ) -> "MemoryContentStore":
        refcounts = {str(k): int(v) for k, v in data["refcounts"].items()}
        return cls(blobs, refcounts)


class MemoryStagingArea(StagingArea):
    def __init__(
        self, data: Snapshot | None = None, removed: set[str] | None = None
    ) -> None:
        self.data: Snapshot = data or {}
        self.removed: set[str] = removed or set()

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("StagingArea(...)")
        else:
            with p.group(4, "StagingArea(", ")"):
                p.breakable()
                p.text("data=")
                p.pretty(self.data)
                if self.removed:
                    p.text(",")
                    p.breakable()
                    p.text("removed=")
                    p.pretty(sorted(self.removed))
                p.breakable()

    def stage(self, path: str, content_hash: ContentHash) -> None:
        self.removed.discard(path)
        self.data[path] = content_hash

    def unstage(self, path: str) -> Result[ContentHash]:
        if path not in self.data:
            return Result.fail(ErrorKind.NOT_STAGED, f"'{path}' is not staged")
        return Result.ok(self.data.pop(path))

    def get(self, path: str) -> ContentHash | None:
        return self.data.get(path)

    def entries(self) -> list[tuple[str, ContentHash]]:
        return list(self.data.items())

    def snapshot(self) -> Snapshot:
        return dict(self.data)

    def mark_removed(self, path: str) -> None:
        self.data.pop(path, None)
        self.removed.add(path)

    def removals(self) -> list[str]:
        return sorted(self.removed)

    def apply_to(self, base: Snapshot) -> Snapshot:
        tree = {**base, **self.data}
        for path in self.removed:
            tree.pop(path, None)
        return tree

    def count(self) -> int:
        return len(self.data)

    def is_dirty(self) -> bool:
        return len(self.data) > 0 or len(self.removed) > 0

    def clear(self) -> None:
        self.data.clear()
        self.removed.clear()

    def to_state(self) -> dict[str, Any]:
        return {"entries": dict(self.data), "removed": sorted(self.removed)}

    @classmethod
    def from_state(cls, data: dict[str, Any]) -> "MemoryStagingArea":
        return cls(
            {str(k): str(v) for k, v in data["entries"].items()},
            {str(path) for path in data.get("removed", [])},
        )


class MemoryCommitGraph(CommitGraph):
    """
    Commit table indexed by id, with child links and branch pointers kept as
    plain ids next to it.
    """

    def __init__(self, default_branch: str = DEFAULT_BRANCH) -> None:
        self.default_branch = default_branch
        self.commits: dict[CommitId, Commit] = {}
        self.children: dict[CommitId, set[CommitId]] = {}
        self.branch_heads: dict[str, CommitId] = {}
        self.current_branch: str | None = None

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("CommitGraph(...)")
        else:
            with p.group(4, "CommitGraph(", ")"):
                p.breakable()
                p.text(f"current_branch={self.current_branch!r},")
                p.breakable()
                p.text("branches=")
                p.pretty(self.branch_heads)
                p.text(",")
                p.breakable()
                p.text(f"commits={list(self.commits)},")
                p.breakable()

    def __len__(self) -> int:
        return len(self.commits)

    def is_empty(self) -> bool:
        return not self.commits

    def head(self) -> Commit | None:
        if self.current_branch is None:
            return None
        return self.commits[self.branch_heads[self.current_branch]]

    def is_head(self, commit: Commit) -> bool:
        head = self.head()
        return head is not None and head.id == commit.id

    def branches(self) -> dict[str, CommitId]:
        return dict(self.branch_heads)

    def children_of(self, commit_id: CommitId) -> set[CommitId]:
        return set(self.children.get(commit_id, ()))

    def all_commits(self) -> list[Commit]:
        return list(self.commits.values())

    def resolve(self, ref: str) -> CommitId | None:
        """Map a full sha, a display id or a unique id prefix to a commit id."""
        if ref in self.commits:
            return ref
        if len(ref) >= ID_WIDTH:
            commit = self.commits.get(short_id(ref))
            if commit is not None and commit.sha.startswith(ref):
                return commit.id
            return None
        matches = [commit_id for commit_id in self.commits if commit_id.startswith(ref)]
        if len(matches) == 1:
            return matches[0]
        return None

    def get_commit(self, commit_id: CommitId) -> Result[Commit]:
        resolved = self.resolve(commit_id) if commit_id else None
        if resolved is None:
            return Result.fail(ErrorKind.NOT_FOUND, f"No commit {commit_id}")
        return Result.ok(self.commits[resolved])

    def _insert(self, commit: Commit) -> None:
        self.commits[commit.id] = commit
        self.children.setdefault(commit.id, set())
        if commit.parent is not None:
            self.children.setdefault(commit.parent, set()).add(commit.id)

    def create_commit(
        self,
        message: str,
        author: str,
        timestamp: datetime,
        staged_snapshot: Snapshot,
    ) -> Result[Commit]:
        parent = self.head()
        if parent is None:
            root = Commit.create(message, author, timestamp, staged_snapshot)
            self._insert(root)
            self.branch_heads[self.default_branch] = root.id
            self.current_branch = self.default_branch
            logger.info("Created root commit %s on '%s'", root.id, self.default_branch)
            return Result.ok(root)

        if not staged_snapshot:
            return Result.fail(ErrorKind.NO_CHANGES, "Nothing staged to commit")
        if parent.same_tree(staged_snapshot):
            return Result.fail(
                ErrorKind.NO_CHANGES, f"Staged files are identical to {parent.id}"
            )

        commit = Commit.create(
            message, author, timestamp, staged_snapshot, parent=parent.id
        )
        if commit.id in self.commits:
            return Result.fail(ErrorKind.ALREADY_EXISTS, f"Commit {commit.id} exists")

        self._insert(commit)
        assert self.current_branch is not None
        self.branch_heads[self.current_branch] = commit.id
        logger.info("Created commit %s on '%s'", commit.id, self.current_branch)
        return Result.ok(commit)

    def add_branch(self, name: str) -> Result[CommitId]:
        if name in self.branch_heads:
            return Result.fail(ErrorKind.ALREADY_EXISTS, f"Branch '{name}' already exists")
        head = self.head()
        if head is None:
            return Result.fail(ErrorKind.NOT_FOUND, "No commits to branch from")
        self.branch_heads[name] = head.id
        return Result.ok(head.id)

    def switch_branch(self, name: str) -> Result[CommitId]:
        if name not in self.branch_heads:
            return Result.fail(ErrorKind.NOT_FOUND, f"No branch named '{name}'")
        self.current_branch = name
        return Result.ok(self.branch_heads[name])

    def reset_to(self, commit_id: CommitId) -> Result[CommitId]:
        resolved = self.resolve(commit_id) if commit_id else None
        if resolved is None or self.current_branch is None:
            return Result.fail(ErrorKind.NOT_FOUND, f"No commit {commit_id}")
        self.branch_heads[self.current_branch] = resolved
        return Result.ok(resolved)

    def delete_branch(self, name: str) -> Result[list[Commit]]:
        if name not in self.branch_heads:
            return Result.fail(ErrorKind.NOT_FOUND, f"No branch named '{name}'")
        if name == self.current_branch:
            return Result.fail(
                ErrorKind.PROTECTED_STATE, f"Cannot delete checked out branch '{name}'"
            )

        commit_id: CommitId | None = self.branch_heads.pop(name)
        targets = set(self.branch_heads.values())
        previous: CommitId | None = None
        pruned: list[Commit] = []

        while commit_id is not None:
            others = self.children.get(commit_id, set()) - {previous}
            if commit_id in targets or others:
                if previous is not None:
                    self.children[commit_id].discard(previous)
                break
            commit = self.commits.pop(commit_id)
            self.children.pop(commit_id, None)
            pruned.append(commit)
            previous = commit_id
            commit_id = commit.parent

        logger.info(
            "Deleted branch '%s', pruned %s",
            name,
            [commit.id for commit in pruned] or "nothing",
        )
        return Result.ok(pruned)

    def history(self, start: CommitId | None = None) -> Result[CommitHistory]:
        if start is None:
            head = self.head()
            return Result.ok(CommitHistory(self, head.id if head else None))
        resolved = self.resolve(start)
        if resolved is None:
            return Result.fail(ErrorKind.NOT_FOUND, f"No commit {start}")
        return Result.ok(CommitHistory(self, resolved))

    def find_by_message(self, text: str) -> list[Commit]:
        return [commit for commit in self.commits.values() if commit.message == text]

    def to_state(self) -> dict[str, Any]:
        return {
            "default_branch": self.default_branch,
            "current_branch": self.current_branch,
            "branches": dict(self.branch_heads),
            "commits": [commit.to_state() for commit in self.commits.values()],
            "children": {
                commit_id: sorted(children)
                for commit_id, children in self.children.items()
            },
        }

    @classmethod
    def from_state(cls, data: dict[str, Any]) -> "MemoryCommitGraph":
        graph = cls(data["default_branch"])
        for item in data["commits"]:
            commit = Commit.from_state(item)
            graph.commits[commit.id] = commit
        graph.children = {
            commit_id: set(children) for commit_id, children in data["children"].items()
        }
        graph.branch_heads = dict(data["branches"])
        graph.current_branch = data["current_branch"]

        for commit in graph.commits.values():
            if commit.parent is not None and commit.parent not in graph.commits:
                raise ValueError(f"Commit {commit.id} has unknown parent {commit.parent}")
        for branch, target in graph.branch_heads.items():
            if target not in graph.commits:
                raise ValueError(f"Branch '{branch}' points at unknown commit {target}")
        if graph.commits and graph.current_branch not in graph.branch_heads:
            raise ValueError(f"Current branch {graph.current_branch!r} does not exist")
        return graph


def _restore(
    name: str,
    record: dict[str, Any] | None,
    factory: Callable[[dict[str, Any]], Any],
    default: Callable[[], Any],
) -> Any:
    if record is None:
        return default()
    if record.get("schema_version") != SCHEMA_VERSION:
        logger.warning(
            "Ignoring %s with schema version %r", name, record.get("schema_version")
        )
        return default()
    try:
        payload = record["payload"]
        if isinstance(payload, str):
            payload = json.loads(payload)
        return factory(payload)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        logger.warning("Ignoring unreadable %s: %s", name, e)
        return default()


def restore_state(
    records: MemoryStructureData,
    blobs: MemoryBlobData,
    default_branch: str = DEFAULT_BRANCH,
) -> RepoState:
    """Rebuild the in-process structures from persisted records."""
    store = _restore(
        CONTENT_INDEX,
        records.get(CONTENT_INDEX),
        lambda data: MemoryContentStore.from_state(data, blobs),
        lambda: MemoryContentStore(blobs),
    )
    stage = _restore(
        STAGING_AREA,
        records.get(STAGING_AREA),
        MemoryStagingArea.from_state,
        MemoryStagingArea,
    )
    graph = _restore(
        COMMIT_GRAPH,
        records.get(COMMIT_GRAPH),
        MemoryCommitGraph.from_state,
        lambda: MemoryCommitGraph(default_branch),
    )
    return RepoState(store=store, stage=stage, graph=graph)


def dump_state(state: RepoState) -> dict[str, dict[str, Any]]:
    """Persistable payload of each structure, keyed by structure name."""
    assert isinstance(state.store, MemoryContentStore)
    assert isinstance(state.stage, MemoryStagingArea)
    assert isinstance(state.graph, MemoryCommitGraph)
    return {
        CONTENT_INDEX: state.store.to_state(),
        STAGING_AREA: state.stage.to_state(),
        COMMIT_GRAPH: state.graph.to_state(),
    }


class MemoryStateTransaction(StateTransaction):
    def __init__(self, store: "MemoryStateStore") -> None:
        self.store = store
        self.records: MemoryStructureData | None = None
        self.blobs: MemoryBlobData | None = None

    def load(self) -> RepoState:
        return restore_state(
            self.store.data.get("structures", {}),
            dict(self.store.data.get("blobs", {})),
            self.store.default_branch,
        )

    def save(self, state: RepoState) -> None:
        self.records = {
            name: {"schema_version": SCHEMA_VERSION, "payload": json.dumps(payload)}
            for name, payload in dump_state(state).items()
        }
        assert isinstance(state.store, MemoryContentStore)
        self.blobs = dict(state.store.blobs)


class MemoryStateStore(StateStore):
    """
    Keeps JSON-encoded structures in a caller-owned dict, so several
    repositories can share one "disk".
    """

    def __init__(
        self, data: dict[str, Any] | None = None, default_branch: str = DEFAULT_BRANCH
    ) -> None:
        self.data: dict[str, Any] = data if data is not None else {}
        self.default_branch = default_branch
        self.lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator[MemoryStateTransaction]:
        with self.lock:
            tx = MemoryStateTransaction(self)
            yield tx
            if tx.records is not None:
                self.data["structures"] = tx.records
                self.data["blobs"] = tx.blobs

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("MemoryStateStore(...)")
        else:
            p.text(f"MemoryStateStore(structures={list(self.data.get('structures', {}))})")


def create_memory_state_store(
    data: dict[str, Any] | None = None, default_branch: str = DEFAULT_BRANCH
) -> MemoryStateStore:
    return MemoryStateStore(data, default_branch)
