from collections.abc import Iterable, Iterator
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from snapvcs.errors import Result

if TYPE_CHECKING:
    from snapvcs.commit import Commit

Blob = bytes
ContentHash = str
CommitId = str
Snapshot = dict[str, ContentHash]


class ContentStore:
    """
    Content-addressed blob storage.

    Blobs are keyed by the hash of their bytes and stored once no matter how
    many commits reference them.
    """

    def put(self, data: Blob) -> Result[ContentHash]:
        """Store bytes under their content hash, writing nothing if already present."""
        raise NotImplementedError()

    def get(self, content_hash: ContentHash) -> Result[Blob]:
        """Retrieve the bytes stored under a content hash."""
        raise NotImplementedError()

    def remove(self, content_hash: ContentHash) -> Result[None]:
        """Delete a blob that no commit snapshot references any more."""
        raise NotImplementedError()

    def retain(self, hashes: Iterable[ContentHash]) -> None:
        """Record one more commit reference for each hash."""
        raise NotImplementedError()

    def release(self, hashes: Iterable[ContentHash]) -> None:
        """Drop one commit reference for each hash."""
        raise NotImplementedError()

    def refcount(self, content_hash: ContentHash) -> int:
        """Number of commit snapshot entries pointing at the hash."""
        raise NotImplementedError()

    def contains(self, content_hash: ContentHash) -> bool:
        raise NotImplementedError()

    def hashes(self) -> list[ContentHash]:
        raise NotImplementedError()


class StagingArea:
    """
    Pending path -> content hash entries for the next commit, plus paths
    marked for removal from the head tree.

    Not versioned itself; cleared after every commit, checkout or reset.
    """

    def stage(self, path: str, content_hash: ContentHash) -> None:
        """Track a path at a content hash. The last write for a path wins."""
        raise NotImplementedError()

    def unstage(self, path: str) -> Result[ContentHash]:
        """Stop tracking a path and return the hash it was staged at."""
        raise NotImplementedError()

    def get(self, path: str) -> ContentHash | None:
        raise NotImplementedError()

    def entries(self) -> list[tuple[str, ContentHash]]:
        """Copy of the staged entries, in no particular order."""
        raise NotImplementedError()

    def snapshot(self) -> Snapshot:
        raise NotImplementedError()

    def mark_removed(self, path: str) -> None:
        """Drop a path from the next commit even though the head tracks it."""
        raise NotImplementedError()

    def removals(self) -> list[str]:
        raise NotImplementedError()

    def apply_to(self, base: Snapshot) -> Snapshot:
        """The tree the next commit would record on top of `base`."""
        raise NotImplementedError()

    def count(self) -> int:
        raise NotImplementedError()

    def is_dirty(self) -> bool:
        """Check if there are any staged entries or removals."""
        raise NotImplementedError()

    def clear(self) -> None:
        raise NotImplementedError()


class CommitHistory:
    """
    Lazy walk from a commit up its parent chain to the root, inclusive.

    Every iteration starts again from the first commit.
    """

    def __init__(self, graph: "CommitGraph", start: CommitId | None) -> None:
        self.graph = graph
        self.start = start

    def __iter__(self) -> Iterator["Commit"]:
        commit_id = self.start
        while commit_id is not None:
            commit = self.graph.get_commit(commit_id).unwrap()
            yield commit
            commit_id = commit.parent

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("CommitHistory(...)")
        else:
            p.text(f"CommitHistory(start={self.start})")


class CommitGraph:
    """
    Immutable commits linked by parent id, plus named branch pointers.

    The graph is empty until the first commit, after which exactly one branch
    is current and the head is the commit it points to.
    """

    current_branch: str | None

    def create_commit(
        self,
        message: str,
        author: str,
        timestamp: datetime,
        staged_snapshot: Snapshot,
    ) -> Result["Commit"]:
        """Record a new commit on the current branch from a staged snapshot."""
        raise NotImplementedError()

    def add_branch(self, name: str) -> Result[CommitId]:
        """Create a branch pointing at the head commit."""
        raise NotImplementedError()

    def switch_branch(self, name: str) -> Result[CommitId]:
        """Select another branch as current."""
        raise NotImplementedError()

    def reset_to(self, commit_id: CommitId) -> Result[CommitId]:
        """Move the current branch to an arbitrary commit."""
        raise NotImplementedError()

    def delete_branch(self, name: str) -> Result[list["Commit"]]:
        """Remove a branch and prune the commits only it could reach."""
        raise NotImplementedError()

    def history(self, start: CommitId | None = None) -> Result[CommitHistory]:
        """Walk parents from a commit (the head by default) to the root."""
        raise NotImplementedError()

    def find_by_message(self, text: str) -> list["Commit"]:
        """All commits whose message is exactly the given text."""
        raise NotImplementedError()

    def get_commit(self, commit_id: CommitId) -> Result["Commit"]:
        raise NotImplementedError()

    def all_commits(self) -> list["Commit"]:
        raise NotImplementedError()

    def head(self) -> "Commit | None":
        raise NotImplementedError()

    def is_head(self, commit: "Commit") -> bool:
        raise NotImplementedError()

    def branches(self) -> dict[str, CommitId]:
        raise NotImplementedError()

    def is_empty(self) -> bool:
        raise NotImplementedError()


@dataclass
class RepoState:
    """The three structures one invocation loads, mutates and persists."""

    store: ContentStore
    stage: StagingArea
    graph: CommitGraph


class StateTransaction:
    """
    One load-mutate-persist cycle against a StateStore.

    State is loaded and saved whole; a missing or unreadable structure loads
    as an empty default.
    """

    def load(self) -> RepoState:
        raise NotImplementedError()

    def save(self, state: RepoState) -> None:
        raise NotImplementedError()


class StateStore:
    """Persistence for a RepoState."""

    def transaction(self) -> AbstractContextManager[StateTransaction]:
        """
        Open a transaction holding the repository write lock.

        Changes saved inside the block are kept only if it exits cleanly.
        """
        raise NotImplementedError()

    def dispose(self) -> None:
        """Release connections held by the store."""
