import logging
import os
from collections.abc import Callable, Iterator
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from types import TracebackType
from typing import Any

from snapvcs.base import (
    CommitGraph,
    ContentHash,
    ContentStore,
    RepoState,
    StagingArea,
    StateStore,
    StateTransaction,
)
from snapvcs.commit import Commit, hash_bytes
from snapvcs.config import RepoConfig
from snapvcs.errors import ErrorKind, Result, VcsError
from snapvcs.impl.sql import create_sql_state_store

logger = logging.getLogger(__name__)

INITIAL_MESSAGE = "initial commit"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Status:
    branch: str | None
    staged: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    untracked: list[str] = field(default_factory=list)


class Repository:
    """
    Per-invocation handle over a working tree and its stored state.

    Used as a context manager: state is loaded on enter and written back on
    a clean exit, all under the state store's write lock. Nothing is kept
    in module globals.
    """

    def __init__(
        self,
        config: RepoConfig,
        state_store: StateStore,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config
        self.state_store = state_store
        self.clock = clock
        self._state: RepoState | None = None
        self._tx: StateTransaction | None = None
        self._exit_stack: ExitStack | None = None

    @classmethod
    def open(
        cls, root: str | Path, config: RepoConfig | None = None, create: bool = False
    ) -> "Repository":
        config = config or RepoConfig.from_env(root)
        if not config.repo_dir.is_dir():
            if not create:
                raise VcsError(
                    ErrorKind.NOT_FOUND, f"Not a snapvcs repository: {config.root}"
                )
            config.repo_dir.mkdir(parents=True)
        store = create_sql_state_store(
            config.db_path, config.lock_timeout, config.default_branch
        )
        return cls(config, store)

    def __enter__(self) -> "Repository":
        with ExitStack() as stack:
            self._tx = stack.enter_context(self.state_store.transaction())
            self._state = self._tx.load()
            self._exit_stack = stack.pop_all()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool | None:
        stack, self._exit_stack = self._exit_stack, None
        assert stack is not None
        try:
            if exc_type is None:
                self._tx.save(self.state)
        except BaseException as e:
            # Roll back, then let the save failure propagate.
            if not stack.__exit__(type(e), e, e.__traceback__):
                raise
            return None
        finally:
            self._state = None
        return stack.__exit__(exc_type, exc, tb)

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("Repository(...)")
        else:
            with p.group(4, "Repository(", ")"):
                p.breakable()
                p.text(f"root={self.config.root},")
                p.breakable()
                if self._state is None:
                    p.text("closed")
                else:
                    p.text("graph=")
                    p.pretty(self.graph)
                    p.text(",")
                    p.breakable()
                    p.text("stage=")
                    p.pretty(self.stage)
                p.breakable()

    @property
    def state(self) -> RepoState:
        if self._state is None:
            raise RuntimeError("Repository is not open; use it as a context manager")
        return self._state

    @property
    def store(self) -> ContentStore:
        return self.state.store

    @property
    def stage(self) -> StagingArea:
        return self.state.stage

    @property
    def graph(self) -> CommitGraph:
        return self.state.graph

    def _relative(self, path: str | Path) -> str | None:
        path = Path(path)
        if path.is_absolute():
            try:
                path = path.relative_to(self.config.root)
            except ValueError:
                return None
        rel = PurePosixPath(path.as_posix())
        if not rel.parts or ".." in rel.parts or rel.parts[0] == self.config.dir_name:
            return None
        return str(rel)

    def _working_file(self, rel: str) -> Path:
        return self.config.root / rel

    def iter_working_files(self) -> Iterator[str]:
        """Relative POSIX paths of every non-hidden file in the working tree."""
        root = self.config.root
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            rel_dir = Path(dirpath).relative_to(root)
            for filename in sorted(filenames):
                if filename.startswith("."):
                    continue
                yield (rel_dir / filename).as_posix()

    def init(self) -> Result[Commit]:
        if not self.graph.is_empty():
            return Result.fail(
                ErrorKind.ALREADY_EXISTS,
                f"A repository already exists in {self.config.root}",
            )
        result = self.graph.create_commit(
            INITIAL_MESSAGE, self.config.author, self.clock(), {}
        )
        if result:
            self.stage.clear()
        return result

    def add(self, path: str | Path) -> Result[ContentHash]:
        rel = self._relative(path)
        if rel is None or not self._working_file(rel).is_file():
            return Result.fail(ErrorKind.NOT_FOUND, f"No such file: {path}")
        try:
            data = self._working_file(rel).read_bytes()
        except OSError as e:
            return Result.fail(ErrorKind.STORAGE_IO, f"Cannot read {rel}: {e}")
        result = self.store.put(data)
        if result:
            self.stage.stage(rel, result.unwrap())
        return result

    def rm(self, path: str | Path) -> Result[ContentHash]:
        """
        Unstage a path and, if the head tracks it, mark it for removal from
        the next commit. The working file is deleted either way.
        """
        rel = self._relative(path)
        if rel is None:
            return Result.fail(ErrorKind.NOT_STAGED, f"'{path}' is not staged")
        head = self.graph.head()
        committed = head.snapshot.get(rel) if head is not None else None
        result = self.stage.unstage(rel)
        if not result and committed is None:
            return result

        if result:
            content_hash = result.unwrap()
            still_staged = content_hash in (h for _, h in self.stage.entries())
            if not still_staged and self.store.refcount(content_hash) == 0:
                self.store.remove(content_hash)
        if committed is not None:
            self.stage.mark_removed(rel)

        working = self._working_file(rel)
        if working.is_file():
            try:
                working.unlink()
            except OSError as e:
                return Result.fail(ErrorKind.STORAGE_IO, f"Cannot delete {rel}: {e}")
        return result if result else Result.ok(committed)

    def commit(self, message: str) -> Result[Commit]:
        head = self.graph.head()
        tree = self.stage.apply_to(head.snapshot if head is not None else {})
        result = self.graph.create_commit(
            message, self.config.author, self.clock(), tree
        )
        if result:
            commit = result.unwrap()
            self.store.retain(commit.snapshot.values())
            self.stage.clear()
        return result

    def branch(self, name: str) -> Result[str]:
        return self.graph.add_branch(name)

    def rm_branch(self, name: str) -> Result[list[Commit]]:
        result = self.graph.delete_branch(name)
        if result:
            for commit in result.unwrap():
                self.store.release(commit.snapshot.values())
        return result

    def checkout(self, name: str) -> Result[str]:
        previous = self.graph.head()
        result = self.graph.switch_branch(name)
        if result:
            self._materialize(previous)
        return result

    def reset(self, commit_id: str) -> Result[str]:
        previous = self.graph.head()
        result = self.graph.reset_to(commit_id)
        if result:
            self._materialize(previous)
        return result

    def merge(self, branch: str) -> None:
        raise NotImplementedError("Merging branches is not supported")

    def _materialize(self, previous: Commit | None) -> None:
        """Rewrite the working tree to the head snapshot and clear staging."""
        head = self.graph.head()
        assert head is not None
        for rel, content_hash in head.snapshot.items():
            data = self.store.get(content_hash).unwrap()
            working = self._working_file(rel)
            try:
                working.parent.mkdir(parents=True, exist_ok=True)
                working.write_bytes(data)
            except OSError as e:
                raise VcsError(ErrorKind.STORAGE_IO, f"Cannot write {rel}: {e}") from e

        if previous is not None:
            for rel in previous.snapshot.keys() - head.snapshot.keys():
                working = self._working_file(rel)
                # Local edits to a file the new head does not track are kept.
                if (
                    working.is_file()
                    and hash_bytes(working.read_bytes()) == previous.snapshot[rel]
                ):
                    working.unlink()

        self.stage.clear()
        logger.debug("Working tree now matches %s", head.id)

    def log(self) -> list[Commit]:
        return list(self.graph.history().unwrap())

    def global_log(self) -> list[Commit]:
        return self.graph.all_commits()

    def find(self, message: str) -> list[Commit]:
        return self.graph.find_by_message(message)

    def status(self) -> Status:
        staged = dict(self.stage.entries())
        head = self.graph.head()
        committed = head.snapshot if head is not None else {}
        removals = set(self.stage.removals())
        status = Status(branch=self.graph.current_branch, staged=sorted(staged))

        for rel, content_hash in sorted(staged.items()):
            working = self._working_file(rel)
            if not working.is_file():
                status.removed.append(rel)
            elif hash_bytes(working.read_bytes()) != content_hash:
                status.modified.append(rel)

        status.removed = sorted(removals.union(status.removed))

        for rel in self.iter_working_files():
            if rel not in staged and (rel not in committed or rel in removals):
                status.untracked.append(rel)
        return status

