import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from snapvcs.base import CommitId, ContentHash, Snapshot

ID_WIDTH = 12


def hash_bytes(data: bytes) -> ContentHash:
    return hashlib.sha1(data).hexdigest()


def commit_sha(
    parent: CommitId | None,
    timestamp: datetime,
    message: str,
    author: str,
    snapshot: Snapshot,
) -> str:
    """
    Hash the canonical form of the commit metadata.

    The snapshot is hashed as sorted items so the id does not depend on
    staging order.
    """
    doc = {
        "parent": parent,
        "timestamp": timestamp.isoformat(),
        "message": message,
        "author": author,
        "snapshot": sorted(snapshot.items()),
    }
    raw = json.dumps(doc, separators=(",", ":"), ensure_ascii=False).encode()
    return hashlib.sha1(raw).hexdigest()


def short_id(ref: str) -> CommitId:
    """Display id for a full sha (or an already short id)."""
    return ref[:ID_WIDTH]


@dataclass(frozen=True)
class Commit:
    sha: str
    timestamp: datetime
    message: str
    author: str
    parent: CommitId | None
    snapshot: Snapshot = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        message: str,
        author: str,
        timestamp: datetime,
        snapshot: Snapshot,
        parent: CommitId | None = None,
    ) -> "Commit":
        snapshot = dict(snapshot)
        sha = commit_sha(parent, timestamp, message, author, snapshot)
        return cls(
            sha=sha,
            timestamp=timestamp,
            message=message,
            author=author,
            parent=parent,
            snapshot=snapshot,
        )

    def __hash__(self) -> int:
        return hash(self.sha)

    @property
    def id(self) -> CommitId:
        return short_id(self.sha)

    @property
    def is_root(self) -> bool:
        return self.parent is None

    def same_tree(self, snapshot: Snapshot) -> bool:
        return self.snapshot == snapshot

    def to_state(self) -> dict[str, Any]:
        return {
            "sha": self.sha,
            "timestamp": self.timestamp.isoformat(),
            "message": self.message,
            "author": self.author,
            "parent": self.parent,
            "snapshot": dict(self.snapshot),
        }

    @classmethod
    def from_state(cls, data: dict[str, Any]) -> "Commit":
        return cls(
            sha=data["sha"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            message=data["message"],
            author=data["author"],
            parent=data["parent"],
            snapshot=dict(data["snapshot"]),
        )

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("Commit(...)")
        else:
            with p.group(4, "Commit(", ")"):
                p.breakable()
                p.text(f"id={self.id},")
                p.breakable()
                p.text(f"message={self.message!r},")
                p.breakable()
                p.text(f"parent={self.parent},")
                p.breakable()
                p.text("snapshot=")
                p.pretty(self.snapshot)
                p.breakable()
