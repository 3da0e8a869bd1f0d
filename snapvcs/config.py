import getpass
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from snapvcs.impl.memory import DEFAULT_BRANCH

REPO_DIR_NAME = ".snapvcs"
DB_NAME = "state-v1.db"


def _default_author() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


@dataclass
class RepoConfig:
    root: Path
    dir_name: str = REPO_DIR_NAME
    db_name: str = DB_NAME
    default_branch: str = DEFAULT_BRANCH
    author: str = field(default_factory=_default_author)
    lock_timeout: float = 5.0

    @property
    def repo_dir(self) -> Path:
        return self.root / self.dir_name

    @property
    def db_path(self) -> Path:
        return self.repo_dir / self.db_name

    @classmethod
    def from_env(
        cls, root: str | Path, environ: Mapping[str, str] | None = None
    ) -> "RepoConfig":
        """Build a config for a working tree, honouring SNAPVCS_* variables."""
        env = os.environ if environ is None else environ
        config = cls(root=Path(root).absolute())
        if env.get("SNAPVCS_AUTHOR"):
            config.author = env["SNAPVCS_AUTHOR"]
        if env.get("SNAPVCS_DEFAULT_BRANCH"):
            config.default_branch = env["SNAPVCS_DEFAULT_BRANCH"]
        if env.get("SNAPVCS_LOCK_TIMEOUT"):
            config.lock_timeout = float(env["SNAPVCS_LOCK_TIMEOUT"])
        return config
