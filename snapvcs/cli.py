import argparse
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from snapvcs.commit import Commit
from snapvcs.config import RepoConfig
from snapvcs.errors import VcsError
from snapvcs.repository import Repository

logger = logging.getLogger(__name__)


def print_commit(commit: Commit, head: bool = False) -> None:
    if head:
        print("****current HEAD****")
    print(f"commit {commit.sha}")
    print(f"Date:   {commit.timestamp.isoformat()}")
    print(f"Author: {commit.author}")
    print(f"    {commit.message}")
    print("===")


def print_section(title: str, items: Sequence[str]) -> None:
    print(f"{title}:")
    for item in items:
        print(f"  {item}")
    print()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snapvcs", description="Minimal local version control"
    )
    parser.add_argument(
        "--repo", default=".", help="Working tree root (default: current directory)"
    )
    parser.add_argument("--author", default=None, help="Author recorded on commits")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Log debug output to stderr"
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init", help="Create a repository with an initial commit")
    sub.add_parser("add", help="Stage a file").add_argument("path")
    sub.add_parser("rm", help="Unstage a file and delete it").add_argument("path")
    sub.add_parser("commit", help="Commit the staged files").add_argument("message")
    sub.add_parser("branch", help="Create a branch at the head").add_argument("name")
    sub.add_parser("rm-branch", help="Delete a branch").add_argument("name")
    sub.add_parser("checkout", help="Switch to a branch").add_argument("name")
    sub.add_parser("reset", help="Move the current branch to a commit").add_argument(
        "commit_id"
    )
    sub.add_parser("log", help="Show history of the current branch")
    sub.add_parser("global-log", help="Show every commit")
    sub.add_parser("find", help="Find commits by exact message").add_argument(
        "message"
    )
    sub.add_parser("status", help="Show staged and untracked files")
    sub.add_parser("merge", help="Merge a branch (not supported)").add_argument(
        "branch"
    )
    return parser


def run(args: argparse.Namespace) -> int:
    root = Path(args.repo).absolute()
    config = RepoConfig.from_env(root)
    if args.author:
        config.author = args.author

    if args.command == "merge":
        print("Merging branches is not supported.", file=sys.stderr)
        return 1

    repo = Repository.open(root, config=config, create=args.command == "init")
    try:
        return _dispatch(repo, args)
    finally:
        repo.state_store.dispose()


def _dispatch(repo: Repository, args: argparse.Namespace) -> int:
    config = repo.config
    with repo:
        if args.command == "init":
            commit = repo.init().unwrap()
            print(f"Initialized empty repository in {config.repo_dir} ({commit.id})")
        elif args.command == "add":
            repo.add(Path(args.path).absolute()).unwrap()
        elif args.command == "rm":
            repo.rm(Path(args.path).absolute()).unwrap()
        elif args.command == "commit":
            commit = repo.commit(args.message).unwrap()
            print(f"[{repo.graph.current_branch} {commit.id}] {commit.message}")
        elif args.command == "branch":
            repo.branch(args.name).unwrap()
        elif args.command == "rm-branch":
            pruned = repo.rm_branch(args.name).unwrap()
            print(f"Deleted branch {args.name} ({len(pruned)} commits pruned)")
        elif args.command == "checkout":
            repo.checkout(args.name).unwrap()
            print(f"Switched to branch '{args.name}'")
        elif args.command == "reset":
            commit_id = repo.reset(args.commit_id).unwrap()
            print(f"HEAD is now at {commit_id}")
        elif args.command == "log":
            for index, commit in enumerate(repo.log()):
                print_commit(commit, head=index == 0)
        elif args.command == "global-log":
            for commit in repo.global_log():
                print_commit(commit, head=repo.graph.is_head(commit))
        elif args.command == "find":
            found = repo.find(args.message)
            if not found:
                print("Found no commit with that message.", file=sys.stderr)
                return 1
            for commit in found:
                print(commit.id)
        elif args.command == "status":
            status = repo.status()
            print(f"On branch {status.branch}")
            print()
            print_section("Staged files", status.staged)
            print_section("Staged but modified files", status.modified)
            print_section("Staged but removed files", status.removed)
            print_section("Untracked files", status.untracked)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="[%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        return run(args)
    except VcsError as e:
        logger.debug("Command %s failed with %s", args.command, e.kind)
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
