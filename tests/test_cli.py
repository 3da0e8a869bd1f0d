from pathlib import Path

import pytest

from snapvcs.cli import main


@pytest.fixture
def work(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("SNAPVCS_AUTHOR", "cli-tester")
    monkeypatch.chdir(tmp_path)
    return tmp_path


def snapvcs(*args: str) -> int:
    return main(["--repo", ".", *args])


def test_basic_session(work: Path, capsys: pytest.CaptureFixture[str]):
    assert snapvcs("init") == 0
    assert "Initialized empty repository" in capsys.readouterr().out

    (work / "hello.txt").write_text("hello\n")
    assert snapvcs("add", "hello.txt") == 0
    assert snapvcs("commit", "say hello") == 0
    assert "say hello" in capsys.readouterr().out

    assert snapvcs("log") == 0
    out = capsys.readouterr().out
    assert out.index("say hello") < out.index("initial commit")
    assert "cli-tester" in out

    assert snapvcs("global-log") == 0
    out = capsys.readouterr().out
    assert out.count("****current HEAD****") == 1
    assert out.index("current HEAD") < out.index("say hello")

    assert snapvcs("find", "say hello") == 0
    assert snapvcs("status") == 0
    assert "On branch main" in capsys.readouterr().out


def test_errors_exit_with_one(work: Path, capsys: pytest.CaptureFixture[str]):
    assert snapvcs("status") == 1
    assert "Not a snapvcs repository" in capsys.readouterr().err

    assert snapvcs("init") == 0
    assert snapvcs("init") == 1
    assert snapvcs("commit", "empty") == 1
    assert snapvcs("rm-branch", "main") == 1
    assert snapvcs("checkout", "nope") == 1
    assert snapvcs("find", "nothing like this") == 1
    assert "error:" in capsys.readouterr().err


def test_branch_workflow(work: Path, capsys: pytest.CaptureFixture[str]):
    assert snapvcs("init") == 0
    (work / "a.txt").write_text("base")
    snapvcs("add", "a.txt")
    snapvcs("commit", "base")

    assert snapvcs("branch", "dev") == 0
    assert snapvcs("checkout", "dev") == 0
    (work / "a.txt").write_text("dev")
    snapvcs("add", "a.txt")
    assert snapvcs("commit", "dev work") == 0

    assert snapvcs("checkout", "main") == 0
    assert (work / "a.txt").read_text() == "base"
    assert snapvcs("rm-branch", "dev") == 0
    assert "1 commits pruned" in capsys.readouterr().out


def test_merge_is_reported_unsupported(work: Path, capsys: pytest.CaptureFixture[str]):
    assert snapvcs("init") == 0
    assert snapvcs("merge", "main") == 1
    assert "not supported" in capsys.readouterr().err


def test_usage_error(work: Path):
    with pytest.raises(SystemExit) as excinfo:
        main([])
    assert excinfo.value.code == 2
