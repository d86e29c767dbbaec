import pytest

from delve.delve_errors import DelveError
from delve.delve_snapshots import (
    padded_name,
    parse_timestamp_line,
    sort_snapshots,
)


@pytest.fixture
def submissions(tmp_path):
    for n in range(1, 11):
        (tmp_path / f"alice_Prog_{n}.py").write_text(f"# snapshot {n}\n")
    (tmp_path / "alice_Helper_1.py").write_text("# helper\n")
    nested = tmp_path / "late"
    nested.mkdir()
    (nested / "bob_Prog_1.py").write_text("# bob\n")
    (tmp_path / "readme.txt").write_text("not a snapshot\n")
    (tmp_path / "timestamps.txt").write_text(
        "alice_Prog_10.py#190\nalice_Prog_1.py#100\nalice_Helper_1.py#150\n\n"
    )
    (nested / "timestamps.txt").write_text("bob_Prog_1.py#50\n")
    return tmp_path


def test_parse_timestamp_line():
    assert parse_timestamp_line("a_B_1.py#123") == ("a_B_1.py", "a_B_1.py#123")
    with pytest.raises(DelveError) as excinfo:
        parse_timestamp_line("a_B_1.py 123", "timestamps.txt")
    assert "has no delimiter '#'" in str(excinfo.value)


def test_padded_name():
    assert padded_name("id_Prog_3.py", 3) == "id_Prog_003.py"
    assert padded_name("id_Prog_12.py", 2) == "id_Prog_12.py"
    with pytest.raises(DelveError):
        padded_name("id_Prog_x.py", 2)


def test_sort_snapshots(submissions):
    result = sort_snapshots(str(submissions))
    assert sorted(result) == ["alice", "bob"]

    alice = submissions / "alice"
    assert len(result["alice"]) == 10
    assert (alice / "alice_Prog_01.py").read_text() == "# snapshot 1\n"
    assert (alice / "alice_Prog_10.py").exists()
    assert not (submissions / "alice_Prog_1.py").exists()
    assert (alice / "extra_files" / "alice_Helper_1.py").exists()
    assert (alice / "timestamps.txt").read_text() == (
        "alice_Prog_01.py#100\nalice_Prog_10.py#190\n"
    )

    bob = submissions / "bob"
    assert (bob / "bob_Prog_1.py").read_text() == "# bob\n"
    assert (bob / "timestamps.txt").read_text() == "bob_Prog_1.py#50\n"
    assert (submissions / "readme.txt").exists()


def test_sort_snapshots_twice_is_stable(submissions):
    first = sort_snapshots(str(submissions))
    second = sort_snapshots(str(submissions))
    assert first == second


def test_malformed_timestamps(tmp_path):
    (tmp_path / "carol_Prog_1.py").write_text("")
    (tmp_path / "timestamps.txt").write_text("carol_Prog_1.py 100\n")
    with pytest.raises(DelveError):
        sort_snapshots(str(tmp_path))


def test_not_a_directory(tmp_path):
    with pytest.raises(DelveError):
        sort_snapshots(str(tmp_path / "missing"))
