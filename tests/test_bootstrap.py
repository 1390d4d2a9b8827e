import pytest

from simai.bootstrap import read_host_file


def test_ranks_follow_line_order(tmp_path):
    hosts = tmp_path / "hosts"
    hosts.write_text("10.0.0.1\n10.0.0.2\n10.0.0.3\n", encoding="utf-8")
    assert read_host_file(hosts) == {0: "10.0.0.1", 1: "10.0.0.2", 2: "10.0.0.3"}


def test_last_line_without_newline(tmp_path):
    hosts = tmp_path / "hosts"
    hosts.write_text("a\nb", encoding="utf-8")
    assert read_host_file(hosts) == {0: "a", 1: "b"}


def test_blank_lines_keep_their_rank(tmp_path):
    hosts = tmp_path / "hosts"
    hosts.write_text("a\n\nc\n", encoding="utf-8")
    result = read_host_file(hosts)
    assert result[1] == ""
    assert len(result) == 3


def test_empty_file(tmp_path):
    hosts = tmp_path / "hosts"
    hosts.write_text("", encoding="utf-8")
    assert read_host_file(hosts) == {}


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_host_file(tmp_path / "missing")