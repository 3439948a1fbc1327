"""M3U decision log: creation, relative paths, header checks and rebase."""

import sys
from pathlib import Path

import pytest

SRC_DIR = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_DIR))

from reelrank.entry import Label
from reelrank.playlist import M3U_HEADER, M3uPlaylist, PersistenceError, is_under


def read_lines(path: Path):
    return path.read_text(encoding="utf-8").splitlines()


# ============================================================================
# Creation and loading
# ============================================================================

def test_open_creates_file_with_header(tmp_path):
    path = tmp_path / "sub" / "decisions.m3u"
    playlist = M3uPlaylist.open(path)
    assert path.exists()
    assert read_lines(path) == [M3U_HEADER]
    assert playlist.entries == []
    assert playlist.root == tmp_path / "sub"


def test_open_without_create_leaves_disk_untouched(tmp_path):
    path = tmp_path / "missing.m3u"
    playlist = M3uPlaylist.open(path, create=False)
    assert playlist.entries == []
    assert not path.exists()


def test_decisions_written_relative_and_read_absolute(tmp_path):
    path = tmp_path / "decisions.m3u"
    playlist = M3uPlaylist.open(path)
    playlist.add_positive(tmp_path / "movies" / "keep.mp4")
    playlist.add_negative(tmp_path / "movies" / "skip.mp4")
    assert read_lines(path) == [M3U_HEADER, "movies/keep.mp4", "#NEGATIVE:movies/skip.mp4"]

    reloaded = M3uPlaylist.open(path)
    assert reloaded.paths(Label.POSITIVE) == [tmp_path / "movies" / "keep.mp4"]
    assert reloaded.paths(Label.NEGATIVE) == [tmp_path / "movies" / "skip.mp4"]
    assert reloaded.paths() == [tmp_path / "movies" / "keep.mp4", tmp_path / "movies" / "skip.mp4"]


def test_paths_outside_playlist_dir_use_dot_dot(tmp_path):
    path = tmp_path / "lists" / "decisions.m3u"
    playlist = M3uPlaylist.open(path)
    playlist.add_positive(tmp_path / "media" / "a.mp4")
    assert read_lines(path)[1] == "../media/a.mp4"
    assert M3uPlaylist.open(path).paths() == [tmp_path / "media" / "a.mp4"]


def test_comments_and_blank_lines_are_ignored(tmp_path):
    path = tmp_path / "decisions.m3u"
    path.write_text("\ufeff#EXTM3U\n#EXTINF:-1,Title\n\nclip.mp4\n#NEGATIVE:other.mp4\r\n", encoding="utf-8")
    playlist = M3uPlaylist.open(path)
    assert playlist.decided() == {tmp_path / "clip.mp4": Label.POSITIVE, tmp_path / "other.mp4": Label.NEGATIVE}


def test_latest_decision_wins(tmp_path):
    path = tmp_path / "decisions.m3u"
    path.write_text("#EXTM3U\na.mp4\n#NEGATIVE:a.mp4\n", encoding="utf-8")
    assert M3uPlaylist.open(path).decided() == {tmp_path / "a.mp4": Label.NEGATIVE}


def test_awkward_names_survive_reload(tmp_path):
    """Names that look like comments or carry edge whitespace keep their decision."""
    path = tmp_path / "decisions.m3u"
    hashed = tmp_path / "#1 favourite.mp4"
    leading = tmp_path / " intro.mp4"
    trailing = tmp_path / "sub" / "outro.mp4 "
    playlist = M3uPlaylist.open(path)
    playlist.add_positive(hashed)
    playlist.add_negative(leading)
    playlist.add_positive(trailing)
    assert read_lines(path) == [
        M3U_HEADER,
        "./#1 favourite.mp4",
        "#NEGATIVE:./ intro.mp4",
        "./sub/outro.mp4 ",
    ]

    reloaded = M3uPlaylist.open(path)
    assert reloaded.decided() == playlist.decided() == {
        hashed: Label.POSITIVE,
        leading: Label.NEGATIVE,
        trailing: Label.POSITIVE,
    }


def test_rebase_keeps_awkward_names(tmp_path):
    path = tmp_path / "decisions.m3u"
    playlist = M3uPlaylist.open(path)
    playlist.add_positive(tmp_path / "old" / "#x.mp4")
    playlist.add_negative(tmp_path / " y.mp4")
    assert playlist.rebase(tmp_path / "old", tmp_path / "new") == {"rewritten": 1, "unchanged": 1}
    assert M3uPlaylist.open(path).decided() == {
        tmp_path / "new" / "#x.mp4": Label.POSITIVE,
        tmp_path / " y.mp4": Label.NEGATIVE,
    }


def test_missing_header_is_rejected(tmp_path):
    path = tmp_path / "bad.m3u"
    path.write_text("a.mp4\n", encoding="utf-8")
    with pytest.raises(PersistenceError):
        M3uPlaylist.open(path)


def test_empty_file_is_rejected(tmp_path):
    path = tmp_path / "empty.m3u"
    path.write_text("", encoding="utf-8")
    with pytest.raises(PersistenceError):
        M3uPlaylist.open(path)


def test_failed_append_keeps_memory_unchanged(tmp_path):
    path = tmp_path / "decisions.m3u"
    playlist = M3uPlaylist.open(path)
    path.unlink()
    path.mkdir()
    with pytest.raises(PersistenceError):
        playlist.add_positive(tmp_path / "a.mp4")
    assert playlist.entries == []


# ============================================================================
# Rebase
# ============================================================================

def test_rebase_round_trip(tmp_path):
    path = tmp_path / "decisions.m3u"
    path.write_text(
        "#EXTM3U\n# kept comment\nold/a.mp4\n#NEGATIVE:old/sub/b.mp4\nelsewhere/c.mp4\n",
        encoding="utf-8",
    )
    original = path.read_text(encoding="utf-8")
    playlist = M3uPlaylist.open(path)

    result = playlist.rebase(tmp_path / "old", tmp_path / "new")
    assert result == {"rewritten": 2, "unchanged": 1}
    assert read_lines(path) == [
        "#EXTM3U",
        "# kept comment",
        "new/a.mp4",
        "#NEGATIVE:new/sub/b.mp4",
        "elsewhere/c.mp4",
    ]
    assert playlist.decided()[tmp_path / "new" / "sub" / "b.mp4"] is Label.NEGATIVE

    playlist.rebase(tmp_path / "new", tmp_path / "old")
    assert path.read_text(encoding="utf-8") == original


def test_rebase_leaves_no_temp_files(tmp_path):
    path = tmp_path / "decisions.m3u"
    playlist = M3uPlaylist.open(path)
    playlist.add_positive(tmp_path / "x" / "a.mp4")
    playlist.rebase(tmp_path / "x", tmp_path / "y")
    assert sorted(p.name for p in tmp_path.iterdir()) == ["decisions.m3u"]


def test_is_under():
    assert is_under(Path("/a/b/c"), Path("/a"))
    assert not is_under(Path("/ab/c"), Path("/a"))
