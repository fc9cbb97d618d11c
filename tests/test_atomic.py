"""Tests for atomic file replacement."""

from __future__ import annotations

import json
from unittest.mock import patch

from dnsdeck.storage.atomic import atomic_write, atomic_write_json


class TestAtomicWrite:
    def test_write_new_file(self, tmp_path):
        target = tmp_path / "sub" / "managed.conf"
        result = atomic_write(target, "server:\n")
        assert result.success
        assert target.read_text() == "server:\n"
        assert target.stat().st_mode & 0o777 == 0o644

    def test_replace_existing(self, tmp_path):
        target = tmp_path / "managed.conf"
        target.write_text("old\n")
        assert atomic_write(target, "new\n", mode=0o600).success
        assert target.read_text() == "new\n"
        assert target.stat().st_mode & 0o777 == 0o600

    def test_line_endings_preserved(self, tmp_path):
        target = tmp_path / "managed.conf"
        atomic_write(target, "a\r\nb\n")
        assert target.read_bytes() == b"a\r\nb\n"

    def test_failed_rename_leaves_target_untouched(self, tmp_path):
        target = tmp_path / "managed.conf"
        target.write_text("original\n")

        with patch("dnsdeck.storage.atomic.os.replace", side_effect=OSError("disk full")):
            result = atomic_write(target, "replacement\n")

        assert not result.success
        assert "disk full" in result.error
        assert target.read_text() == "original\n"
        assert [p.name for p in tmp_path.iterdir()] == ["managed.conf"]

    def test_unencodable_content_cleans_up(self, tmp_path):
        target = tmp_path / "managed.conf"
        target.write_text("original\n")

        result = atomic_write(target, "forward-addr: \ud800\n")

        assert not result.success
        assert target.read_text() == "original\n"
        assert [p.name for p in tmp_path.iterdir()] == ["managed.conf"]

    def test_unwritable_directory(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        result = atomic_write(blocker / "managed.conf", "x")
        assert not result.success


class TestAtomicWriteJson:
    def test_indented_with_trailing_newline(self, tmp_path):
        target = tmp_path / "upstream.json"
        assert atomic_write_json(target, {"mode": "dot"}).success
        text = target.read_text()
        assert text.endswith("}\n")
        assert json.loads(text) == {"mode": "dot"}

    def test_unserializable(self, tmp_path):
        target = tmp_path / "upstream.json"
        result = atomic_write_json(target, {"bad": object()})
        assert not result.success
        assert not target.exists()
