#!/usr/bin/env python3
"""
Tests for mirroring an exported tree onto a git working directory.
"""

import shutil
import tempfile
import unittest
from pathlib import Path

from mindsync.tree.mirror import mirror_tree, plan_mirror, scan_tree


def test_equal_listings_give_empty_plan():
    listing = {"a": None, "a/.keep": "da39", "README.md": "abcd"}
    plan = plan_mirror(listing, dict(listing))
    assert plan.is_empty


def test_plan_creates_copies_and_deletes():
    source = {"README.md": "1", "Ideas": None, "Ideas/Card.md": "2"}
    dest = {"README.md": "0", "Old": None, "Old/x.md": "3", "Old/Deep": None}
    plan = plan_mirror(source, dest)

    # Only the top-most stale path is removed
    assert plan.to_delete == ["Old"]
    assert plan.to_mkdir == ["Ideas"]
    assert plan.to_copy == ["Ideas/Card.md", "README.md"]


def test_kind_change_is_delete_then_create():
    source = {"Notes": None, "Notes/.keep": "e"}
    dest = {"Notes": "f00"}
    plan = plan_mirror(source, dest)
    assert plan.to_delete == ["Notes"]
    assert plan.to_mkdir == ["Notes"]
    assert plan.to_copy == ["Notes/.keep"]


def test_unchanged_files_not_copied():
    source = {"a": None, "a/x.md": "same", "a/y.md": "new"}
    dest = {"a": None, "a/x.md": "same", "a/y.md": "old"}
    plan = plan_mirror(source, dest)
    assert plan.to_copy == ["a/y.md"]
    assert plan.to_delete == []
    assert plan.to_mkdir == []


class TestMirrorTree(unittest.TestCase):
    """Mirroring against real directories."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.source = self.temp_dir / "export"
        self.dest = self.temp_dir / "work"
        self.source.mkdir()
        self.dest.mkdir()

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_dest_becomes_exact_image_and_git_survives(self):
        (self.source / "README.md").write_text("# Map\n", encoding="utf-8")
        (self.source / "Ideas").mkdir()
        (self.source / "Ideas" / "First.md").write_text("one", encoding="utf-8")

        (self.dest / ".git").mkdir()
        (self.dest / ".git" / "HEAD").write_text("ref: refs/heads/main\n", encoding="utf-8")
        (self.dest / "Stale").mkdir()
        (self.dest / "Stale" / "gone.md").write_text("bye", encoding="utf-8")
        (self.dest / "README.md").write_text("old", encoding="utf-8")

        mirror_tree(self.source, self.dest)

        self.assertEqual(scan_tree(self.dest), scan_tree(self.source))
        self.assertTrue((self.dest / ".git" / "HEAD").exists())
        self.assertFalse((self.dest / "Stale").exists())
        self.assertEqual((self.dest / "README.md").read_text(encoding="utf-8"), "# Map\n")

    def test_second_mirror_is_a_no_op(self):
        (self.source / "README.md").write_text("x", encoding="utf-8")
        mirror_tree(self.source, self.dest)
        plan = mirror_tree(self.source, self.dest)
        self.assertTrue(plan.is_empty)

    def test_scan_ignores_git_metadata(self):
        (self.dest / ".git").mkdir()
        (self.dest / ".git" / "config").write_text("[core]", encoding="utf-8")
        (self.dest / "a.md").write_text("a", encoding="utf-8")
        self.assertEqual(list(scan_tree(self.dest)), ["a.md"])


if __name__ == "__main__":
    unittest.main()
