#!/usr/bin/env python3
"""
Unit tests for path segment sanitizing and sibling disambiguation.
"""

import unittest

from mindsync.tree.sanitize import DEFAULT_NAME, MAX_SEGMENT_BYTES, disambiguate, sanitize


SAMPLES = [
    "Plain",
    "a/b\\c",
    'what? "quoted" <tag> | pipe * star: colon',
    "  padded  ",
    "",
    ".",
    "..",
    ".git",
    ".GIT",
    "tab\tnew\nline\x00nul\x7f",
    "émoji 🎉 ünïcode",
    "x" * 500,
    "日本語" * 100,
    "   ",
]


def test_illegal_characters_replaced():
    assert sanitize("a/b\\c") == "a_b_c"
    assert sanitize('x:y*z?"<>|') == "x_y_z_____"
    assert sanitize("line\nbreak") == "line_break"


def test_different_illegal_characters_map_to_the_same_name():
    assert sanitize("a/b:c") == sanitize("a_b_c") == "a_b_c"


def test_whitespace_trimmed_and_empty_defaults():
    assert sanitize("  Ideas  ") == "Ideas"
    assert sanitize("") == DEFAULT_NAME
    assert sanitize("   ") == DEFAULT_NAME
    assert sanitize(None) == DEFAULT_NAME


def test_dot_names_are_never_produced():
    assert sanitize(".") == DEFAULT_NAME
    assert sanitize("..") == DEFAULT_NAME
    assert sanitize(".git") == "_git"
    assert sanitize(".Git") == "_Git"
    assert sanitize(".gitignore") == ".gitignore"


def test_length_bounded_in_utf8_bytes():
    for sample in ("x" * 500, "日本語" * 100, "🎉" * 80):
        result = sanitize(sample)
        assert len(result.encode("utf-8")) <= MAX_SEGMENT_BYTES
        # Truncation never splits a code point
        result.encode("utf-8").decode("utf-8")


def test_properties_hold_for_samples():
    for sample in SAMPLES:
        once = sanitize(sample)
        assert once, sample
        assert "/" not in once and "\\" not in once and "\x00" not in once
        assert once not in (".", "..")
        assert once.lower() != ".git"
        assert sanitize(once) == once, sample
        assert sanitize(sample) == once


class TestDisambiguate(unittest.TestCase):
    """Sibling name collision handling."""

    def test_first_use_keeps_name(self):
        taken = set()
        self.assertEqual(disambiguate("Ideas", taken), "Ideas")
        self.assertIn("ideas", taken)

    def test_collisions_get_numbered_suffix(self):
        taken = set()
        names = [disambiguate("Ideas", taken) for _ in range(3)]
        self.assertEqual(names, ["Ideas", "Ideas (2)", "Ideas (3)"])

    def test_case_insensitive_collision(self):
        taken = set()
        disambiguate("Notes", taken)
        self.assertEqual(disambiguate("NOTES", taken), "NOTES (2)")

    def test_suffix_goes_after_counter(self):
        taken = {"readme.md"}
        self.assertEqual(disambiguate("README", taken, ".md"), "README (2).md")
        self.assertEqual(disambiguate("todo", taken, ".md"), "todo.md")
        self.assertEqual(disambiguate("todo", taken, ".md"), "todo (2).md")


if __name__ == "__main__":
    unittest.main()
