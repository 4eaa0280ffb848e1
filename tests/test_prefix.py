"""Tests for workspace prefix generation."""
from kanban_core.prefix import generate_prefix, is_valid_prefix


class TestGeneratePrefix:
    def test_multi_word_uses_initials(self):
        assert generate_prefix("Mobile Platform Team") == "MPT"
        assert generate_prefix("data-science_lab") == "DSL"

    def test_initials_capped_at_three(self):
        assert generate_prefix("one two three four") == "OTT"

    def test_two_words(self):
        assert generate_prefix("Growth Team") == "GT"

    def test_single_word_uses_leading_letters(self):
        assert generate_prefix("Engineering") == "ENG"
        assert generate_prefix("ab") == "AB"

    def test_single_letter_is_padded(self):
        assert generate_prefix("x") == "XX"

    def test_words_without_letters_are_ignored(self):
        """Only one word in "Backend 2024" contains letters."""
        assert generate_prefix("Backend 2024") == "BAC"

    def test_no_letters_falls_back(self):
        assert generate_prefix("1234") == "PRJ"
        assert generate_prefix("") == "PRJ"


class TestIsValidPrefix:
    def test_valid(self):
        assert is_valid_prefix("AB")
        assert is_valid_prefix("ABCDE")

    def test_invalid(self):
        assert not is_valid_prefix("A")
        assert not is_valid_prefix("ABCDEF")
        assert not is_valid_prefix("ab")
        assert not is_valid_prefix("A1")
