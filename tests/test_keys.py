"""
Tests for key namespacing and group patterns.
"""

import pytest

from groupcache import InvalidKeyError, SEP, group_pattern, namespaced_key
from groupcache.keys import encode_key, escape_pattern, split_key


class TestNamespacedKey:
    """Test building and decomposing namespaced keys."""

    def test_namespaced_key(self):
        """Test joining group and key."""
        assert namespaced_key("users", "42") == f"users{SEP}42"

    def test_encode_key(self):
        """Test the encoded backend key."""
        assert encode_key("users", "ünï") == "users:ünï".encode("utf-8")

    @pytest.mark.parametrize("group,key", [
        ("", "42"),
        ("users", ""),
        ("us:ers", "42"),
        ("users", "4:2"),
    ])
    def test_rejects_invalid_parts(self, group, key):
        """Test rejection of empty or separator-bearing parts."""
        with pytest.raises(InvalidKeyError):
            namespaced_key(group, key)

    def test_invalid_key_is_value_error(self):
        """Test that InvalidKeyError is a ValueError."""
        with pytest.raises(ValueError):
            namespaced_key("users", "")

    def test_split_key(self):
        """Test decomposing a namespaced key."""
        assert split_key(namespaced_key("users", "42")) == ("users", "42")

    def test_split_key_rejects_plain_key(self):
        """Test rejection of a key without group."""
        with pytest.raises(InvalidKeyError):
            split_key("users")


class TestGroupPattern:
    """Test group flush patterns."""

    def test_group_pattern(self):
        """Test the group match pattern."""
        assert group_pattern("users") == "users:*"

    def test_escapes_glob_characters(self):
        """Test escaping of glob metacharacters."""
        assert escape_pattern("a*b?[c]\\") == "a\\*b\\?\\[c\\]\\\\"
        assert group_pattern("user*") == "user\\*:*"

    def test_rejects_separator(self):
        """Test rejection of a group containing the separator."""
        with pytest.raises(InvalidKeyError):
            group_pattern("a:b")
