"""Tests for deterministic lock id derivation."""

import pytest

from taskward.core.scheduling import derive_lock_id


class TestDeriveLockId:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("", 0),
            ("a", 97),
            ("ab", 3105),
            ("hello", 99162322),
        ],
    )
    def test_known_values(self, name, expected):
        assert derive_lock_id(name) == expected

    def test_stable_across_calls(self):
        assert derive_lock_id("purge_sessions") == derive_lock_id("purge_sessions")

    def test_never_negative(self):
        names = ["sync_accounts", "nightly-report", "x" * 200, "überprüfung", "🚀 launch"]
        assert all(derive_lock_id(n) >= 0 for n in names)

    def test_wraps_to_32_bits(self):
        assert derive_lock_id("x" * 200) <= 2**31

    def test_astral_characters_use_surrogate_pairs(self):
        # U+1F680 is D83D DE80 in UTF-16.
        assert derive_lock_id("🚀") == 0xD83D * 31 + 0xDE80
