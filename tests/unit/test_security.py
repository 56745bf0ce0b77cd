"""Unit tests for password hashing and one-time code helpers."""

from __future__ import annotations

import bcrypt
import pytest

from storefront.core.security import (
    codes_match,
    generate_numeric_code,
    hash_password,
    verify_password,
)


class TestPasswordHashing:
    def test_round_trip(self) -> None:
        stored = hash_password("s3cret-pass", rounds=4)
        assert verify_password("s3cret-pass", stored)
        assert not verify_password("wrong", stored)

    def test_stored_as_bcrypt(self) -> None:
        stored = hash_password("s3cret-pass", rounds=4)
        assert stored.startswith("$2b$04$")
        assert bcrypt.checkpw(b"s3cret-pass", stored.encode("utf-8"))

    def test_salted(self) -> None:
        assert hash_password("same", rounds=4) != hash_password("same", rounds=4)

    def test_long_password(self) -> None:
        long_password = "x" * 100
        stored = hash_password(long_password, rounds=4)
        assert verify_password(long_password, stored)

    @pytest.mark.parametrize("stored", [None, "", "not-a-hash", "salt$260000$abc"])
    def test_missing_or_malformed_hash_never_matches(self, stored: str | None) -> None:
        assert not verify_password("anything", stored)


class TestCodes:
    @pytest.mark.parametrize("length", [4, 6, 8])
    def test_numeric_code_shape(self, length: int) -> None:
        for _ in range(50):
            code = generate_numeric_code(length)
            assert len(code) == length
            assert code.isdigit()
            assert code[0] != "0"

    def test_codes_match(self) -> None:
        assert codes_match("482913", "482913")
        assert not codes_match("482913", "482914")
