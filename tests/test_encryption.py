import pytest

from douyin_social.encryption import PasswordMismatchError, compare_password, encrypt_password


def test_hash_verifies():
    password = "password"
    hashed = encrypt_password(password)
    assert len(hashed) == 60
    assert compare_password(hashed, password) is None


def test_hash_uses_default_cost():
    hashed = encrypt_password("password")
    assert hashed.startswith("$2")
    assert hashed.split("$")[2] == "10"


def test_hashes_are_salted():
    password = "password"
    hashes = {encrypt_password(password) for _ in range(2)}
    assert len(hashes) == 2
    for hashed in hashes:
        assert compare_password(hashed, password) is None


def test_wrong_password_raises():
    hashed = encrypt_password("password")
    wrong_password = "secret"
    with pytest.raises(PasswordMismatchError):
        compare_password(hashed, wrong_password)


def test_malformed_hash_raises():
    with pytest.raises(PasswordMismatchError):
        compare_password("not-a-hash", "password")


def test_too_long_password_rejected():
    with pytest.raises(ValueError):
        encrypt_password("password" * 10)