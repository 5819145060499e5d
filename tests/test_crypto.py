import pytest

from app.utils.crypto import CredentialError, decrypt, encrypt, is_encrypted, reveal


def test_encrypted_format_and_reveal():
    token = encrypt("client-secret")
    iv_hex, body = token.split(":")
    assert len(iv_hex) == 32
    assert len(body) % 32 == 0
    assert is_encrypted(token)
    assert decrypt(token) == "client-secret"
    assert reveal(token) == "client-secret"


def test_fresh_iv_per_value():
    assert encrypt("same") != encrypt("same")


def test_plain_values_pass_through():
    assert not is_encrypted("plain-client-id")
    assert reveal("plain-client-id") == "plain-client-id"


def test_wrong_key_fails(monkeypatch):
    token = encrypt("secret")
    monkeypatch.setenv("ENCRYPTION_KEY", "fedcba9876543210fedcba9876543210")
    with pytest.raises(CredentialError):
        decrypt(token)


def test_key_length_enforced(monkeypatch):
    monkeypatch.setenv("ENCRYPTION_KEY", "short")
    with pytest.raises(CredentialError):
        encrypt("secret")
