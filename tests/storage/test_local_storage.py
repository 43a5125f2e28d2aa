"""Tests for LocalStorage: atomic writes, path safety, signed URLs."""
import time
from urllib.parse import parse_qs, unquote, urlparse

import pytest

from thumbgen.storage.base import StorageError
from thumbgen.storage.local import LocalStorage


@pytest.fixture
def local(tmp_path):
    return LocalStorage(str(tmp_path), "https://api.test/", "unit-test-secret-0123456789")


def _token(url: str) -> str:
    return parse_qs(urlparse(url).query)["token"][0]


def test_put_read_delete(local, tmp_path):
    local.put("acct/a1/thumbnail.png", b"png", "image/png")

    assert local.read("acct/a1/thumbnail.png") == b"png"
    assert not list(tmp_path.rglob("*.part"))

    local.delete("acct/a1/thumbnail.png")
    local.delete("acct/a1/thumbnail.png")
    with pytest.raises(StorageError):
        local.read("acct/a1/thumbnail.png")


@pytest.mark.parametrize("path", ["../etc/passwd", "acct/../../x", "", "/"])
def test_rejects_unsafe_paths(local, path):
    with pytest.raises(StorageError):
        local.put(path, b"x", "image/png")


def test_signed_url_verifies_for_its_path_only(local):
    url = local.get_signed_url("acct/a1/thumbnail.png", 3600)

    parsed = urlparse(url)
    assert parsed.netloc == "api.test"
    assert unquote(parsed.path) == "/files/acct/a1/thumbnail.png"
    token = _token(url)
    assert local.verify("acct/a1/thumbnail.png", token) is True
    assert local.verify("acct/a2/thumbnail.png", token) is False
    assert local.verify("acct/a1/thumbnail.png", token + "x") is False


def test_signed_url_from_other_secret_rejected(local, tmp_path):
    other = LocalStorage(str(tmp_path), "https://api.test", "another-secret-0123456789")
    token = _token(other.get_signed_url("acct/a1/thumbnail.png", 3600))
    assert local.verify("acct/a1/thumbnail.png", token) is False


def test_signed_url_expires(local):
    token = _token(local.get_signed_url("acct/a1/thumbnail.png", 1))
    time.sleep(2.1)
    assert local.verify("acct/a1/thumbnail.png", token) is False
