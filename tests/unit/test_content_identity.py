"""
Name: Content Identity Tests

Responsibilities:
  - Canonicalization makes trivial URL variants share an identity
  - Distinct chapters (path or query) never share one
"""

import hashlib

import pytest

from enhancer.application.content_identity import (
    canonical_url,
    content_identity,
    is_valid_identity,
)

pytestmark = pytest.mark.unit


def test_canonical_url_normalizes_case_fragment_and_trailing_slash():
    url = "  HTTPS://Example.COM/novel/chapter-1/#comments "

    assert canonical_url(url) == "https://example.com/novel/chapter-1"


def test_canonical_url_keeps_query_and_root_path():
    assert canonical_url("https://site.com/?ch=2") == "https://site.com/?ch=2"


def test_canonical_url_rejects_empty_input():
    with pytest.raises(ValueError):
        canonical_url("   ")


def test_identity_is_sha256_of_canonical_url():
    expected = hashlib.sha256(b"https://example.com/ch/1").hexdigest()

    assert content_identity("https://EXAMPLE.com/ch/1/") == expected
    assert is_valid_identity(expected)


def test_distinct_sources_get_distinct_identities():
    a = content_identity("https://example.com/read?chapter=1")
    b = content_identity("https://example.com/read?chapter=2")

    assert a != b


@pytest.mark.parametrize("value", ["", "xyz", "A" * 64, "a" * 63])
def test_is_valid_identity_rejects_malformed_values(value):
    assert not is_valid_identity(value)
