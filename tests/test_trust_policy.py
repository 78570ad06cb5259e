import pytest

from trust_policy import is_trusted_host, normalize_url, search_fallback_url

_TITLE = "Attention Is All You Need"
_FALLBACK = "https://www.google.com/search?q=Attention+Is+All+You+Need"


def test_search_fallback_url_encodes_title() -> None:
    assert search_fallback_url(_TITLE) == _FALLBACK
    assert search_fallback_url("A&B: C/D?") == "https://www.google.com/search?q=A%26B%3A+C%2FD%3F"


@pytest.mark.parametrize("raw", ["", "N/A", "n/a", "   ", None])
def test_empty_or_placeholder_url_falls_back(raw) -> None:
    assert normalize_url(raw, _TITLE) == _FALLBACK


@pytest.mark.parametrize("raw", [
    "not a url",
    "http://[::1",
    "https://arxiv.org:notaport/abs/2310.12345",
    "ftp://arxiv.org/abs/2310.12345",
    "//github.com/org/repo",
    "https://",
    "javascript:alert(1)",
])
def test_malformed_url_falls_back_without_raising(raw: str) -> None:
    result = normalize_url(raw, _TITLE)
    assert result == _FALLBACK


@pytest.mark.parametrize("raw", [
    "https://aistudio.google.com/app/prompts/abc",
    "https://generativelanguage.googleapis.com/v1beta/files/xyz",
    "https://storage.googleapis.com/bucket/paper.pdf",
])
def test_vendor_internal_hosts_are_replaced(raw: str) -> None:
    assert normalize_url(raw, _TITLE) == _FALLBACK


@pytest.mark.parametrize("raw", [
    "https://arxiv.org/abs/2310.12345",
    "https://arxiv.org/pdf/2310.12345v2",
    "http://export.arxiv.org/abs/2310.12345?context=cs",
    "https://www.arxiv.org/pdf/2310.12345.pdf",
])
def test_arxiv_urls_rewritten_to_abstract_page(raw: str) -> None:
    assert normalize_url(raw, _TITLE) == "https://arxiv.org/abs/2310.12345"


def test_arxiv_four_digit_serial() -> None:
    assert normalize_url("https://arxiv.org/abs/1706.0376", _TITLE) == "https://arxiv.org/abs/1706.0376"


def test_arxiv_legacy_identifier() -> None:
    assert normalize_url("https://arxiv.org/abs/hep-th/9901001", _TITLE) == "https://arxiv.org/abs/hep-th/9901001"


def test_arxiv_without_identifier_falls_back() -> None:
    assert normalize_url("https://arxiv.org/list/cs.AI/recent", _TITLE) == _FALLBACK


@pytest.mark.parametrize("raw, expected", [
    ("https://openreview.net/forum?id=abc123", "https://openreview.net/forum?id=abc123"),
    ("https://GitHub.com/org/Repo#readme", "https://github.com/org/Repo"),
    ("HTTPS://www.Nature.com/articles/s41586-024-00001-1", "https://www.nature.com/articles/s41586-024-00001-1"),
    ("https://huggingface.co/papers/2310.12345", "https://huggingface.co/papers/2310.12345"),
    ("https://proceedings.neurips.cc/paper/2023/hash/abc.html", "https://proceedings.neurips.cc/paper/2023/hash/abc.html"),
    ("https://dl.acm.org/doi/10.1145/1234567", "https://dl.acm.org/doi/10.1145/1234567"),
])
def test_trusted_hosts_keep_normalized_url(raw: str, expected: str) -> None:
    assert normalize_url(raw, _TITLE) == expected


@pytest.mark.parametrize("raw", [
    "https://medium.com/@someone/great-paper-explained",
    "https://example.com/paper.pdf",
    "https://notgithub.com/org/repo",
    "https://github.com.evil.example/org/repo",
])
def test_untrusted_hosts_fall_back(raw: str) -> None:
    assert normalize_url(raw, _TITLE) == _FALLBACK


def test_normalize_url_is_deterministic() -> None:
    inputs = [
        ("https://arxiv.org/pdf/2310.12345v3", _TITLE),
        ("garbage", "Other Title"),
        ("https://github.com/a/b", _TITLE),
    ]
    for raw, title in inputs:
        first = normalize_url(raw, title)
        assert all(normalize_url(raw, title) == first for _ in range(5))


@pytest.mark.parametrize("host, trusted", [
    ("arxiv.org", True),
    ("export.arxiv.org", True),
    ("openaccess.thecvf.com", True),
    ("openaccess.cvf.com", True),
    ("aclweb.org", True),
    ("example.org", False),
    ("", False),
])
def test_is_trusted_host(host: str, trusted: bool) -> None:
    assert is_trusted_host(host) is trusted
