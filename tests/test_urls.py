import pytest

from anvesha.crawler.errors import InvalidURLError
from anvesha.crawler.urls import extract_domain, normalize_url, try_normalize_url, url_hash


class TestNormalizeUrl:
    def test_lowercases_scheme_and_host(self):
        assert normalize_url("HTTP://Example.COM/Path") == "http://example.com/Path"

    def test_empty_path_and_trailing_slash_collide(self):
        assert normalize_url("http://Example.com/") == normalize_url("http://example.com")
        assert normalize_url("https://example.com/docs/") == "https://example.com/docs"

    def test_strips_default_port_keeps_others(self):
        assert normalize_url("https://example.com:443/a") == "https://example.com/a"
        assert normalize_url("http://example.com:80/a") == "http://example.com/a"
        assert normalize_url("http://example.com:8080/a") == "http://example.com:8080/a"

    def test_removes_fragment(self):
        assert normalize_url("https://example.com/page#section") == "https://example.com/page"

    def test_drops_tracking_params_and_sorts_query(self):
        url = "https://example.com/search?q=crawler&utm_source=mail&a=1"
        assert normalize_url(url) == "https://example.com/search?a=1&q=crawler"

    def test_strips_credentials(self):
        assert normalize_url("https://user:pw@example.com/") == "https://example.com/"

    @pytest.mark.parametrize("url", [
        "ftp://example.com/file",
        "mailto:someone@example.com",
        "javascript:void(0)",
        "not a url",
        "",
        "http://",
    ])
    def test_rejects_invalid(self, url):
        with pytest.raises(InvalidURLError):
            normalize_url(url)
        assert try_normalize_url(url) is None


def test_url_hash_is_deterministic_sha256():
    first = url_hash("https://example.com/")
    assert first == url_hash("https://example.com/")
    assert len(first) == 64
    assert first != url_hash("https://example.com/other")


def test_extract_domain():
    assert extract_domain("https://Sub.Example.com:8443/x") == "sub.example.com:8443"
    assert extract_domain("https://example.com/x") == "example.com"
