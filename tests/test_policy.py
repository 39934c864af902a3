import pytest

from pipelines.policy import (get_origin, has_forbidden_extension, is_same_origin, is_valid_url,
                              normalize_url, resolve_link)


class TestUrlPolicy:
    """Test URL validity and origin checks."""

    @pytest.mark.parametrize("url", [
        "https://example.org/",
        "http://example.org/page?x=1",
        "https://sub.example.org:8443/a/b",
    ])
    def test_valid_urls(self, url):
        """Absolute http(s) page URLs are accepted."""
        assert is_valid_url(url)

    @pytest.mark.parametrize("url", [
        "",
        "not a url",
        "/relative/path",
        "mailto:someone@example.org",
        "javascript:void(0)",
        "ftp://example.org/file",
        "https://example.org/edital.PDF",
        "https://example.org/logo.png",
        "https://example.org/planilha.xlsx",
    ])
    def test_invalid_urls(self, url):
        """Non-HTTP schemes, relative paths and binary documents are rejected."""
        assert not is_valid_url(url)

    def test_forbidden_extension_ignores_query(self):
        """Only the path decides whether a link is a binary document."""
        assert has_forbidden_extension("https://example.org/a/file.docx?download=1")
        assert not has_forbidden_extension("https://example.org/view?file=a.pdf")

    def test_same_origin(self):
        """Scheme, host and port must all match."""
        assert is_same_origin("https://example.org/a", "https://EXAMPLE.org/b")
        assert not is_same_origin("https://example.org/a", "http://example.org/a")
        assert not is_same_origin("https://example.org/a", "https://other.example.org/a")
        assert not is_same_origin("https://example.org/a", "https://example.org:8443/a")

    def test_get_origin(self):
        """Origin is lower-cased scheme plus netloc."""
        assert get_origin("HTTPS://Example.org:8080/path") == "https://example.org:8080"


class TestLinkResolution:
    """Test link normalization."""

    def test_normalize_strips_fragment(self):
        """Fragments do not create distinct pages."""
        assert normalize_url("https://example.org/page#section-2") == "https://example.org/page"

    def test_resolve_relative_link(self):
        """Relative hrefs resolve against the page URL."""
        assert resolve_link("../contato", "https://example.org/a/b/") == "https://example.org/a/contato"
        assert resolve_link("/edital#top", "https://example.org/x") == "https://example.org/edital"

    def test_resolve_skips_empty_and_fragment_only(self):
        """In-page anchors and empty hrefs are not links."""
        assert resolve_link("", "https://example.org/") is None
        assert resolve_link("#menu", "https://example.org/") is None
