from recrawl.crawler.parser import ContentParser


HTML = b"""<html>
<head><meta charset="utf-8"><link rel="stylesheet" href="/static/site.css"></head>
<body>
<a href="/about.html">About</a>
<a href="https://other.com/x">Other</a>
<a href='./docs/intro.html'>Intro</a>
<a href="/about.html">About again</a>
<script>var api = "/api/v1/users"; var cdn = "//cdn.example.net/lib.js";</script>
<img src="images/logo.png">
<span data-path="assets/">x</span>
</body>
</html>"""


def test_is_robots_txt():
    assert ContentParser.is_robots_txt("http://example.com/robots.txt")
    assert not ContentParser.is_robots_txt("http://example.com/robots.txt.bak")
    assert not ContentParser.is_robots_txt("http://example.com/")


def test_parse_extracts_quoted_paths():
    parser = ContentParser()

    tokens = list(parser.parse("http://example.com/", HTML))

    assert "/about.html" in tokens
    assert "https://other.com/x" in tokens
    assert "./docs/intro.html" in tokens
    assert "/static/site.css" in tokens
    assert "/api/v1/users" in tokens
    assert "//cdn.example.net/lib.js" in tokens
    assert "images/logo.png" in tokens
    assert "assets/" in tokens
    assert "utf-8" not in tokens
    assert "stylesheet" not in tokens


def test_parse_deduplicates():
    parser = ContentParser()
    tokens = list(parser.parse("http://example.com/", HTML))
    assert tokens.count("/about.html") == 1


def test_parse_is_lazy():
    parser = ContentParser()
    tokens = parser.parse("http://example.com/", b'"/a" "/b"')
    assert next(tokens) == "/a"
    assert next(tokens) == "/b"


def test_parse_ignores_invalid_utf8():
    parser = ContentParser()
    tokens = list(parser.parse("http://example.com/", b'\xff\xfe"/ok"\x80'))
    assert tokens == ["/ok"]


def test_parse_robots_txt():
    parser = ContentParser()
    body = b"""User-agent: *
Disallow: /admin/*
Allow: /public$
Disallow: /search?
Disallow: /files/.pdf
Disallow: /
Disallow:
Allow: /public$
Sitemap: https://example.com/sitemap.xml
"""

    tokens = list(parser.parse("http://example.com/robots.txt", body))

    assert tokens == ["/admin/", "/public", "/search", "/files/"]


def test_robots_directives_are_not_scraped_from_pages():
    parser = ContentParser()
    tokens = list(parser.parse("http://example.com/page", b"Disallow: /admin/"))
    assert tokens == []
