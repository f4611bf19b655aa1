from source_grabber.workflows.extract_utils import (
    AssetKind,
    classify_css_reference,
    extract_css_assets,
    extract_css_imports,
    extract_css_url_references,
    extract_html_assets,
)

PAGE = """<!doctype html>
<html>
<head>
  <link rel="stylesheet" href="/style.css">
  <link rel="preload" as="style" href="preload.css">
  <link rel="icon" href="/favicon.ico">
  <link rel="stylesheet" href="data:text/css;base64,Ym9keXt9">
  <style>@import "theme.css"; body { margin: 0; }</style>
  <script src="/app.js"></script>
  <script>window.inline = true;</script>
</head>
<body>
  <img src="data:image/png;base64,AAAA">
  <img src="img/logo.png">
  <picture><source src="/hero.webp"></picture>
  <script src="/app.js"></script>
</body>
</html>
"""

CSS = """
@font-face { src: url("fonts/a.woff2?v=3#iefix") format("woff2"); }
.bg { background: url(../img/bg.png); }
.inline { background: url('data:image/png;base64,AAAA'); }
.cursor { cursor: url( cursor.cur ); }
"""


def test_extract_html_assets_orders_by_kind_and_dedupes():
    assets = extract_html_assets(PAGE, "https://example.com/page/")

    assert [(a.kind, a.absolute_url) for a in assets] == [
        (AssetKind.CSS, "https://example.com/style.css"),
        (AssetKind.CSS, "https://example.com/preload.css"),
        (AssetKind.CSS, "https://example.com/theme.css"),
        (AssetKind.JS, "https://example.com/app.js"),
        (AssetKind.OTHER, "https://example.com/img/logo.png"),
        (AssetKind.OTHER, "https://example.com/hero.webp"),
    ]
    assert assets[0].reference == "/style.css"


def test_extract_html_assets_skips_data_uris_and_non_stylesheet_links():
    assets = extract_html_assets(PAGE, "https://example.com/")
    urls = {a.absolute_url for a in assets}

    assert not any(url.startswith("data:") for url in urls)
    assert "https://example.com/favicon.ico" not in urls


def test_extract_html_assets_empty_document():
    assert extract_html_assets("", "https://example.com/") == []


def test_extract_css_imports_quoted_only():
    css = '@import "a.css";\n@import \'b.css\';\n@import url("c.css");'
    assert extract_css_imports(css) == ["a.css", "b.css"]


def test_classify_css_reference_ignores_query_and_fragment():
    assert classify_css_reference("fonts/a.woff2?v=3#iefix") is AssetKind.FONT
    assert classify_css_reference("img/bg.PNG") is AssetKind.IMAGE
    assert classify_css_reference("cursor.cur") is AssetKind.OTHER


def test_extract_css_url_references_classifies_and_skips_data():
    refs = extract_css_url_references(CSS)

    assert refs == [
        ("fonts/a.woff2?v=3#iefix", AssetKind.FONT),
        ("../img/bg.png", AssetKind.IMAGE),
        ("cursor.cur", AssetKind.OTHER),
    ]


def test_extract_css_assets_resolves_against_stylesheet_url():
    assets = extract_css_assets(CSS + ".again { background: url(../img/bg.png); }", "https://example.com/css/main.css")

    assert [a.absolute_url for a in assets] == [
        "https://example.com/fonts/a.woff2?v=3#iefix",
        "https://example.com/img/bg.png",
        "https://example.com/cursor.cur",
    ]
