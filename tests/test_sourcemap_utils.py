import asyncio
import base64
import json
from pathlib import Path

import pytest

from source_grabber.workflows.sourcemap_utils import (
    SourceMapDocument,
    SourceMapError,
    SourceMapReconstructor,
    decode_inline_source_map,
    find_source_mapping_url,
    is_inline_source_map,
    sanitize_source_path,
)
from source_grabber.workflows.web_fetch import FetchOutcome


class StubFetcher:
    def __init__(self, responses=None):
        self.responses = responses or {}
        self.calls = []

    async def fetch(self, url, *, probe=False):
        self.calls.append((url, probe))
        body = self.responses.get(url)
        if body is None:
            return FetchOutcome(url=url, success=False, error=RuntimeError("not found"))
        return FetchOutcome(url=url, success=True, body=body)


def _map(sources, contents):
    return {"version": 3, "sources": sources, "sourcesContent": contents, "names": [], "mappings": "AAAA"}


def _inline(payload, prefix="data:application/json;base64,"):
    return prefix + base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


def test_find_source_mapping_url_prefers_js_form():
    assert find_source_mapping_url("var a=1;\n//# sourceMappingURL=app.js.map") == "app.js.map"
    assert find_source_mapping_url("a{}\n/*# sourceMappingURL=style.css.map */") == "style.css.map"
    both = "/*# sourceMappingURL=css.map */\n//# sourceMappingURL=js.map"
    assert find_source_mapping_url(both) == "js.map"
    assert find_source_mapping_url("no annotation here") is None


def test_decode_inline_source_map_variants():
    payload = _map(["a.js"], ["x"])

    assert decode_inline_source_map(_inline(payload)) == payload
    with_charset = _inline(payload, "data:application/json;charset=utf-8;base64,")
    assert is_inline_source_map(with_charset)
    assert decode_inline_source_map(with_charset) == payload
    assert decode_inline_source_map("data:application/json," + "%7B%22version%22%3A3%7D") == {"version": 3}


def test_decode_inline_source_map_rejects_garbage():
    garbage = "data:application/json;base64," + base64.b64encode(b"not json").decode("ascii")
    with pytest.raises(SourceMapError):
        decode_inline_source_map(garbage)
    with pytest.raises(SourceMapError):
        decode_inline_source_map("app.js.map")


@pytest.mark.parametrize(
    "source, expected",
    [
        ("webpack://./src/App.js", "src/App.js"),
        ("webpack:///./src/style.scss", "src/style.scss"),
        ("webpack://my-app/./src/index.ts", "my-app/src/index.ts"),
        ("/abs/file.scss", "abs/file.scss"),
        ("../../etc/passwd", "etc/passwd"),
        ("lib/../util.js", "util.js"),
    ],
)
def test_sanitize_source_path(source, expected):
    assert sanitize_source_path(source) == expected


def test_source_map_document_validation():
    with pytest.raises(SourceMapError):
        SourceMapDocument.from_payload("[1, 2]")
    with pytest.raises(SourceMapError):
        SourceMapDocument.from_payload({"sources": "a.js"})

    doc = SourceMapDocument.from_payload(_map(["a.js", "b.js", "c.js"], ["A", None]))
    assert doc.embedded_sources() == [("a.js", "A")]


def test_process_inline_map_writes_map_and_sources(tmp_path: Path) -> None:
    payload = _map(["webpack:///./src/style.scss", "webpack:///./src/vars.scss"], ["$c: red;", None])
    css = "body{color:red}\n/*# sourceMappingURL=" + _inline(payload) + " */"
    asset_path = tmp_path / "dist" / "style.css"
    fetcher = StubFetcher()
    reconstructor = SourceMapReconstructor(fetcher, tmp_path / "src")

    result = asyncio.run(reconstructor.process(css, "https://example.com/style.css", asset_path))

    assert result.inline is True
    assert result.found
    assert fetcher.calls == []
    assert json.loads((tmp_path / "dist" / "style.css.map").read_text(encoding="utf-8")) == payload
    assert (tmp_path / "src" / "src" / "style.scss").read_text(encoding="utf-8") == "$c: red;"
    assert not (tmp_path / "src" / "src" / "vars.scss").exists()
    assert result.written == [tmp_path / "src" / "src" / "style.scss"]


def test_process_malformed_inline_map_does_not_fetch(tmp_path: Path) -> None:
    garbage = "data:application/json;base64," + base64.b64encode(b"{broken").decode("ascii")
    fetcher = StubFetcher()
    reconstructor = SourceMapReconstructor(fetcher, tmp_path / "src")

    result = asyncio.run(
        reconstructor.process("x\n//# sourceMappingURL=" + garbage, "https://example.com/app.js", tmp_path / "app.js")
    )

    assert fetcher.calls == []
    assert not result.found
    assert result.error


def test_process_fetches_annotated_map_and_parses_text_body(tmp_path: Path) -> None:
    payload = _map(["webpack://./src/main.ts"], ["export const x = 1;\n"])
    map_url = "https://example.com/maps/app?build=7"
    fetcher = StubFetcher({map_url: json.dumps(payload)})
    reconstructor = SourceMapReconstructor(fetcher, tmp_path / "src")
    js = "console.log(1);\n//# sourceMappingURL=/maps/app?build=7"

    result = asyncio.run(reconstructor.process(js, "https://example.com/js/app.js", tmp_path / "dist" / "js" / "app.js"))

    assert fetcher.calls == [(map_url, False)]
    assert result.map_url == map_url
    assert (tmp_path / "dist" / "js" / "app.js.map").exists()
    assert (tmp_path / "src" / "src" / "main.ts").read_text(encoding="utf-8") == "export const x = 1;\n"


def test_process_probes_sidecar_map_when_no_annotation(tmp_path: Path) -> None:
    fetcher = StubFetcher()
    reconstructor = SourceMapReconstructor(fetcher, tmp_path / "src")

    result = asyncio.run(reconstructor.process("var a;", "https://example.com/app.js", tmp_path / "app.js"))

    assert fetcher.calls == [("https://example.com/app.js.map", True)]
    assert not result.found
    assert result.written == []


@pytest.mark.parametrize(
    "field, value",
    [("names", 5), ("file", 7), ("sourceRoot", ["x"]), ("mappings", {"a": 1})],
)
def test_source_map_document_rejects_wrongly_typed_fields(field, value):
    payload = _map(["a.js"], ["x"])
    payload[field] = value

    with pytest.raises(SourceMapError):
        SourceMapDocument.from_payload(payload)


def test_expand_ignores_source_root(tmp_path: Path) -> None:
    payload = dict(_map(["lib/a.js"], ["A"]), sourceRoot="webpack:///project/")
    reconstructor = SourceMapReconstructor(StubFetcher(), tmp_path / "src")

    written = reconstructor.expand(SourceMapDocument.from_payload(payload))

    assert written == [tmp_path / "src" / "lib" / "a.js"]
