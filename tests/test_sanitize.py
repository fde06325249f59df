import re

import pytest

from todo_backend.sanitize import escape_html, strip_dangerous_markup


def test_escape_html_replaces_all_special_characters():
    assert escape_html("""<a href="x">Tom & Jerry's</a>""") == (
        "&lt;a href=&quot;x&quot;&gt;Tom &amp; Jerry&#x27;s&lt;&#x2F;a&gt;"
    )


def test_escape_html_handles_none_and_non_strings():
    assert escape_html(None) == ""
    assert escape_html(42) == "42"


def test_escape_html_escapes_ampersand_only_once():
    assert escape_html("&lt;") == "&amp;lt;"


@pytest.mark.parametrize(
    "value",
    [
        "<script>alert(1)</script>",
        "\"><img src=x onerror=alert(1)>",
        "R&D / Q&A 'quotes'",
        "plain title",
    ],
)
def test_escaped_output_has_no_markup_characters(value):
    escaped = escape_html(value)
    for char in "<>\"'/":
        assert char not in escaped
    # Todo "&" restante abre uma entidade.
    assert re.findall(r"&(?!amp;|lt;|gt;|quot;|#x27;|#x2F;)", escaped) == []


def test_strip_removes_script_blocks():
    html = "<p>oi</p><script type='text/javascript'>alert(1)</script><p>tchau</p>"
    assert strip_dangerous_markup(html) == "<p>oi</p><p>tchau</p>"


def test_strip_removes_lone_and_uppercase_tags():
    html = '<META http-equiv="refresh" content="0"><LINK rel="stylesheet" href="x.css"><p>ok</p>'
    assert strip_dangerous_markup(html) == "<p>ok</p>"


def test_strip_removes_iframes_and_embeds():
    html = '<iframe src="https://evil.test"></iframe><embed src="x.swf"><p>ok</p>'
    assert strip_dangerous_markup(html) == "<p>ok</p>"


def test_strip_removes_inline_event_handlers():
    html = """<p onclick="steal()">a</p><img src="x.png" onerror='boom()'>"""
    cleaned = strip_dangerous_markup(html)
    assert "onclick" not in cleaned
    assert "onerror" not in cleaned
    assert cleaned == '<p>a</p><img src="x.png">'


def test_strip_removes_dangerous_schemes():
    cleaned = strip_dangerous_markup('<a href="javascript:alert(1)">x</a><a href="VBScript :run">y</a>')
    assert "javascript" not in cleaned.lower()
    assert "vbscript" not in cleaned.lower()


def test_strip_handles_nested_reassembly():
    # Remover o trecho interno "monta" um <script> novo; precisa sumir tambem.
    html = "<scr<script>x</script>ipt>alert(1)</script>"
    assert "<script" not in strip_dangerous_markup(html).lower()


def test_strip_keeps_safe_html_untouched():
    html = '<div class="task-card"><span class="label">Data limite:</span> 01/02/2030</div>'
    assert strip_dangerous_markup(html) == html


def test_strip_removes_event_handlers_after_slash():
    cleaned = strip_dangerous_markup("""<svg/onload="alert(1)"><img src=x/onerror='a()'>""")
    assert cleaned == "<svg><img src=x>"


def test_strip_removes_schemes_in_any_attribute():
    html = """<img src='data:image/svg+xml,x'><form action= "javascript:go()"></form>"""
    assert strip_dangerous_markup(html) == """<img src='image/svg+xml,x'><form action= "go()"></form>"""


def test_strip_keeps_scheme_like_words_in_text():
    html = "<p>Backup data: servidor</p><p>Ler sobre javascript: closures</p>"
    assert strip_dangerous_markup(html) == html
