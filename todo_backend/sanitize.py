"""
Sanitizacao do texto das tarefas antes de entrar no HTML dos e-mails.

Duas camadas:
1. escape_html em cada valor interpolado no template;
2. strip_dangerous_markup no documento pronto, removendo tags e atributos
   que executam codigo em clientes de e-mail/navegadores.
"""
import re
from typing import Any

# A ordem importa: "&" precisa ser o primeiro, senao as entidades geradas
# pelas substituicoes seguintes seriam escapadas de novo.
_HTML_ESCAPES = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&#x27;"),
    ("/", "&#x2F;"),
)

_DANGEROUS_TAGS = "script|iframe|object|embed|link|meta"

_PAIRED_TAG_RE = re.compile(
    r"<\s*(" + _DANGEROUS_TAGS + r")\b[^>]*>.*?<\s*/\s*\1\s*>",
    re.IGNORECASE | re.DOTALL,
)
# <meta>, <link> e <embed> normalmente nao tem tag de fechamento.
_LONE_TAG_RE = re.compile(
    r"<\s*/?\s*(?:" + _DANGEROUS_TAGS + r")\b[^>]*>",
    re.IGNORECASE,
)
_EVENT_HANDLER_RE = re.compile(
    r"""(?:\s|/)+on[a-z]+\s*=\s*(?:"[^"]*"|'[^']*')""",
    re.IGNORECASE,
)
# So em valores de atributo (href=, src=, action=...).
_DANGEROUS_SCHEME_RE = re.compile(
    r"""(=\s*["']?\s*)(?:javascript|vbscript|data)\s*:""",
    re.IGNORECASE,
)


def escape_html(value: Any) -> str:
    """Escapa &, <, >, aspas e barra para entidades HTML."""
    if value is None:
        return ""
    text = value if isinstance(value, str) else str(value)
    for char, entity in _HTML_ESCAPES:
        text = text.replace(char, entity)
    return text


def strip_dangerous_markup(html: str) -> str:
    """
    Remove elementos perigosos, atributos on*="..." (inclusive logo apos
    uma "/") e esquemas javascript:/vbscript:/data: em valores de atributo
    de um documento HTML ja montado.
    """
    previous = None
    cleaned = html
    # Repete ate estabilizar: remover um trecho pode "montar" outra tag.
    while cleaned != previous:
        previous = cleaned
        cleaned = _PAIRED_TAG_RE.sub("", cleaned)
        cleaned = _LONE_TAG_RE.sub("", cleaned)
        cleaned = _EVENT_HANDLER_RE.sub("", cleaned)
        cleaned = _DANGEROUS_SCHEME_RE.sub(r"\1", cleaned)
    return cleaned
