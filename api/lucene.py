"""Highlight-word extraction from the free-text query of a logs panel."""

from __future__ import annotations

import re

from luqum.exceptions import ParseError
from luqum.parser import lexer, parser
from luqum.tree import Item, Phrase, Range, Regex, Term

_BOOLEAN_KEYWORDS = {"AND", "OR", "NOT", "&&", "||"}
_TOKEN_RE = re.compile(r'(?:[^\s"]+:)?"[^"]*"|\S+')
_WILDCARD_SUFFIX = "*?"


def parse_lucene_query(text: str) -> list[str]:
    """Words and phrases of `text` in query order, without field prefixes or wildcards.

    >>> parse_lucene_query("foo:bar* AND foo2:bar2")
    ['bar', 'bar2']

    Queries luqum cannot parse go through a whitespace tokenizer instead.
    """
    if not text or not text.strip():
        return []
    try:
        tree = parser.parse(text, lexer=lexer.clone())
    except ParseError:
        return _dedupe(_tokenize(text))
    words: list[str] = []
    _collect(tree, words)
    return _dedupe(words)


def _collect(node: Item, words: list[str]) -> None:
    if isinstance(node, (Range, Regex)):
        return
    if isinstance(node, Term):
        word = _clean(node.value, quoted=isinstance(node, Phrase))
        if word:
            words.append(word)
        return
    for child in node.children:
        _collect(child, words)


def _tokenize(text: str) -> list[str]:
    words = []
    for token in _TOKEN_RE.findall(text):
        if token in _BOOLEAN_KEYWORDS:
            continue
        token = token.strip("()").lstrip("+-!")
        quoted = token.startswith('"')
        if not quoted and ":" in token:
            token = token.split(":", 1)[1].strip("()")
            quoted = token.startswith('"')
        word = _clean(token, quoted=quoted)
        if word:
            words.append(word)
    return words


def _clean(value: str, quoted: bool) -> str:
    if quoted:
        return value.strip('"')
    return value.rstrip(_WILDCARD_SUFFIX)


def _dedupe(words: list[str]) -> list[str]:
    return list(dict.fromkeys(words))
