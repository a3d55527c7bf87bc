"""Free-text query parsing with a three-tier fallback.

    1. plain   — every word is a clean token; all non-stop-word stems must
                 match, and adjacent query words score a phrase bonus.
    2. prefix  — a single bare token that produced no lexeme in tier 1
                 (e.g. a stop word typed mid-word: "the" -> "theme").
    3. and     — special characters stripped from each word, remaining
                 stems ANDed together.

Each tier returns a ParsedQuery or None. parse_query() never raises; a None
result means the text contains nothing searchable.
"""

import re

from taskgrid.search.vector import lexeme, stem, tokenize

# A "clean" word: letters/digits, optionally joined by apostrophes or hyphens.
_CLEAN_WORD_RE = re.compile(r"^[^\W_]+(?:['\-][^\W_]+)*$", re.UNICODE)
_BARE_TOKEN_RE = re.compile(r"^[^\W_]+$", re.UNICODE)


class ParsedQuery:
    """A normalized query: ordered terms plus how they are matched.

    terms   — lexemes (plain/and) or lowercase prefixes (prefix).
    offsets — word offset of each term in the original text, used for the
              phrase-adjacency bonus.
    """

    __slots__ = ("mode", "terms", "offsets", "raw")

    def __init__(self, mode, terms, offsets, raw):
        self.mode = mode
        self.terms = tuple(terms)
        self.offsets = tuple(offsets)
        self.raw = raw

    @property
    def is_prefix(self):
        return self.mode == "prefix"

    def prefixes(self):
        """Prefix patterns to try against stored lexemes (raw and stemmed)."""
        term = self.terms[0]
        return sorted({term, stem(term)})

    def term_matches(self, term, lex):
        if self.is_prefix:
            return any(lex.startswith(p) for p in self.prefixes())
        return lex == term

    def covers(self, lexemes):
        """True when every term is satisfied by at least one of the lexemes."""
        return all(
            any(self.term_matches(term, lex) for lex in lexemes)
            for term in self.terms
        )

    def highlights(self, word):
        """Does a word of display text match any query term?"""
        for token in tokenize(word):
            if self.is_prefix:
                if any(token.startswith(p) or stem(token).startswith(p)
                       for p in self.prefixes()):
                    return True
                continue
            lex = lexeme(token)
            if lex is not None and lex in self.terms:
                return True
        return False

    def to_dict(self):
        return {"mode": self.mode, "terms": list(self.terms)}

    def __repr__(self):
        return f"<ParsedQuery {self.mode} {list(self.terms)}>"


def _dedupe(pairs):
    seen = set()
    terms, offsets = [], []
    for term, offset in pairs:
        if term in seen:
            continue
        seen.add(term)
        terms.append(term)
        offsets.append(offset)
    return terms, offsets


def _lexemes_with_offsets(words):
    pairs = []
    offset = 0
    for word in words:
        for token in tokenize(word):
            lex = lexeme(token)
            if lex is not None:
                pairs.append((lex, offset))
            offset += 1
    return pairs


def parse_plain(text):
    words = text.split()
    if not words or not all(_CLEAN_WORD_RE.match(w) for w in words):
        return None
    terms, offsets = _dedupe(_lexemes_with_offsets(words))
    if not terms:
        return None
    return ParsedQuery("plain", terms, offsets, text)


def parse_prefix(text):
    token = text.strip()
    if not _BARE_TOKEN_RE.match(token):
        return None
    return ParsedQuery("prefix", [token.lower()], [0], text)


def parse_and(text):
    words = [re.sub(r"[\W_]+", " ", w) for w in text.split()]
    terms, offsets = _dedupe(_lexemes_with_offsets(words))
    if not terms:
        return None
    return ParsedQuery("and", terms, offsets, text)


PARSERS = (parse_plain, parse_prefix, parse_and)


def parse_query(text):
    """Run the fallback chain; returns a ParsedQuery or None."""
    if text is None:
        return None
    text = str(text).strip()
    if not text:
        return None
    for parser in PARSERS:
        parsed = parser(text)
        if parsed is not None:
            return parsed
    return None
