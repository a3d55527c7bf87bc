"""Relevance scoring and highlighted snippets."""

from markupsafe import Markup, escape

WEIGHT_VALUES = {"A": 1.0, "B": 0.4, "C": 0.2, "D": 0.1}
PHRASE_BONUS = 1.5

SNIPPET_MAX_WORDS = 20
# Words of lead-in kept before the first match when the text is truncated
SNIPPET_LEAD_WORDS = 4

HIGHLIGHT_OPEN = Markup("<b>")
HIGHLIGHT_CLOSE = Markup("</b>")


def _occurrences(vector, parsed, term):
    found = []
    for lex, entries in vector.items():
        if parsed.term_matches(term, lex):
            found.extend(entries)
    return found


def _has_phrase(occurrences_by_term, offsets):
    """True when the terms appear in the document at the same relative
    distances they have in the query."""
    first_positions = {pos for pos, _w in occurrences_by_term[0]}
    for start in first_positions:
        ok = True
        for entries, offset in zip(occurrences_by_term[1:], offsets[1:]):
            wanted = start + (offset - offsets[0])
            if not any(pos == wanted for pos, _w in entries):
                ok = False
                break
        if ok:
            return True
    return False


def rank(vector, parsed):
    """Score a vector against a query. 0.0 means "does not match".

    Per term: weight values of every occurrence, highest first, with the
    n-th occurrence contributing 1/n of its weight. Term scores are averaged.
    Multi-word plain queries found as a phrase get PHRASE_BONUS.
    """
    if not vector or parsed is None:
        return 0.0

    per_term = []
    for term in parsed.terms:
        entries = _occurrences(vector, parsed, term)
        if not entries:
            return 0.0
        per_term.append(entries)

    score = 0.0
    for entries in per_term:
        weights = sorted((WEIGHT_VALUES[w] for _pos, w in entries), reverse=True)
        score += sum(w / (i + 1) for i, w in enumerate(weights))
    score /= len(per_term)

    if parsed.mode == "plain" and len(per_term) > 1:
        if _has_phrase(per_term, parsed.offsets):
            score *= PHRASE_BONUS

    return round(score, 6)


def make_snippet(text, parsed=None, max_words=SNIPPET_MAX_WORDS):
    """A short HTML-safe excerpt of text with matched words in <b> tags.

    The window starts a few words before the first match. Text is escaped;
    only the highlight tags are markup.
    """
    words = (text or "").split()
    if not words:
        return ""

    hits = set()
    if parsed is not None:
        hits = {i for i, w in enumerate(words) if parsed.highlights(w)}

    start = 0
    if len(words) > max_words and hits:
        start = max(0, min(hits) - SNIPPET_LEAD_WORDS)
        start = min(start, len(words) - max_words)
    end = min(len(words), start + max_words)

    parts = []
    for i in range(start, end):
        word = escape(words[i])
        if i in hits:
            word = HIGHLIGHT_OPEN + word + HIGHLIGHT_CLOSE
        parts.append(word)
    return str(Markup(" ").join(parts))
