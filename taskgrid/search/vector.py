"""Weighted search vectors for workspaces, sections and tasks.

A vector maps each lexeme (lowercased, Snowball-stemmed, stop words removed)
to the list of [position, weight] pairs where it occurs, e.g.

    {"bug": [[3, "A"]], "login": [[2, "A"], [5, "B"]]}

Positions run across all indexed fields in SEARCH_FIELDS order, so the
title/name always comes first. Weights are tiers: A (name/title), B
(description), C (tags).

Vectors and their SearchPosting rows are recomputed by mapper hooks inside
the same flush that changes the source columns.
"""

import logging
import re

import snowballstemmer
from sqlalchemy import event as sa_event

from taskgrid.models.search_index import SearchPosting

logger = logging.getLogger(__name__)

WEIGHTS = ("A", "B", "C", "D")

# Postgres "english" stop list, trimmed to the words that actually show up
# in task titles.
STOP_WORDS = frozenset("""
a about above after again against all am an and any are as at be because been
before being below between both but by can did do does doing down during each
few for from further had has have having he her here hers herself him himself
his how i if in into is it its itself just me more most my myself no nor not
now of off on once only or other our ours ourselves out over own same she
should so some such than that the their theirs them themselves then there
these they this those through to too under until up very was we were what
when where which while who whom why will with you your yours yourself
yourselves
""".split())

_TOKEN_RE = re.compile(r"[^\W_]+", re.UNICODE)

_stemmer = snowballstemmer.stemmer("english")


def tokenize(text):
    """Split free text into lowercase word tokens (punctuation dropped)."""
    if not text:
        return []
    return [t.lower() for t in _TOKEN_RE.findall(text)]


def stem(word):
    return _stemmer.stemWord(word.lower())


def lexeme(word):
    """Normalize one token to its lexeme, or None for a stop word."""
    word = word.lower()
    if word in STOP_WORDS:
        return None
    return stem(word)


def field_text(value):
    """Coerce a field value (string or list of tags) into indexable text."""
    if value is None:
        return ""
    if isinstance(value, (list, tuple, set)):
        return " ".join(str(v) for v in value if v)
    return str(value)


def build_search_vector(fields):
    """Build a vector from [(text, weight), ...] in field order.

    Deterministic: the same inputs always produce an identical dict.
    """
    vector = {}
    position = 0
    for text, weight in fields:
        if weight not in WEIGHTS:
            raise ValueError(f"Unknown weight tier '{weight}'.")
        for token in tokenize(text):
            position += 1
            lex = lexeme(token)
            if lex is None:
                continue
            vector.setdefault(lex, []).append([position, weight])
    return {lex: vector[lex] for lex in sorted(vector)}


def vector_for(entity):
    """Compute the vector for a Workspace, Section or Task instance."""
    return build_search_vector(
        (field_text(getattr(entity, attr)), weight)
        for attr, weight in entity.SEARCH_FIELDS
    )


def postings_from_vector(vector):
    """Collapse a vector into {(lexeme, weight): frequency}."""
    postings = {}
    for lex, occurrences in vector.items():
        for _position, weight in occurrences:
            postings[(lex, weight)] = postings.get((lex, weight), 0) + 1
    return postings


# ─── Mapper hooks ───────────────────────────────────────────────


def _entity_type(target):
    return type(target).__tablename__[:-1]  # workspaces -> workspace


def _owning_workspace_id(target):
    if _entity_type(target) == "workspace":
        return target.id
    return target.workspace_id


def write_postings(connection, target):
    """Replace the SearchPosting rows for one entity."""
    table = SearchPosting.__table__
    entity_type = _entity_type(target)
    connection.execute(
        table.delete().where(
            table.c.entity_type == entity_type,
            table.c.entity_id == target.id,
        )
    )
    rows = [
        {
            "entity_type": entity_type,
            "entity_id": target.id,
            "workspace_id": _owning_workspace_id(target),
            "lexeme": lex,
            "weight": weight,
            "frequency": frequency,
        }
        for (lex, weight), frequency in postings_from_vector(
            target.search_vector or {}
        ).items()
    ]
    if rows:
        connection.execute(table.insert(), rows)


def _before_insert(mapper, connection, target):
    target.search_vector = vector_for(target)


def _before_update(mapper, connection, target):
    vector = vector_for(target)
    if vector != target.search_vector:
        target.search_vector = vector
        target._postings_stale = True


def _after_insert(mapper, connection, target):
    write_postings(connection, target)


def _after_update(mapper, connection, target):
    if getattr(target, "_postings_stale", False):
        write_postings(connection, target)
        target._postings_stale = False


def _after_delete(mapper, connection, target):
    table = SearchPosting.__table__
    connection.execute(
        table.delete().where(
            table.c.entity_type == _entity_type(target),
            table.c.entity_id == target.id,
        )
    )


_HOOKS = [
    ("before_insert", _before_insert),
    ("before_update", _before_update),
    ("after_insert", _after_insert),
    ("after_update", _after_update),
    ("after_delete", _after_delete),
]


def indexed_models():
    from taskgrid.models.section import Section
    from taskgrid.models.task import Task
    from taskgrid.models.workspace import Workspace

    return [Workspace, Section, Task]


def register_listeners():
    """Attach the vector hooks to every searchable model (idempotent)."""
    for model in indexed_models():
        for name, fn in _HOOKS:
            if not sa_event.contains(model, name, fn):
                sa_event.listen(model, name, fn)
    logger.debug("search vector hooks registered")
