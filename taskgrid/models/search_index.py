"""SearchPosting model — inverted index over entity search vectors.

One row per (entity, lexeme, weight). Rows are rewritten in the same flush
that writes the owning workspace/section/task, so the index never lags the
source columns.
"""

from taskgrid.extensions import db


class SearchPosting(db.Model):
    __tablename__ = "search_postings"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    entity_type = db.Column(db.String(20), nullable=False)  # workspace | section | task
    entity_id = db.Column(db.String(36), nullable=False)
    workspace_id = db.Column(db.String(36), nullable=False)
    lexeme = db.Column(db.String(255), nullable=False)
    weight = db.Column(db.String(1), nullable=False)  # A | B | C | D
    frequency = db.Column(db.Integer, nullable=False, default=1)

    __table_args__ = (
        db.Index("ix_search_postings_lexeme", "lexeme", "entity_type"),
        db.Index("ix_search_postings_entity", "entity_type", "entity_id"),
    )

    def __repr__(self):
        return f"<SearchPosting {self.entity_type}:{self.entity_id} {self.lexeme}/{self.weight}>"
