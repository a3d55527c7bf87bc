"""Full-text search primitives: vectors, query parsing, ranking."""
