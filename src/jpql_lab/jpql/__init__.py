"""
jpql_lab.jpql

Query-language front end and in-memory evaluator.

Responsibilities:
- Tokenize and parse query text (`lexer`, `parser`).
- Resolve names against entity metadata (`compiler`).
- Execute compiled statements over managed entities (`evaluator`).
"""

# Package marker; import from the submodules.


# --- Module Notes -----------------------------------------------------------
# The front end is storage-agnostic: it only sees entities handed to it by an
# `EntitySource` (the entity manager).
