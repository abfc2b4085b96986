"""
jpql_lab.observability

Observability package.

Responsibilities:
- Structured logging configuration.
- Unit-of-work context propagation for consistent log enrichment.
"""

# Package marker.
