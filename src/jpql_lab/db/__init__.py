"""
jpql_lab.db

Storage package (SQLAlchemy Core).

Responsibilities:
- Create the engine for a persistence unit.
- Generate tables from entity metadata and apply the unit's schema action.
- Read and write entity rows.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Nothing here knows about persistence contexts; `jpql_lab.persistence` owns identity
# and lifecycle, this package only moves rows.
