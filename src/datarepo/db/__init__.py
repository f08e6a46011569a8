"""
datarepo.db

Persistence package (SQLAlchemy async).

Responsibilities:
- Provide ORM models, engine/session setup, the unit of work and repositories.
"""

# Package marker.
