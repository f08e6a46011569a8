"""
datarepo.db.repositories

Repository package.

Responsibilities:
- Group the generic facade and the concrete member/team repositories.
"""

# Package marker; repositories are imported directly from submodules.


# --- Module Notes -----------------------------------------------------------
# Query declarations are resolved when these modules are imported, so a typo in a
# method name fails at import, not at first call.
