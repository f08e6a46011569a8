"""
datarepo.query

Query descriptors, resolution, execution and result windows.

Responsibilities:
- Turn declarative method names / explicit SQL into `QueryDescriptor` values.
- Execute descriptors against an `AsyncSession` and shape the results.
"""

# Package marker; import from submodules.
