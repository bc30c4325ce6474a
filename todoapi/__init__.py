"""
Todo service package.

Provides user and todo persistence over either a relational (SQLAlchemy) or a
document (MongoDB) store, plus the bearer-token authentication and ownership
checks that gate every request regardless of which store is active.
"""
