"""
Authentication core for the game-library backend.

Design goals:
- Opaque session tokens; only their SHA-256 hash is persisted.
- Password accounts and Steam-linked accounts share one account table.
- Delegated Steam (OpenID 2.0) login guarded by single-use pending states.
"""
