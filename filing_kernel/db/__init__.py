"""Database layer: declarative base, engine/session management, immutability."""

from filing_kernel.db.base import Base, TrackedBase, UUIDString

__all__ = ["Base", "TrackedBase", "UUIDString"]
