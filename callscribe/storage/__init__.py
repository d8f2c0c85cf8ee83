"""Persistence of recorded sessions (SQLAlchemy async)."""
from .db import build_engine, build_session_factory, init_models
from .repository import SessionRepository

__all__ = ["build_engine", "build_session_factory", "init_models", "SessionRepository"]
