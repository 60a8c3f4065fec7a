"""Shared helpers for the HTTP routes."""

from sqlalchemy.orm import Session

from vinho_pipeline.core.config import get_default_config
from vinho_pipeline.services.factory import build_matcher
from vinho_pipeline.vectors.matcher import VectorMatcher


def get_matcher(session: Session) -> VectorMatcher:
    """Vector matcher for the configured backend, bound to ``session``."""
    return build_matcher(session, get_default_config())
