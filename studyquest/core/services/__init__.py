"""Service wiring."""

from studyquest.core.services.container import ServiceContainer

__all__ = ["ServiceContainer"]
