"""
Configuration subsystem for StudyQuest.

- `Config`: static settings from environment variables (.env aware)
- `studyquest.core.config.manager.ConfigManager`: YAML-backed progression
  tunables with dot-notation access (import from the module directly; it
  depends on the logging subsystem, which itself depends on `Config`)
"""

from studyquest.core.config.config import Config, Environment

__all__ = ["Config", "Environment"]
