"""Core infrastructure for StudyQuest: config, logging, events, database, redis."""
