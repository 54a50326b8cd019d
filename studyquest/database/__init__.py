"""
StudyQuest database schema package.

ORM models live in `studyquest.database.models`; engine and session
management live in `studyquest.core.database`.
"""
