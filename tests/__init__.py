"""
StudyQuest Test Suite
=====================

Test Organization
-----------------
- tests/unit/          : Fast tests with mocks or the in-memory store
- tests/integration/   : SQL store and DatabaseService on SQLite (aiosqlite)
- tests/fakes.py       : In-memory ProgressionStore and recording push sender

Testing Philosophy
------------------
- Unit tests: fast, isolated, test business logic
- Integration tests: slower, exercise the real SQLAlchemy stack
- Use pytest markers to categorize and selectively run tests
- Follow AAA pattern: Arrange, Act, Assert
"""
