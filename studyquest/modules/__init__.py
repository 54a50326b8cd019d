"""
StudyQuest feature modules.

Each subpackage owns one slice of the progression engine:
- shared: exceptions, base classes, constants, formulas, validators
- store: persistence collaborator protocol and SQLAlchemy implementation
- xp, daily, streak, achievement: progression services
- notification: push notification fan-out on achievement unlock
- gamification: end-to-end action flows
"""
