"""
Repository layer for database operations.

Provides lookups and writes for users, verification challenges and
device sessions.
"""

from db.repos.user_repo import UserRepository
from db.repos.challenge_repo import ChallengeRepository
from db.repos.session_repo import SessionRepository

__all__ = ["UserRepository", "ChallengeRepository", "SessionRepository"]
