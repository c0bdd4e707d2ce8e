"""
Blueprints package for the CourtClub API
Contains the JSON route blueprints for each resource
"""

from .auth import auth_bp
from .clubs import clubs_bp
from .events import events_bp
from .matches import matches_bp
from .users import users_bp

__all__ = ['auth_bp', 'clubs_bp', 'events_bp', 'matches_bp', 'users_bp']
