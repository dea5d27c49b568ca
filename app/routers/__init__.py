"""
API Routers
Separate router modules for each domain.
"""

from app.routers import pipeline

__all__ = ["pipeline"]
