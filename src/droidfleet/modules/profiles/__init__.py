"""Profile 存取"""
from .manager import ProfileManager, ProfileSnapshot, profile_manager

__all__ = ["ProfileManager", "ProfileSnapshot", "profile_manager"]
