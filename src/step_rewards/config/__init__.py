"""
Configuration for the step rewards engine
"""

from step_rewards.config.settings import Settings, settings

__all__ = ["Settings", "settings"]
