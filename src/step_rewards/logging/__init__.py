"""
Structured logging setup for the step rewards engine
"""

from step_rewards.logging.setup import get_logger, setup_logging, user_context

__all__ = ["setup_logging", "get_logger", "user_context"]
