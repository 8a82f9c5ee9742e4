"""
Persistence backends for the step rewards engine
"""

from step_rewards.storage.base import RewardsStore
from step_rewards.storage.guarded import GuardedStore
from step_rewards.storage.memory import InMemoryStore
from step_rewards.storage.postgres import PostgresStore

__all__ = ["RewardsStore", "GuardedStore", "InMemoryStore", "PostgresStore"]
