"""Planner, Executor and Reflector agents."""

from openjragent.agents.executor import Executor
from openjragent.agents.planner import Classification, Planner
from openjragent.agents.reflector import Reflector


__all__ = [
    "Classification",
    "Executor",
    "Planner",
    "Reflector",
]
