#!/usr/bin/env python3
from __future__ import annotations
import logging
from typing import Any, Optional
import torch

from mppi_local_planner.core.critic_data import CriticData
from mppi_local_planner.parameters import Parameters
from mppi_local_planner.utils import within_position_goal_tolerance

Tensor = torch.Tensor

logger = logging.getLogger(__name__)


class CriticFunction:
    """
    One scoring term. Subclasses implement evaluate(data) and return a raw [N]
    cost (or None when inactive); score() applies weight and power.
    Parameters live under "<name>.<key>".
    """
    default_weight = 1.0

    def __init__(self, name: str, params: Parameters):
        self.name = name
        self.p = params
        self.logger = logging.getLogger(f"{__name__}.{name}")
        self.load()

    def decl(self, key: str, default: Any):
        full = f"{self.name}.{key}"
        if not self.p.has_parameter(full):
            self.p.declare_parameter(full, default)
        return self.p.get_parameter(full).value

    def load(self):
        """(Re)read parameters. Called at construction and on parameter updates."""
        self.enabled = bool(self.decl("enabled", True))
        self.weight = float(self.decl("cost_weight", self.default_weight))
        self.power = int(self.decl("cost_power", 1))
        self.initialize()

    def initialize(self):
        return

    def evaluate(self, data: CriticData) -> Optional[Tensor]:
        raise NotImplementedError

    def score(self, data: CriticData) -> Optional[Tensor]:
        if not self.enabled:
            return None
        cost = self.evaluate(data)
        if cost is None:
            return None
        cost = cost * self.weight
        if self.power > 1:
            cost = cost ** self.power
        return cost

    # shared helper for goal-distance gating
    @staticmethod
    def near_goal(data: CriticData, threshold: float) -> bool:
        return within_position_goal_tolerance(threshold, data.state.pose, data.goal)
