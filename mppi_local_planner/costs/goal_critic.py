#!/usr/bin/env python3
from __future__ import annotations
from typing import Optional
import torch

from mppi_local_planner.core.critic_data import CriticData
from mppi_local_planner.costs.critic_function import CriticFunction


class GoalCritic(CriticFunction):
    """Pulls every trajectory point toward the goal once the robot is close to it."""
    default_weight = 5.0

    def initialize(self):
        self.threshold_to_consider = float(self.decl("threshold_to_consider", 1.4))

    def evaluate(self, data: CriticData) -> Optional[torch.Tensor]:
        if not self.near_goal(data, self.threshold_to_consider):
            return None

        dx = data.trajectories.x - data.goal.x
        dy = data.trajectories.y - data.goal.y
        return torch.hypot(dx, dy).mean(dim=1)
