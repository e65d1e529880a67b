#!/usr/bin/env python3
from __future__ import annotations
from typing import Optional
import torch

from mppi_local_planner.core.critic_data import CriticData
from mppi_local_planner.costs.critic_function import CriticFunction
from mppi_local_planner.utils import shortest_angular_distances


class GoalAngleCritic(CriticFunction):
    """Aligns headings with the goal yaw in the final approach."""
    default_weight = 3.0

    def initialize(self):
        self.threshold_to_consider = float(self.decl("threshold_to_consider", 0.5))

    def evaluate(self, data: CriticData) -> Optional[torch.Tensor]:
        if not self.near_goal(data, self.threshold_to_consider):
            return None

        err = shortest_angular_distances(data.trajectories.yaws, data.goal.theta)
        return torch.abs(err).mean(dim=1)
