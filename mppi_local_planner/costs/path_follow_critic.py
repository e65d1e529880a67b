#!/usr/bin/env python3
from __future__ import annotations
from typing import Optional
import torch

from mppi_local_planner.core.critic_data import CriticData
from mppi_local_planner.costs.critic_function import CriticFunction


class PathFollowCritic(CriticFunction):
    """
    Drives trajectory endpoints toward one path point ahead of the furthest
    progress, skipping blocked points.
    """
    default_weight = 5.0

    def initialize(self):
        self.offset_from_furthest = int(self.decl("offset_from_furthest", 6))
        self.threshold_to_consider = float(self.decl("threshold_to_consider", 1.4))

    def evaluate(self, data: CriticData) -> Optional[torch.Tensor]:
        if len(data.path) < 2 or self.near_goal(data, self.threshold_to_consider):
            return None

        furthest = data.set_path_furthest_point_if_not_set()
        valid = data.set_path_costs_if_not_set()
        path_size = len(data.path) - 1

        idx = min(furthest + self.offset_from_furthest, path_size)
        while idx < path_size - 1 and not bool(valid[idx]):
            idx += 1

        dx = data.trajectories.x[:, -1] - data.path.x[idx]
        dy = data.trajectories.y[:, -1] - data.path.y[idx]
        return torch.hypot(dx, dy)
