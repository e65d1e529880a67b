#!/usr/bin/env python3
from __future__ import annotations
from typing import Optional
import torch

from mppi_local_planner.core.critic_data import CriticData
from mppi_local_planner.costs.critic_function import CriticFunction


class PreferForwardCritic(CriticFunction):
    """Penalizes reversing, except in the final approach to the goal."""
    default_weight = 5.0

    def initialize(self):
        self.threshold_to_consider = float(self.decl("threshold_to_consider", 0.5))

    def evaluate(self, data: CriticData) -> Optional[torch.Tensor]:
        if self.near_goal(data, self.threshold_to_consider):
            return None

        backward = torch.clamp(-data.state.vx, min=0.0)
        return (backward * data.model_dt).sum(dim=1)
