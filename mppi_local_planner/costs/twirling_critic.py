#!/usr/bin/env python3
from __future__ import annotations
from typing import Optional
import torch

from mppi_local_planner.core.critic_data import CriticData
from mppi_local_planner.costs.critic_function import CriticFunction


class TwirlingCritic(CriticFunction):
    """Discourages spinning while travelling (holonomic robots mostly)."""
    default_weight = 10.0

    def initialize(self):
        self.threshold_to_consider = float(self.decl("threshold_to_consider", 0.25))

    def evaluate(self, data: CriticData) -> Optional[torch.Tensor]:
        if self.near_goal(data, self.threshold_to_consider):
            return None
        return torch.abs(data.state.wz).mean(dim=1)
