#!/usr/bin/env python3
from __future__ import annotations
from typing import Optional
import torch

from mppi_local_planner.core.critic_data import CriticData
from mppi_local_planner.costs.critic_function import CriticFunction


class VelocitySmoothnessCritic(CriticFunction):
    """
    Sum of squared step-to-step changes of the sampled controls. The first
    step is compared with the measured robot speed.
    """
    default_weight = 1.0

    def initialize(self):
        self.vx_weight = float(self.decl("vx_weight", 1.0))
        self.vy_weight = float(self.decl("vy_weight", 1.0))
        self.wz_weight = float(self.decl("wz_weight", 1.0))

    @staticmethod
    def _deltas(seq: torch.Tensor, current: float) -> torch.Tensor:
        first = seq[:, :1] - current
        return torch.cat([first, seq[:, 1:] - seq[:, :-1]], dim=1)

    def evaluate(self, data: CriticData) -> Optional[torch.Tensor]:
        s = data.state
        cost = self.vx_weight * (self._deltas(s.cvx, s.speed.vx) ** 2).sum(dim=1)
        cost = cost + self.wz_weight * (self._deltas(s.cwz, s.speed.wz) ** 2).sum(dim=1)
        if data.motion_model is not None and data.motion_model.is_holonomic():
            cost = cost + self.vy_weight * (self._deltas(s.cvy, s.speed.vy) ** 2).sum(dim=1)
        return cost
