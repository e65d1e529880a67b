#!/usr/bin/env python3
from __future__ import annotations
from typing import Optional
import torch

from mppi_local_planner.core.critic_data import CriticData
from mppi_local_planner.costs.critic_function import CriticFunction


class VelocityDeadbandCritic(CriticFunction):
    """Penalizes commands inside the actuator deadband [vx, vy, wz]."""
    default_weight = 35.0

    def initialize(self):
        deadband = list(self.decl("deadband_velocities", [0.0, 0.0, 0.0]))
        if len(deadband) != 3:
            self.logger.warning("deadband_velocities needs 3 values, got %s; disabling", deadband)
            deadband = [0.0, 0.0, 0.0]
        self.deadband = [abs(float(v)) for v in deadband]

    def evaluate(self, data: CriticData) -> Optional[torch.Tensor]:
        if not any(self.deadband):
            return None

        s = data.state
        penalty = torch.clamp(self.deadband[0] - torch.abs(s.vx), min=0.0)
        penalty = penalty + torch.clamp(self.deadband[2] - torch.abs(s.wz), min=0.0)
        if data.motion_model is not None and data.motion_model.is_holonomic():
            penalty = penalty + torch.clamp(self.deadband[1] - torch.abs(s.vy), min=0.0)
        return (penalty * data.model_dt).sum(dim=1)
