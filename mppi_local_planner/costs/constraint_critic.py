#!/usr/bin/env python3
from __future__ import annotations
from typing import Optional
import torch

from mppi_local_planner.core.critic_data import CriticData
from mppi_local_planner.core.motion_models import AckermannMotionModel
from mppi_local_planner.costs.critic_function import CriticFunction


class ConstraintCritic(CriticFunction):
    """Soft velocity limits: time-integrated excess over the model's bounds."""
    default_weight = 4.0

    def evaluate(self, data: CriticData) -> Optional[torch.Tensor]:
        model = data.motion_model
        if model is None:
            return None
        c = model.c
        s = data.state

        if model.is_holonomic():
            # signed planar speed
            sign = torch.where(s.vx >= 0, torch.ones_like(s.vx), -torch.ones_like(s.vx))
            speed = torch.sqrt(s.vx ** 2 + s.vy ** 2) * sign
        else:
            speed = s.vx

        over = torch.clamp(speed - c.vx_max, min=0.0)
        under = torch.clamp(c.vx_min - speed, min=0.0)
        spin = torch.clamp(torch.abs(s.wz) - c.wz_max, min=0.0)
        violations = over + under + spin

        if isinstance(model, AckermannMotionModel) and model.min_turning_r > 0.0:
            # turning radius below the minimum
            radius = torch.abs(s.vx) / torch.clamp(torch.abs(s.wz), min=1e-6)
            violations = violations + torch.where(
                radius < model.min_turning_r,
                model.min_turning_r - radius, torch.zeros_like(radius))

        return (violations * data.model_dt).sum(dim=1)
