#!/usr/bin/env python3
from __future__ import annotations
from dataclasses import dataclass
import torch

from mppi_local_planner.core.state import Pose2D, State, Trajectories
from mppi_local_planner.utils import normalize_angles

Tensor = torch.Tensor


@dataclass
class ControlConstraints:
    vx_max: float = 0.5
    vx_min: float = -0.35
    vy_max: float = 0.5
    wz_max: float = 1.9
    ax_max: float = 3.0
    ax_min: float = -3.0
    ay_max: float = 3.0
    az_max: float = 3.5


class MotionModel:
    """
    Kinematic model shared by sampling and rollout.
    predict() turns sampled controls (cv*) into feasible velocities (v*)
    under acceleration limits, starting from the measured robot speed.
    """
    name = "base"

    def __init__(self, constraints: ControlConstraints, model_dt: float):
        self.c = constraints
        self.dt = float(model_dt)

    def is_holonomic(self) -> bool:
        return False

    def apply_constraints(self, cvx: Tensor, cvy: Tensor, cwz: Tensor):
        """Model specific limits on sampled controls (in place)."""
        return

    def clamp_velocities(self, cvx: Tensor, cvy: Tensor, cwz: Tensor):
        cvx.clamp_(self.c.vx_min, self.c.vx_max)
        cwz.clamp_(-self.c.wz_max, self.c.wz_max)
        if self.is_holonomic():
            cvy.clamp_(-self.c.vy_max, self.c.vy_max)
        else:
            cvy.zero_()
        self.apply_constraints(cvx, cvy, cwz)

    def predict(self, state: State):
        T = state.cvx.shape[1]
        dt = self.dt
        max_dvx = dt * self.c.ax_max
        min_dvx = dt * self.c.ax_min  # <= 0
        max_dvy = dt * self.c.ay_max
        max_dwz = dt * self.c.az_max

        state.vx[:, 0] = state.speed.vx
        state.wz[:, 0] = state.speed.wz
        state.vy[:, 0] = state.speed.vy if self.is_holonomic() else 0.0

        for t in range(1, T):
            vx_last = state.vx[:, t - 1]
            dvx = state.cvx[:, t - 1] - vx_last
            fwd = vx_last >= 0.0
            lo = torch.where(fwd, torch.full_like(dvx, min_dvx), torch.full_like(dvx, -max_dvx))
            hi = torch.where(fwd, torch.full_like(dvx, max_dvx), torch.full_like(dvx, -min_dvx))
            state.vx[:, t] = vx_last + torch.maximum(torch.minimum(dvx, hi), lo)

            wz_last = state.wz[:, t - 1]
            state.wz[:, t] = wz_last + torch.clamp(state.cwz[:, t - 1] - wz_last, -max_dwz, max_dwz)

            if self.is_holonomic():
                vy_last = state.vy[:, t - 1]
                state.vy[:, t] = vy_last + torch.clamp(
                    state.cvy[:, t - 1] - vy_last, -max_dvy, max_dvy)


class DiffDriveMotionModel(MotionModel):
    name = "DiffDrive"


class OmniMotionModel(MotionModel):
    name = "Omni"

    def is_holonomic(self) -> bool:
        return True


class AckermannMotionModel(MotionModel):
    """Car-like: |wz| bounded by |vx| / min_turning_r."""
    name = "Ackermann"

    def __init__(self, constraints: ControlConstraints, model_dt: float,
                 min_turning_r: float = 0.2):
        super().__init__(constraints, model_dt)
        self.min_turning_r = float(min_turning_r)

    def apply_constraints(self, cvx: Tensor, cvy: Tensor, cwz: Tensor):
        if self.min_turning_r <= 0.0:
            return
        wz_lim = torch.abs(cvx) / self.min_turning_r
        cwz.copy_(torch.maximum(torch.minimum(cwz, wz_lim), -wz_lim))


MOTION_MODELS = {
    "DiffDrive": DiffDriveMotionModel,
    "Omni": OmniMotionModel,
    "Ackermann": AckermannMotionModel,
}


def integrate_velocities(vx: Tensor, vy: Tensor, wz: Tensor, pose: Pose2D,
                         dt: float) -> Trajectories:
    """
    Forward-integrate [N, T] velocities from pose. The heading used for step t
    is the one reached after step t-1.
    """
    yaws = torch.cumsum(wz * dt, dim=1) + pose.theta
    yaws_prev = torch.empty_like(yaws)
    yaws_prev[:, 0] = pose.theta
    yaws_prev[:, 1:] = yaws[:, :-1]

    cos_y = torch.cos(yaws_prev)
    sin_y = torch.sin(yaws_prev)
    dx = vx * cos_y - vy * sin_y
    dy = vx * sin_y + vy * cos_y

    out = Trajectories()
    out.x = pose.x + torch.cumsum(dx * dt, dim=1)
    out.y = pose.y + torch.cumsum(dy * dt, dim=1)
    out.yaws = normalize_angles(yaws)
    return out
