#!/usr/bin/env python3
from __future__ import annotations
import math
from typing import Optional
import torch

from mppi_local_planner.core.critic_data import CriticData
from mppi_local_planner.costs.critic_function import CriticFunction
from mppi_local_planner.utils import (
    normalize_yaws_between_points, pose_point_angle, pose_point_angle_with_yaw,
    shortest_angular_distances)

FORWARD_PREFERENCE = "forward_preference"
NO_DIRECTIONAL_PREFERENCE = "no_directional_preference"
CONSIDER_FEASIBLE_PATH_ORIENTATIONS = "consider_feasible_path_orientations"

_MODES = {
    0: FORWARD_PREFERENCE,
    1: NO_DIRECTIONAL_PREFERENCE,
    2: CONSIDER_FEASIBLE_PATH_ORIENTATIONS,
}


class PathAngleCritic(CriticFunction):
    """
    Turns trajectory endpoints toward a look-ahead path point once the robot
    heading drifts more than max_angle_to_furthest away from it.
    """
    default_weight = 2.2

    def initialize(self):
        self.offset_from_furthest = int(self.decl("offset_from_furthest", 4))
        self.threshold_to_consider = float(self.decl("threshold_to_consider", 0.5))
        self.max_angle_to_furthest = float(self.decl("max_angle_to_furthest", 0.785398))
        mode = self.decl("mode", FORWARD_PREFERENCE)
        mode = _MODES.get(mode, mode)
        if mode not in _MODES.values():
            self.logger.warning("Unknown PathAngleCritic mode '%s', using %s",
                                mode, FORWARD_PREFERENCE)
            mode = FORWARD_PREFERENCE
        self.mode = mode

    def _robot_aligned(self, data: CriticData, gx: float, gy: float, gyaw: float) -> bool:
        pose = data.state.pose
        if self.mode == FORWARD_PREFERENCE:
            angle = pose_point_angle(pose, gx, gy, True)
        elif self.mode == NO_DIRECTIONAL_PREFERENCE:
            angle = pose_point_angle(pose, gx, gy, False)
        else:
            angle = pose_point_angle_with_yaw(pose, gx, gy, gyaw)
        return angle < self.max_angle_to_furthest

    def evaluate(self, data: CriticData) -> Optional[torch.Tensor]:
        if len(data.path) == 0 or self.near_goal(data, self.threshold_to_consider):
            return None

        furthest = data.set_path_furthest_point_if_not_set()
        idx = min(furthest + self.offset_from_furthest, len(data.path) - 1)
        gx = float(data.path.x[idx])
        gy = float(data.path.y[idx])
        gyaw = float(data.path.yaws[idx])

        if self._robot_aligned(data, gx, gy, gyaw):
            return None

        last_yaws = data.trajectories.yaws[:, -1]
        yaws_between_points = torch.atan2(gy - data.trajectories.y[:, -1],
                                          gx - data.trajectories.x[:, -1])

        if self.mode == FORWARD_PREFERENCE:
            return torch.abs(shortest_angular_distances(last_yaws, yaws_between_points))
        if self.mode == NO_DIRECTIONAL_PREFERENCE:
            yaws = torch.abs(shortest_angular_distances(last_yaws, yaws_between_points))
            return torch.minimum(yaws, math.pi - yaws)

        corrected = normalize_yaws_between_points(gyaw, yaws_between_points)
        return torch.abs(shortest_angular_distances(last_yaws, corrected))
