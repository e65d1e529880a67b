#!/usr/bin/env python3
from __future__ import annotations
from typing import Optional
import torch

from mppi_local_planner.core.critic_data import CriticData
from mppi_local_planner.core.path import find_closest_path_pts
from mppi_local_planner.costs.critic_function import CriticFunction
from mppi_local_planner.utils import shortest_angular_distances


class PathAlignCritic(CriticFunction):
    """
    Keeps trajectories on top of the path: each strided trajectory point is
    matched to the path point at the same integrated distance and the mean
    deviation is the cost. Blocked path points are skipped; the critic stays
    quiet when too much of the reachable path is blocked.
    """
    default_weight = 10.0

    def initialize(self):
        self.max_path_occupancy_ratio = float(self.decl("max_path_occupancy_ratio", 0.07))
        self.offset_from_furthest = int(self.decl("offset_from_furthest", 20))
        self.trajectory_point_step = max(1, int(self.decl("trajectory_point_step", 4)))
        self.threshold_to_consider = float(self.decl("threshold_to_consider", 0.5))
        self.use_path_orientations = bool(self.decl("use_path_orientations", False))

    def evaluate(self, data: CriticData) -> Optional[torch.Tensor]:
        if self.near_goal(data, self.threshold_to_consider):
            return None

        path_segments_count = data.set_path_furthest_point_if_not_set()
        if path_segments_count < self.offset_from_furthest or path_segments_count < 1:
            return None

        valid = data.set_path_costs_if_not_set()[:path_segments_count]
        invalid = int((~valid).sum())
        if invalid / float(path_segments_count) > self.max_path_occupancy_ratio and invalid > 2:
            return None

        path = data.path
        px = path.x[:path_segments_count]
        py = path.y[:path_segments_count]
        pyaw = path.yaws[:path_segments_count]
        path_dists = path.integrated_distances()[:path_segments_count].contiguous()

        step = self.trajectory_point_step
        tx = data.trajectories.x[:, ::step]
        ty = data.trajectories.y[:, ::step]
        tyaw = data.trajectories.yaws[:, ::step]
        if tx.shape[1] < 2:
            return None

        seg = torch.hypot(tx[:, 1:] - tx[:, :-1], ty[:, 1:] - ty[:, :-1])
        traj_dists = torch.cumsum(seg, dim=1)  # [N, T'-1], first point skipped

        idx = find_closest_path_pts(path_dists, traj_dists)

        dist = torch.hypot(px[idx] - tx[:, 1:], py[idx] - ty[:, 1:])
        if self.use_path_orientations:
            dyaw = shortest_angular_distances(tyaw[:, 1:], pyaw[idx])
            dist = dist + torch.abs(dyaw)

        mask = valid[idx].float()
        samples = mask.sum(dim=1)
        summed = (dist * mask).sum(dim=1)
        return torch.where(samples > 0, summed / torch.clamp(samples, min=1.0),
                           torch.zeros_like(summed))
