#!/usr/bin/env python3
from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Sequence
import numpy as np
import torch

from mppi_local_planner.core.state import Pose2D, Trajectories
from mppi_local_planner.core.costmap import (
    CostmapGrid, LETHAL_OBSTACLE, INSCRIBED_INFLATED_OBSTACLE, NO_INFORMATION)
from mppi_local_planner.utils import yaw_from_quat

Tensor = torch.Tensor


@dataclass
class Path:
    """Reference path in structure-of-arrays form, each [M]."""
    x: Tensor = field(default_factory=lambda: torch.zeros(0))
    y: Tensor = field(default_factory=lambda: torch.zeros(0))
    yaws: Tensor = field(default_factory=lambda: torch.zeros(0))

    def reset(self, size: int):
        self.x = torch.zeros(size)
        self.y = torch.zeros(size)
        self.yaws = torch.zeros(size)

    def __len__(self) -> int:
        return int(self.x.shape[0])

    def last_pose(self) -> Pose2D:
        return Pose2D(float(self.x[-1]), float(self.y[-1]), float(self.yaws[-1]))

    def integrated_distances(self) -> Tensor:
        """Cumulative arc length at each point, starting at 0."""
        if len(self) == 0:
            return torch.zeros(0)
        seg = torch.hypot(torch.diff(self.x), torch.diff(self.y))
        return torch.cat([torch.zeros(1), torch.cumsum(seg, dim=0)])


def _pose_xyyaw(p):
    if isinstance(p, Pose2D):
        return p.x, p.y, p.theta
    if hasattr(p, "orientation") and hasattr(p, "position"):
        q = p.orientation
        return float(p.position.x), float(p.position.y), yaw_from_quat(q.x, q.y, q.z, q.w)
    return float(p[0]), float(p[1]), float(p[2])


def to_tensor(poses: Sequence) -> Path:
    """Convert an ordered pose sequence into a Path."""
    path = Path()
    path.reset(len(poses))
    if not poses:
        return path
    data = torch.tensor([_pose_xyyaw(p) for p in poses], dtype=torch.float32)
    path.x, path.y, path.yaws = data[:, 0].clone(), data[:, 1].clone(), data[:, 2].clone()
    return path


def find_first_inversion(poses: Sequence) -> int:
    """
    Index of the first point after a cusp (direction reversal), or len(poses)
    when there is none. Needs at least three points.
    """
    if len(poses) < 3:
        return len(poses)

    pts = [_pose_xyyaw(p) for p in poses]
    for idx in range(1, len(pts) - 1):
        oa_x = pts[idx][0] - pts[idx - 1][0]
        oa_y = pts[idx][1] - pts[idx - 1][1]
        ab_x = pts[idx + 1][0] - pts[idx][0]
        ab_y = pts[idx + 1][1] - pts[idx][1]

        if oa_x * ab_x + oa_y * ab_y < 0.0:
            return idx + 1

    return len(pts)


def remove_after_first_inversion(poses: List) -> int:
    """Truncate poses in place at the first cusp. Returns the cut index, 0 if none."""
    first_after_inversion = find_first_inversion(poses)
    if first_after_inversion == len(poses):
        return 0
    del poses[first_after_inversion:]
    return first_after_inversion


def find_furthest_reached_points(trajectories: Trajectories, path: Path) -> np.ndarray:
    """
    Running furthest path index per trajectory, in batch order.
    The search for trajectory i starts at the winner of trajectory i-1, so the
    result never decreases.
    """
    n = trajectories.batch_size
    if len(path) == 0 or n == 0:
        return np.zeros(n, dtype=np.int64)

    end_x = trajectories.x[:, -1].unsqueeze(1)
    end_y = trajectories.y[:, -1].unsqueeze(1)
    dists = ((path.x.unsqueeze(0) - end_x) ** 2 + (path.y.unsqueeze(0) - end_y) ** 2).numpy()

    out = np.zeros(n, dtype=np.int64)
    max_id = 0
    for i in range(n):
        min_id = max_id + int(np.argmin(dists[i, max_id:]))
        max_id = max(max_id, min_id)
        out[i] = max_id
    return out


def find_furthest_reached_point(trajectories: Trajectories, path: Path) -> int:
    reached = find_furthest_reached_points(trajectories, path)
    return int(reached[-1]) if reached.size else 0


def find_path_validity(path: Path, costmap: CostmapGrid) -> Tensor:
    """Per segment (M-1) flag: True when the segment's start cell is traversable."""
    segments = max(len(path) - 1, 0)
    if segments == 0:
        return torch.zeros(0, dtype=torch.bool)

    costs, on_map = costmap.costs_at(path.x[:segments], path.y[:segments])
    costs = costs.long()
    valid = on_map.clone()
    valid &= costs != LETHAL_OBSTACLE
    valid &= costs != INSCRIBED_INFLATED_OBSTACLE
    if not costmap.track_unknown_space:
        valid &= costs != NO_INFORMATION
    return valid


def find_closest_path_pts(distances: Tensor, dists: Tensor) -> Tensor:
    """
    Index of the path point whose integrated distance is closest to each entry
    of dists (any shape). Ties go to the later point; past the end maps to the last.
    """
    idx = torch.searchsorted(distances.contiguous(), dists.contiguous(), right=True)
    idx = torch.clamp(idx, 0, distances.shape[0] - 1)
    prev = torch.clamp(idx - 1, min=0)
    use_prev = (torch.abs(distances[prev] - dists)
                < torch.abs(distances[idx] - dists)) & (idx > 0)
    return torch.where(use_prev, prev, idx)
