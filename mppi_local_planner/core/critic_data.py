#!/usr/bin/env python3
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional
import torch

from mppi_local_planner.core.state import Pose2D, State, Trajectories
from mppi_local_planner.core.path import Path, find_furthest_reached_point, find_path_validity
from mppi_local_planner.core.costmap import CostmapGrid
from mppi_local_planner.core.motion_models import MotionModel

Tensor = torch.Tensor


@dataclass
class CriticData:
    """
    Everything a critic may read during one scoring pass.
    Critics only add to `costs` (through the manager), raise `fail_flag`, or
    fill the two lazy caches below. Trajectories and path are read-only.
    """
    state: State
    trajectories: Trajectories
    path: Path
    goal: Pose2D
    model_dt: float
    costmap: CostmapGrid
    motion_model: Optional[MotionModel] = None
    costs: Tensor = field(default_factory=lambda: torch.zeros(0))
    fail_flag: bool = False

    # cycle-scoped caches, None means "not computed yet"
    furthest_reached_path_point: Optional[int] = None
    path_pts_valid: Optional[Tensor] = None

    # per-critic contribution, diagnostics only
    critic_costs: Dict[str, Tensor] = field(default_factory=dict)

    @property
    def batch_size(self) -> int:
        return self.trajectories.batch_size

    def set_path_furthest_point_if_not_set(self) -> int:
        if self.furthest_reached_path_point is None:
            self.furthest_reached_path_point = find_furthest_reached_point(
                self.trajectories, self.path)
        return self.furthest_reached_path_point

    def set_path_costs_if_not_set(self) -> Tensor:
        if self.path_pts_valid is None:
            self.path_pts_valid = find_path_validity(self.path, self.costmap)
        return self.path_pts_valid
