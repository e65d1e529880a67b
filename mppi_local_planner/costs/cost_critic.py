#!/usr/bin/env python3
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
import torch

from mppi_local_planner.core.critic_data import CriticData
from mppi_local_planner.core.costmap import (
    LETHAL_OBSTACLE, INSCRIBED_INFLATED_OBSTACLE, NO_INFORMATION)
from mppi_local_planner.costs.critic_function import CriticFunction

Tensor = torch.Tensor


@dataclass
class CostParams:
    critical_cost: float
    collision_cost: float
    near_collision_cost: int
    near_goal_distance: float
    trajectory_point_step: int


class CostCritic(CriticFunction):
    """
    Obstacle cost read straight from the costmap, stepwise:
      evaluate() -> sample -> classify -> accumulate -> normalize -> debug
    A trajectory touching a lethal/inscribed/untracked-unknown or off-map cell
    gets collision_cost. If every trajectory collides the pipeline is stopped.
    """
    default_weight = 3.81

    def initialize(self):
        self.cp = CostParams(
            critical_cost=float(self.decl("critical_cost", 300.0)),
            collision_cost=float(self.decl("collision_cost", 1000000.0)),
            near_collision_cost=int(self.decl("near_collision_cost", 253)),
            near_goal_distance=float(self.decl("near_goal_distance", 0.5)),
            trajectory_point_step=max(1, int(self.decl("trajectory_point_step", 2))),
        )
        # raw costs are 0..254
        self.weight = self.weight / 254.0
        self.debug: Optional[Dict[str, Any]] = None

    def _sample(self, data: CriticData) -> Tuple[Tensor, Tensor]:
        """1) Costs along each trajectory every trajectory_point_step points."""
        step = self.cp.trajectory_point_step
        xs = data.trajectories.x[:, ::step]
        ys = data.trajectories.y[:, ::step]
        costs, on_map = data.costmap.costs_at(xs, ys)
        return costs.long(), on_map

    def _classify(self, data: CriticData, costs: Tensor, on_map: Tensor) -> Tensor:
        """2) Per point collision mask."""
        collision = (costs == LETHAL_OBSTACLE) | (costs == INSCRIBED_INFLATED_OBSTACLE)
        collision |= ~on_map
        if not data.costmap.track_unknown_space:
            collision |= costs == NO_INFORMATION
        return collision

    def _accumulate(self, data: CriticData, costs: Tensor, collision: Tensor) -> Tensor:
        """3) Critical + repulsive terms up to the first collision, collision cost after."""
        # points before the first collision of their row
        before = collision.long().cumsum(dim=1) == 0
        has_collision = collision.any(dim=1)

        usable = before & (costs != NO_INFORMATION)
        critical = usable & (costs >= self.cp.near_collision_cost)
        out = critical.float().sum(dim=1) * self.cp.critical_cost

        # remaining path clear and goal close: no repulsion
        valid = data.set_path_costs_if_not_set()
        path_clear = bool(valid.all()) if valid.numel() else True
        near_goal = self.near_goal(data, self.cp.near_goal_distance) and path_clear
        if not near_goal:
            repulsive = costs.float() * (usable & ~critical).float()
            out = out + repulsive.sum(dim=1)

        return torch.where(has_collision, torch.full_like(out, self.cp.collision_cost), out)

    def evaluate(self, data: CriticData) -> Optional[Tensor]:
        if not data.costmap.ready:
            self.debug = None
            return None

        costs, on_map = self._sample(data)
        collision = self._classify(data, costs, on_map)
        raw = self._accumulate(data, costs, collision)

        has_collision = collision.any(dim=1)
        if bool(has_collision.all()):
            data.fail_flag = True

        points = float(costs.shape[1])

        self.debug = {
            "collisions": int(has_collision.sum()),
            "batch": int(has_collision.shape[0]),
            "points": int(points),
            "mean_raw": float(raw.mean()),
        }
        return raw / points
