#!/usr/bin/env python3
from __future__ import annotations
import logging
import math
from typing import List, Sequence
import numpy as np

from mppi_local_planner.core.state import Pose2D
from mppi_local_planner.core.path import Path, _pose_xyyaw, remove_after_first_inversion, to_tensor
from mppi_local_planner.exceptions import InvalidPathError
from mppi_local_planner.parameters import Parameters
from mppi_local_planner.utils import make_pose, shortest_angular_distance

logger = logging.getLogger(__name__)


class PathHandler:
    """
    Keeps the global plan and hands the optimizer the piece of it around the robot:
      - passed poses are pruned (closest pose searched near the start)
      - the output is cut at prune_distance of arc length
      - with enforce_path_inversion the plan ends at the first cusp until
        the robot reaches it
    """

    def __init__(self, params: Parameters):
        self.p = params

        def decl(name, default):
            if not self.p.has_parameter(name):
                self.p.declare_parameter(name, default)
            return self.p.get_parameter(name).value

        self.max_robot_pose_search_dist = float(decl("max_robot_pose_search_dist", 3.0))
        self.prune_distance = float(decl("prune_distance", 1.7))
        self.enforce_path_inversion = bool(decl("enforce_path_inversion", False))
        self.inversion_xy_tolerance = float(decl("inversion_xy_tolerance", 0.2))
        self.inversion_yaw_tolerance = float(decl("inversion_yaw_tolerance", 0.4))

        self.global_plan: List[Pose2D] = []
        self.global_plan_up_to_inversion: List[Pose2D] = []
        self.inversion_locale = 0

    def on_parameter(self, name: str, value) -> bool:
        """Apply one updated value; False if the name is not ours."""
        if name == "max_robot_pose_search_dist":
            self.max_robot_pose_search_dist = float(value)
        elif name == "prune_distance":
            self.prune_distance = float(value)
        elif name == "enforce_path_inversion":
            self.enforce_path_inversion = bool(value)
            self._split_at_inversion()
        elif name == "inversion_xy_tolerance":
            self.inversion_xy_tolerance = float(value)
        elif name == "inversion_yaw_tolerance":
            self.inversion_yaw_tolerance = float(value)
        else:
            return False
        return True

    # ---- plan ----
    def set_path(self, poses: Sequence):
        self.global_plan = [make_pose(*_pose_xyyaw(p)) for p in poses]
        self._split_at_inversion()
        logger.debug("New plan with %d poses (inversion at %d)",
                     len(self.global_plan), self.inversion_locale)

    def _split_at_inversion(self):
        self.global_plan_up_to_inversion = list(self.global_plan)
        self.inversion_locale = 0
        if self.enforce_path_inversion:
            self.inversion_locale = remove_after_first_inversion(self.global_plan_up_to_inversion)

    def get_plan(self) -> List[Pose2D]:
        return list(self.global_plan)

    def goal(self) -> Pose2D:
        """End of the plan currently tracked (the cusp while one is pending)."""
        if not self.global_plan_up_to_inversion:
            raise InvalidPathError("no plan set")
        return self.global_plan_up_to_inversion[-1]

    # ---- per cycle ----
    def _closest_index(self, robot: Pose2D) -> int:
        plan = self.global_plan_up_to_inversion
        xy = np.array([[p.x, p.y] for p in plan], dtype=np.float64)
        seg = np.hypot(np.diff(xy[:, 0]), np.diff(xy[:, 1]))
        travelled = np.concatenate([[0.0], np.cumsum(seg)])
        # search only up to the first pose beyond the search distance
        upper = int(np.searchsorted(travelled, self.max_robot_pose_search_dist, side="right"))
        upper = max(1, min(upper + 1, len(plan)))
        d = np.hypot(xy[:upper, 0] - robot.x, xy[:upper, 1] - robot.y)
        return int(np.argmin(d))

    def _prune_passed(self, count: int):
        if count <= 0:
            return
        del self.global_plan_up_to_inversion[:count]
        del self.global_plan[:count]
        if self.inversion_locale:
            self.inversion_locale -= count

    def is_within_inversion_tolerances(self, robot: Pose2D) -> bool:
        if not self.global_plan_up_to_inversion:
            return False
        cusp = self.global_plan_up_to_inversion[-1]
        dist = math.hypot(robot.x - cusp.x, robot.y - cusp.y)
        yaw = abs(shortest_angular_distance(robot.theta, cusp.theta))
        return dist <= self.inversion_xy_tolerance and yaw <= self.inversion_yaw_tolerance

    def transform_path(self, robot: Pose2D) -> Path:
        """Pruned local plan as a Path. Raises InvalidPathError without a plan."""
        if not self.global_plan_up_to_inversion:
            raise InvalidPathError("received an empty or unset plan")

        if (self.enforce_path_inversion and self.inversion_locale > 0
                and self.is_within_inversion_tolerances(robot)):
            logger.info("Cusp reached, continuing on the next path segment")
            del self.global_plan[:self.inversion_locale]
            self._split_at_inversion()

        closest = self._closest_index(robot)
        self._prune_passed(closest)

        plan = self.global_plan_up_to_inversion
        local = [plan[0]]
        dist = 0.0
        for prev, cur in zip(plan, plan[1:]):
            dist += math.hypot(cur.x - prev.x, cur.y - prev.y)
            if dist > self.prune_distance:
                break
            local.append(cur)
        return to_tensor(local)
