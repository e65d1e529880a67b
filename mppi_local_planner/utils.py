#!/usr/bin/env python3
import math
import torch
from transforms3d.euler import quat2euler

from mppi_local_planner.core.state import Pose2D

M_PI = math.pi
M_PI_2 = math.pi / 2.0


def yaw_from_quat(x: float, y: float, z: float, w: float) -> float:
    """Return yaw [rad] from quaternion components (planar rotation only)."""
    return float(quat2euler([w, x, y, z], axes="sxyz")[2])


def make_pose(x: float, y: float, yaw: float) -> Pose2D:
    return Pose2D.from_xytheta(x, y, normalize_angle(float(yaw)))


# ---- angles ----
def normalize_angle(a: float) -> float:
    """Map any angle to (-pi, pi]."""
    if -M_PI < a <= M_PI:
        return a
    r = math.fmod(a + M_PI, 2.0 * M_PI)
    if r <= 0.0:
        r += 2.0 * M_PI
    out = r - M_PI
    # rounding can land exactly on -pi
    return M_PI if out <= -M_PI else out


def normalize_angles(a: torch.Tensor) -> torch.Tensor:
    """Batch version of normalize_angle."""
    r = torch.remainder(a + M_PI, 2.0 * M_PI)
    r = torch.where(r <= 0.0, r + 2.0 * M_PI, r)
    return torch.where((a > -M_PI) & (a <= M_PI), a, r - M_PI)


def shortest_angular_distance(from_angle: float, to_angle: float) -> float:
    """
    Signed minimal rotation that takes from_angle onto to_angle.
    |result| <= pi, and from_angle + result is equivalent to to_angle.
    """
    return normalize_angle(to_angle - from_angle)


def shortest_angular_distances(from_angles, to_angles) -> torch.Tensor:
    return normalize_angles(to_angles - from_angles)


# ---- bearings ----
def pose_point_angle(pose: Pose2D, point_x: float, point_y: float,
                     forward_preference: bool = True) -> float:
    """Angle between the pose heading and the direction to (point_x, point_y)."""
    yaw = math.atan2(point_y - pose.y, point_x - pose.x)

    # no preference: smaller of heading or reversed heading
    if not forward_preference:
        return min(
            abs(shortest_angular_distance(yaw, pose.theta)),
            abs(shortest_angular_distance(yaw, normalize_angle(pose.theta + M_PI))))

    return abs(shortest_angular_distance(yaw, pose.theta))


def pose_point_angle_with_yaw(pose: Pose2D, point_x: float, point_y: float,
                              point_yaw: float) -> float:
    """
    Like pose_point_angle, but the direction to the point is flipped by pi when it
    disagrees with point_yaw by more than a quarter turn.
    """
    yaw = math.atan2(point_y - pose.y, point_x - pose.x)
    if abs(shortest_angular_distance(yaw, point_yaw)) > M_PI_2:
        yaw = normalize_angle(yaw + M_PI)
    return abs(shortest_angular_distance(yaw, pose.theta))


def normalize_yaws_between_points(goal_yaw, yaws_between_points: torch.Tensor) -> torch.Tensor:
    """Flip yaws that point away from goal_yaw (scalar or [N]) by pi."""
    flip = torch.abs(normalize_angles(yaws_between_points - goal_yaw)) >= M_PI_2
    return torch.where(flip, normalize_angles(yaws_between_points + M_PI), yaws_between_points)


# ---- goal checks ----
def within_position_goal_tolerance(tolerance: float, robot: Pose2D, goal: Pose2D) -> bool:
    dx = goal.x - robot.x
    dy = goal.y - robot.y
    return dx * dx + dy * dy < tolerance * tolerance


def clamp(lower: float, upper: float, value: float) -> float:
    return min(upper, max(value, lower))
