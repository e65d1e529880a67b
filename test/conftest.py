#!/usr/bin/env python3
"""Shared fixtures: plans, costmaps, parameter sets and a seeded optimizer."""
import numpy as np
import pytest
import torch

from mppi_local_planner.parameters import Parameters
from mppi_local_planner.core.state import Pose2D, Twist2D, State, Trajectories
from mppi_local_planner.core.path import to_tensor
from mppi_local_planner.core.costmap import CostmapGrid, LETHAL_OBSTACLE
from mppi_local_planner.core.critic_data import CriticData
from mppi_local_planner.core.motion_models import (
    ControlConstraints, DiffDriveMotionModel, OmniMotionModel)
from mppi_local_planner.costs.critic_manager import CriticManager
from mppi_local_planner.opt.noise import NoiseGenerator
from mppi_local_planner.opt.optimizer import Optimizer, OptimizerSettings


# ============================================================================
# Geometry
# ============================================================================

def straight_poses(length=10.0, spacing=0.1, yaw=0.0):
    n = int(round(length / spacing)) + 1
    return [Pose2D(i * spacing, 0.0, yaw) for i in range(n)]


def cusp_poses():
    """Ten poses: forward to x=0.5 (index 5), then back toward the start."""
    fwd = [Pose2D(0.1 * i, 0.0, 0.0) for i in range(6)]
    back = [Pose2D(0.5 - 0.1 * i, 0.0, 0.0) for i in range(1, 5)]
    return fwd + back


@pytest.fixture
def straight_plan():
    return straight_poses()


@pytest.fixture
def cusp_plan():
    return cusp_poses()


# ============================================================================
# Costmaps
# ============================================================================

@pytest.fixture
def free_costmap():
    """16 m x 8 m free map at 0.1 m, origin (-3, -4)."""
    return CostmapGrid.from_array(np.zeros((80, 160)), 0.1, -3.0, -4.0)


@pytest.fixture
def lethal_costmap():
    data = np.full((80, 160), LETHAL_OBSTACLE)
    return CostmapGrid.from_array(data, 0.1, -3.0, -4.0)


# ============================================================================
# Parameters / optimizer
# ============================================================================

@pytest.fixture
def small_params():
    return Parameters.from_dict({
        "batch_size": 50,
        "time_steps": 20,
        "model_dt": 0.05,
        "iteration_count": 1,
        "temperature": 0.3,
        "seed": 7,
    })


def make_optimizer(batch_size=50, time_steps=20, seed=3, params=None, holonomic=False,
                   **settings):
    s = OptimizerSettings(batch_size=batch_size, time_steps=time_steps, **settings)
    if holonomic:
        model = OmniMotionModel(ControlConstraints(), s.model_dt)
    else:
        model = DiffDriveMotionModel(ControlConstraints(), s.model_dt)
    noise = NoiseGenerator(batch_size, time_steps, vx_std=0.2, wz_std=0.4,
                           vy_std=0.3 if holonomic else 0.0, holonomic=holonomic, seed=seed)
    critics = CriticManager(params if params is not None else Parameters())
    return Optimizer(s, model, critics, noise)


@pytest.fixture
def optimizer():
    return make_optimizer()


def make_critic_data(trajectories: Trajectories, path_poses, goal: Pose2D, costmap,
                     pose=Pose2D(0.0, 0.0, 0.0), model=None, state=None):
    if state is None:
        state = State()
        state.reset(trajectories.batch_size, trajectories.time_steps)
        state.pose = pose
        state.speed = Twist2D()
    return CriticData(
        state=state, trajectories=trajectories, path=to_tensor(path_poses), goal=goal,
        model_dt=0.05, costmap=costmap, motion_model=model,
        costs=torch.zeros(trajectories.batch_size))


def straight_trajectories(end_xs, time_steps=10, y=0.0):
    """One row per end x, evenly spaced from 0 along +x, constant y."""
    end_xs = torch.tensor(end_xs, dtype=torch.float32)
    frac = torch.arange(1, time_steps + 1, dtype=torch.float32) / time_steps
    traj = Trajectories()
    traj.x = end_xs.unsqueeze(1) * frac.unsqueeze(0)
    traj.y = torch.full_like(traj.x, y)
    traj.yaws = torch.zeros_like(traj.x)
    return traj
