#!/usr/bin/env python3
"""
End-to-end tests of MPPIController: one cycle at a time and closed loop
against a unicycle simulation.
"""
import logging
import math
import os
import threading
import pytest

from mppi_local_planner.parameters import Parameters
from mppi_local_planner.core.state import Pose2D, Twist2D
from mppi_local_planner.exceptions import ControllerError, InvalidPathError, InvalidPoseError
from mppi_local_planner.controller import MPPIController, CycleStatus

from conftest import straight_poses, cusp_poses

CONFIG = os.path.join(os.path.dirname(__file__), "..", "config", "mppi_params.yaml")


def make_controller(**overrides):
    values = {"batch_size": 50, "time_steps": 20, "model_dt": 0.05, "seed": 7}
    values.update(overrides)
    ctrl = MPPIController(Parameters(values))
    ctrl.activate()
    return ctrl


def step(pose: Pose2D, cmd: Twist2D, dt: float) -> Pose2D:
    c, s = math.cos(pose.theta), math.sin(pose.theta)
    return Pose2D(pose.x + (cmd.vx * c - cmd.vy * s) * dt,
                  pose.y + (cmd.vx * s + cmd.vy * c) * dt,
                  pose.theta + cmd.wz * dt)


# ============================================================================
# Single cycle
# ============================================================================

class TestCycle:
    def test_straight_line_first_command(self, free_costmap, straight_plan):
        ctrl = make_controller(iteration_count=3)
        ctrl.set_plan(straight_plan)
        result = ctrl.compute_velocity_commands(Pose2D(0, 0, 0), Twist2D(), free_costmap)
        assert result.status == CycleStatus.OK
        assert result.command.vx > 0.0
        assert abs(result.command.wz) < 0.3
        assert result.trajectories.batch_size == 50

    def test_lethal_everywhere_stops(self, lethal_costmap, straight_plan):
        ctrl = make_controller()
        ctrl.set_plan(straight_plan)
        result = ctrl.compute_velocity_commands(Pose2D(0, 0, 0), Twist2D(0.3, 0, 0), lethal_costmap)
        assert result.status == CycleStatus.NO_VALID_TRAJECTORIES
        assert result.command == Twist2D()

    def test_cusp_truncates_plan(self, free_costmap):
        ctrl = make_controller(enforce_path_inversion=True)
        ctrl.set_plan(cusp_poses())
        assert ctrl.path_handler.inversion_locale == 6
        assert len(ctrl.path_handler.global_plan_up_to_inversion) == 6
        result = ctrl.compute_velocity_commands(Pose2D(0, 0, 0), Twist2D(), free_costmap)
        assert result.status == CycleStatus.OK
        assert ctrl.path_handler.goal().x == pytest.approx(0.5)

    def test_cancelled_cycle(self, free_costmap, straight_plan):
        ctrl = make_controller(iteration_count=4)
        ctrl.set_plan(straight_plan)
        cancel = threading.Event()
        cancel.set()
        result = ctrl.compute_velocity_commands(Pose2D(0, 0, 0), Twist2D(), free_costmap,
                                                cancel_event=cancel)
        assert result.status == CycleStatus.CANCELLED
        assert result.command.is_zero()

    def test_no_plan(self, free_costmap):
        ctrl = make_controller()
        with pytest.raises(InvalidPathError):
            ctrl.compute_velocity_commands(Pose2D(0, 0, 0), Twist2D(), free_costmap)

    def test_bad_pose(self, free_costmap, straight_plan):
        ctrl = make_controller()
        ctrl.set_plan(straight_plan)
        with pytest.raises(InvalidPoseError):
            ctrl.compute_velocity_commands(Pose2D(float("nan"), 0, 0), Twist2D(), free_costmap)

    def test_inactive(self, free_costmap, straight_plan):
        ctrl = make_controller()
        ctrl.deactivate()
        ctrl.set_plan(straight_plan)
        with pytest.raises(ControllerError):
            ctrl.compute_velocity_commands(Pose2D(0, 0, 0), Twist2D(), free_costmap)

    def test_reset(self, free_costmap, straight_plan):
        ctrl = make_controller()
        ctrl.set_plan(straight_plan)
        ctrl.compute_velocity_commands(Pose2D(0, 0, 0), Twist2D(), free_costmap)
        ctrl.reset()
        assert all(c.is_zero() for c in ctrl.optimizer.history.snapshot())


# ============================================================================
# Closed loop
# ============================================================================

class TestClosedLoop:
    def test_reaches_goal_on_straight_line(self, free_costmap, straight_plan):
        ctrl = make_controller(iteration_count=2)
        ctrl.set_plan(straight_plan)
        goal = Pose2D(10.0, 0.0, 0.0)
        pose, speed = Pose2D(0.0, 0.0, 0.0), Twist2D()
        best = float("inf")

        for _ in range(400):
            result = ctrl.compute_velocity_commands(pose, speed, free_costmap)
            assert result.status == CycleStatus.OK
            pose = step(pose, result.command, 0.1)
            speed = result.command
            assert abs(pose.y) < 0.5
            best = min(best, math.hypot(goal.x - pose.x, goal.y - pose.y))
            if best < 0.25:
                break

        assert best < 0.25


# ============================================================================
# Configuration
# ============================================================================

class TestConfiguration:
    def test_invalid_values_are_replaced(self, caplog):
        caplog.set_level(logging.WARNING)
        ctrl = make_controller(model_dt=-1.0, temperature=0.0, ax_max=-2.0, ax_min=1.0,
                               motion_model="Hovercraft", critics=["Bogus", "GoalCritic"])
        assert ctrl.model_dt == pytest.approx(0.05)
        assert ctrl.temperature == pytest.approx(0.3)
        assert ctrl.base_constraints.ax_max == pytest.approx(3.0)
        assert ctrl.base_constraints.ax_min == pytest.approx(-3.0)
        assert ctrl.motion_model_name == "DiffDrive"
        assert ctrl.critic_manager.critic_names() == ["GoalCritic"]
        assert any("Invalid model_dt" in r.getMessage() for r in caplog.records)

    def test_shipped_yaml(self):
        ctrl = MPPIController(Parameters.from_yaml(CONFIG, node_name="mppi_local_planner"))
        assert ctrl.batch_size == 1000
        assert len(ctrl.critic_manager.critic_names()) == 8

    def test_ackermann_model(self):
        ctrl = make_controller(motion_model="Ackermann")
        ctrl.p.set_parameters({"AckermannConstraints.min_turning_r": 0.7})
        assert ctrl.motion_model.min_turning_r == pytest.approx(0.7)

    def test_dynamic_updates(self):
        ctrl = make_controller()
        ctrl.p.set_parameters({"temperature": 0.5})
        assert ctrl.optimizer.s.temperature == pytest.approx(0.5)

        ctrl.p.set_parameters({"vx_max": 0.3})
        assert ctrl.motion_model.c.vx_max == pytest.approx(0.3)

        ctrl.p.set_parameters({"batch_size": 30})
        assert ctrl.optimizer.s.batch_size == 30
        assert ctrl.noise.noises_vx.shape == (30, 20)

        ctrl.p.set_parameters({"prune_distance": 2.5})
        assert ctrl.path_handler.prune_distance == pytest.approx(2.5)

        ctrl.p.set_parameters({"GoalCritic.enabled": False})
        goal_critic = [c for c in ctrl.critic_manager.critics if c.name == "GoalCritic"][0]
        assert not goal_critic.enabled

    def test_speed_limit(self):
        ctrl = make_controller()
        ctrl.set_speed_limit(50.0, True)
        assert ctrl.motion_model.c.vx_max == pytest.approx(0.25)
        ctrl.set_speed_limit(0.2, False)
        assert ctrl.motion_model.c.vx_max == pytest.approx(0.2)
        assert ctrl.motion_model.c.wz_max == pytest.approx(1.9 * 0.4)
        ctrl.set_speed_limit(0.0, False)
        assert ctrl.motion_model.c.vx_max == pytest.approx(0.5)


# ============================================================================
# Concurrency
# ============================================================================

class TestCycleLock:
    def _blocked_while_cycle_runs(self, ctrl, fn, check=None):
        ctrl._lock.acquire()
        try:
            worker = threading.Thread(target=fn)
            worker.start()
            worker.join(timeout=0.2)
            assert worker.is_alive()
            if check is not None:
                check()
        finally:
            ctrl._lock.release()
        worker.join(timeout=5.0)
        assert not worker.is_alive()

    def test_set_plan_waits_for_cycle(self, straight_plan):
        ctrl = make_controller()
        ctrl.set_plan(straight_plan)
        replacement = straight_poses(length=1.0)

        def untouched():
            assert len(ctrl.path_handler.get_plan()) == len(straight_plan)

        self._blocked_while_cycle_runs(ctrl, lambda: ctrl.set_plan(replacement), untouched)
        assert len(ctrl.path_handler.get_plan()) == len(replacement)

    def test_speed_limit_waits_for_cycle(self):
        ctrl = make_controller()
        self._blocked_while_cycle_runs(ctrl, lambda: ctrl.set_speed_limit(50.0, True))
        assert ctrl.motion_model.c.vx_max == pytest.approx(0.25)

    def test_parameter_update_waits_for_cycle(self):
        ctrl = make_controller()
        self._blocked_while_cycle_runs(ctrl, lambda: ctrl.p.set_parameters({"temperature": 0.5}))
        assert ctrl.temperature == pytest.approx(0.5)
        assert ctrl.optimizer.s.temperature == pytest.approx(0.5)
