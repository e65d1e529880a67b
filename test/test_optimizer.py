#!/usr/bin/env python3
import threading
import pytest
import torch

from mppi_local_planner.parameters import Parameters
from mppi_local_planner.core.state import ControlSequence, ControlHistory, Pose2D, Twist2D, State
from mppi_local_planner.core.path import to_tensor
from mppi_local_planner.core.motion_models import (
    ControlConstraints, DiffDriveMotionModel, OmniMotionModel, AckermannMotionModel,
    integrate_velocities)
from mppi_local_planner.opt.noise import NoiseGenerator
from mppi_local_planner.exceptions import NoValidControlError
from mppi_local_planner.opt.optimizer import (
    CycleStatus, OptimizerPhase, importance_weights)

from conftest import make_optimizer, straight_poses

GOAL = Pose2D(10.0, 0.0, 0.0)


# ============================================================================
# Softmax update
# ============================================================================

class TestImportanceWeights:
    def test_normalized(self):
        w = importance_weights(torch.tensor([3.0, 1.0, 2.0]), 0.5)
        assert w.sum().item() == pytest.approx(1.0)
        assert torch.argmax(w).item() == 1

    def test_large_costs_do_not_underflow(self):
        w = importance_weights(torch.tensor([1e6, 1e6 + 1.0]), 1.0)
        assert torch.all(torch.isfinite(w))
        assert w.sum().item() == pytest.approx(1.0)

    def test_dominant_trajectory_wins(self):
        opt = make_optimizer(batch_size=4, time_steps=5)
        gen = torch.Generator().manual_seed(0)
        opt.state.cvx = torch.rand(4, 5, generator=gen) * 0.4
        opt.state.cvy = torch.zeros(4, 5)
        opt.state.cwz = torch.rand(4, 5, generator=gen) - 0.5
        opt.s.temperature = 1.0
        opt.update_control_sequence(torch.tensor([0.0, 100.0, 100.0, 100.0]))
        assert torch.allclose(opt.control_sequence.vx, opt.state.cvx[0], atol=1e-5)
        assert torch.allclose(opt.control_sequence.wz, opt.state.cwz[0], atol=1e-5)


# ============================================================================
# Noise
# ============================================================================

class TestNoise:
    def test_seed_reproduces_batch(self):
        a = NoiseGenerator(8, 6, vx_std=0.2, wz_std=0.3, seed=11)
        b = NoiseGenerator(8, 6, vx_std=0.2, wz_std=0.3, seed=11)
        assert torch.equal(a.noises_vx, b.noises_vx)
        assert torch.equal(a.noises_wz, b.noises_wz)

    def test_non_holonomic_has_no_lateral_noise(self):
        n = NoiseGenerator(8, 6, vx_std=0.2, wz_std=0.3, vy_std=0.5, seed=1)
        assert torch.count_nonzero(n.noises_vy) == 0

    def test_noised_controls_center_on_sequence(self):
        n = NoiseGenerator(2000, 4, vx_std=0.1, wz_std=0.1, seed=2)
        seq = ControlSequence()
        seq.reset(4)
        seq.vx += 0.3
        state = State()
        n.set_noised_controls(state, seq)
        assert state.cvx.mean().item() == pytest.approx(0.3, abs=0.01)

    def test_frozen_noise(self):
        n = NoiseGenerator(4, 3, vx_std=0.2, wz_std=0.3, regenerate_noises=False, seed=5)
        first = n.noises_vx.clone()
        seq = ControlSequence()
        seq.reset(3)
        n.set_noised_controls(State(), seq)
        assert torch.equal(n.noises_vx, first)


# ============================================================================
# Motion models
# ============================================================================

class TestMotionModels:
    def _state(self, cvx, cwz, cvy=0.0, n=2, t=5, speed=Twist2D()):
        s = State()
        s.reset(n, t)
        s.cvx = torch.full((n, t), cvx)
        s.cvy = torch.full((n, t), cvy)
        s.cwz = torch.full((n, t), cwz)
        s.speed = speed
        return s

    def test_clamp(self):
        model = DiffDriveMotionModel(ControlConstraints(), 0.05)
        s = self._state(2.0, -5.0, cvy=1.0)
        model.clamp_velocities(s.cvx, s.cvy, s.cwz)
        assert s.cvx.max().item() == pytest.approx(0.5)
        assert s.cwz.min().item() == pytest.approx(-1.9)
        assert torch.count_nonzero(s.cvy) == 0

    def test_omni_keeps_lateral(self):
        model = OmniMotionModel(ControlConstraints(), 0.05)
        s = self._state(0.1, 0.0, cvy=0.3)
        model.clamp_velocities(s.cvx, s.cvy, s.cwz)
        assert s.cvy.max().item() == pytest.approx(0.3)

    def test_ackermann_radius(self):
        model = AckermannMotionModel(ControlConstraints(), 0.05, min_turning_r=0.5)
        s = self._state(0.2, 1.5)
        model.clamp_velocities(s.cvx, s.cvy, s.cwz)
        assert s.cwz.max().item() == pytest.approx(0.4)

    def test_acceleration_limited(self):
        model = DiffDriveMotionModel(ControlConstraints(), 0.05)
        s = self._state(0.5, 0.0)
        model.predict(s)
        assert s.vx[0, 0].item() == pytest.approx(0.0)
        steps = torch.diff(s.vx[0])
        assert torch.all(steps <= 3.0 * 0.05 + 1e-6)

    def test_integration_straight_and_turn(self):
        vx = torch.full((1, 10), 1.0)
        zero = torch.zeros(1, 10)
        traj = integrate_velocities(vx, zero, zero, Pose2D(1.0, 2.0, 0.0), 0.1)
        assert traj.x[0, -1].item() == pytest.approx(2.0)
        assert traj.y[0, -1].item() == pytest.approx(2.0)

        wz = torch.full((1, 10), 1.0)
        traj = integrate_velocities(zero, zero, wz, Pose2D(0.0, 0.0, 0.0), 0.1)
        assert traj.yaws[0, -1].item() == pytest.approx(1.0, abs=1e-5)
        # first step moves along the initial heading
        traj = integrate_velocities(vx, zero, wz, Pose2D(0.0, 0.0, 0.0), 0.1)
        assert traj.y[0, 0].item() == pytest.approx(0.0)


# ============================================================================
# Cycle
# ============================================================================

class TestOptimizerCycle:
    def test_forward_on_straight_path(self, free_costmap):
        opt = make_optimizer(iteration_count=3)
        path = to_tensor(straight_poses(length=1.7))
        result = opt.eval_control(Pose2D(0, 0, 0), Twist2D(), path, GOAL, free_costmap)
        assert result.status == CycleStatus.OK
        assert result.command.vx > 0.0
        assert result.optimal_trajectory.shape == (20, 3)
        assert result.costs.shape == (50,)
        assert opt.phase == OptimizerPhase.DONE

    def test_same_seed_same_command(self, free_costmap):
        path = to_tensor(straight_poses(length=1.7))
        a = make_optimizer(seed=42).eval_control(Pose2D(0, 0, 0), Twist2D(), path, GOAL, free_costmap)
        b = make_optimizer(seed=42).eval_control(Pose2D(0, 0, 0), Twist2D(), path, GOAL, free_costmap)
        assert a.command == b.command

    def test_infeasible_returns_stop(self, lethal_costmap):
        opt = make_optimizer(retry_attempt_limit=2)
        path = to_tensor(straight_poses(length=1.7))
        result = opt.eval_control(Pose2D(0, 0, 0), Twist2D(), path, GOAL, lethal_costmap)
        assert result.status == CycleStatus.NO_VALID_TRAJECTORIES
        assert result.command.is_zero()
        assert torch.count_nonzero(opt.control_sequence.vx) == 0
        with pytest.raises(NoValidControlError):
            result.raise_for_status()

    def test_cancel_keeps_warm_start(self, free_costmap):
        opt = make_optimizer(iteration_count=5)
        path = to_tensor(straight_poses(length=1.7))
        opt.eval_control(Pose2D(0, 0, 0), Twist2D(), path, GOAL, free_costmap)
        before = opt.control_sequence.clone()
        cancel = threading.Event()
        cancel.set()
        result = opt.eval_control(Pose2D(0, 0, 0), Twist2D(), path, GOAL, free_costmap, cancel)
        assert result.status == CycleStatus.CANCELLED
        assert result.command.is_zero()
        assert result.iterations == 1
        assert torch.equal(opt.control_sequence.vx, before.vx)

    def test_convergence_stops_early(self, free_costmap):
        opt = make_optimizer(iteration_count=50, convergence_tolerance=10.0)
        path = to_tensor(straight_poses(length=1.7))
        result = opt.eval_control(Pose2D(0, 0, 0), Twist2D(), path, GOAL, free_costmap)
        assert result.iterations == 1

    def test_warm_start_shift(self, free_costmap):
        opt = make_optimizer(use_sequence_filter=False)
        path = to_tensor(straight_poses(length=1.7))
        opt.eval_control(Pose2D(0, 0, 0), Twist2D(), path, GOAL, free_costmap)
        seq = opt.control_sequence
        assert seq.vx[-1].item() == pytest.approx(seq.vx[-2].item())

    def test_history_updated_each_cycle(self, free_costmap):
        opt = make_optimizer()
        path = to_tensor(straight_poses(length=1.7))
        result = opt.eval_control(Pose2D(0, 0, 0), Twist2D(), path, GOAL, free_costmap)
        assert opt.history.snapshot()[-1] == result.command

    def test_reset_clears_history(self, free_costmap):
        opt = make_optimizer()
        path = to_tensor(straight_poses(length=1.7))
        opt.eval_control(Pose2D(0, 0, 0), Twist2D(), path, GOAL, free_costmap)
        opt.reset()
        assert all(c.is_zero() for c in opt.history.snapshot())
        assert torch.count_nonzero(opt.control_sequence.vx) == 0


class TestHolonomicCycle:
    def test_lateral_channel_sampled_and_emitted(self, free_costmap):
        opt = make_optimizer(holonomic=True, iteration_count=2)
        path = to_tensor(straight_poses(length=1.7))
        result = opt.eval_control(Pose2D(0, 0, 0), Twist2D(), path, GOAL, free_costmap)
        assert result.status == CycleStatus.OK
        assert torch.count_nonzero(opt.state.cvy) > 0
        assert torch.count_nonzero(opt.control_sequence.vy) > 0
        assert result.command.vy != 0.0

    def test_control_cost_includes_lateral_term(self):
        def cost(holonomic):
            opt = make_optimizer(batch_size=2, time_steps=3, holonomic=holonomic)
            opt.control_sequence.vy = torch.full((3,), 0.1)
            opt.state.cvx = torch.zeros(2, 3)
            opt.state.cwz = torch.zeros(2, 3)
            opt.state.cvy = torch.full((2, 3), 0.3)
            return opt._control_cost()

        # gamma / std^2 * sum_t(nominal * noise) = 0.015 / 0.09 * 3 * 0.1 * 0.2
        assert cost(True).tolist() == pytest.approx([0.01, 0.01])
        assert torch.count_nonzero(cost(False)) == 0


class TestShiftedSequence:
    def test_emits_second_filtered_entry(self, free_costmap):
        opt = make_optimizer(shift_control_sequence=True, iteration_count=2)
        path = to_tensor(straight_poses(length=1.7))
        result = opt.eval_control(Pose2D(0, 0, 0), Twist2D(), path, GOAL, free_costmap)
        assert result.status == CycleStatus.OK
        # entry 1 of the filtered sequence becomes entry 0 after the warm-start shift
        assert opt.control_sequence.control(0) == result.command
        assert opt.history.snapshot()[-1] == result.command
        seq = opt.control_sequence
        assert seq.vx[-1].item() == pytest.approx(seq.vx[-2].item())
        assert len(seq) == 20

    def test_next_cycle_starts_from_shifted_sequence(self, free_costmap):
        opt = make_optimizer(shift_control_sequence=True)
        path = to_tensor(straight_poses(length=1.7))
        first = opt.eval_control(Pose2D(0, 0, 0), Twist2D(), path, GOAL, free_costmap)
        second = opt.eval_control(Pose2D(0, 0, 0), first.command, path, GOAL, free_costmap)
        assert second.status == CycleStatus.OK
        assert opt.history.snapshot()[-2:] == [first.command, second.command]
