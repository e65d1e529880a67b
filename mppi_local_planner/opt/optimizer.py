#!/usr/bin/env python3
from __future__ import annotations
import enum
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Optional, Tuple
import torch

from mppi_local_planner.core.state import (
    Control, ControlHistory, ControlSequence, Pose2D, State, Trajectories, Twist2D)
from mppi_local_planner.core.path import Path
from mppi_local_planner.core.costmap import CostmapGrid
from mppi_local_planner.core.critic_data import CriticData
from mppi_local_planner.core.motion_models import MotionModel, integrate_velocities
from mppi_local_planner.costs.critic_manager import CriticManager
from mppi_local_planner.opt.noise import NoiseGenerator
from mppi_local_planner.opt.sequence_filter import savitzky_golay_filter
from mppi_local_planner.exceptions import NoValidControlError

logger = logging.getLogger(__name__)


class CycleStatus(enum.Enum):
    OK = "ok"
    NO_VALID_TRAJECTORIES = "no_valid_trajectories"
    CANCELLED = "cancelled"


class OptimizerPhase(enum.Enum):
    IDLE = "idle"
    SAMPLING = "sampling"
    SCORING = "scoring"
    UPDATING = "updating"
    CONVERGED = "converged"
    ITERATION_LIMIT = "iteration_limit"
    FILTERING = "filtering"
    DONE = "done"


@dataclass
class OptimizerSettings:
    batch_size: int = 1000
    time_steps: int = 56
    model_dt: float = 0.05
    iteration_count: int = 1
    temperature: float = 0.3
    gamma: float = 0.015
    retry_attempt_limit: int = 1
    shift_control_sequence: bool = False
    use_sequence_filter: bool = True
    convergence_tolerance: float = 0.0  # 0 disables the early exit
    time_budget: float = 0.0            # seconds, 0 disables
    num_threads: int = 1


@dataclass
class ControlResult:
    command: Control = field(default_factory=Twist2D)
    status: CycleStatus = CycleStatus.OK
    trajectories: Optional[Trajectories] = None
    costs: Optional[torch.Tensor] = None
    optimal_trajectory: Optional[torch.Tensor] = None  # [T, 3]
    iterations: int = 0

    def raise_for_status(self):
        """For callers that treat an infeasible cycle as an error."""
        if self.status == CycleStatus.NO_VALID_TRAJECTORIES:
            raise NoValidControlError("no valid trajectory found in this cycle")


def importance_weights(costs: torch.Tensor, temperature: float) -> torch.Tensor:
    """Softmax of -costs / temperature, shifted by the minimum cost for stability."""
    shifted = costs - torch.min(costs)
    exponents = torch.exp(-shifted / temperature)
    return exponents / torch.sum(exponents)


class Optimizer:
    """
    Sampling MPC loop:
      sample noised controls -> rollout -> critics -> softmax-weighted update,
    repeated iteration_count times, then filtered and dispatched.
    """
    def __init__(self, settings: OptimizerSettings, motion_model: MotionModel,
                 critic_manager: CriticManager, noise: NoiseGenerator):
        self.s = settings
        self.model = motion_model
        self.critics = critic_manager
        self.noise = noise
        self.history = ControlHistory()
        self.control_sequence = ControlSequence()
        self.state = State()
        self.trajectories = Trajectories()
        self.costs = torch.zeros(0)
        self.phase = OptimizerPhase.IDLE
        self.data: Optional[CriticData] = None
        if self.s.num_threads > 0:
            torch.set_num_threads(int(self.s.num_threads))
        self.reset()

    def reset(self):
        """Fresh nominal sequence and history (behaviour restart)."""
        self.init_warm_start()
        self.history.reset()
        self.phase = OptimizerPhase.IDLE

    def init_warm_start(self):
        self.control_sequence.reset(self.s.time_steps)
        self.state.reset(self.s.batch_size, self.s.time_steps)
        self.trajectories.reset(self.s.batch_size, self.s.time_steps)
        self.costs = torch.zeros(self.s.batch_size)

    # ---- cycle ----
    def _prepare(self, pose: Pose2D, speed: Twist2D, path: Path, goal: Pose2D,
                 costmap: CostmapGrid):
        self.state.pose = pose
        self.state.speed = speed
        self.data = CriticData(
            state=self.state, trajectories=self.trajectories, path=path, goal=goal,
            model_dt=self.s.model_dt, costmap=costmap, motion_model=self.model,
            costs=torch.zeros(self.s.batch_size))

    def _generate_noised_trajectories(self):
        self.phase = OptimizerPhase.SAMPLING
        self.noise.set_noised_controls(self.state, self.control_sequence)
        self.model.clamp_velocities(self.state.cvx, self.state.cvy, self.state.cwz)
        self.model.predict(self.state)
        self.trajectories = integrate_velocities(
            self.state.vx, self.state.vy, self.state.wz, self.state.pose, self.s.model_dt)

    def _score(self) -> bool:
        self.phase = OptimizerPhase.SCORING
        data = self.data
        data.trajectories = self.trajectories
        data.costs = torch.zeros(self.s.batch_size)
        data.fail_flag = False
        self.critics.eval_trajectories_scores(data)
        self.costs = data.costs
        return not data.fail_flag

    def _control_cost(self) -> torch.Tensor:
        """Importance-sampling term coupling the nominal sequence with the noise."""
        seq = self.control_sequence
        out = torch.zeros(self.s.batch_size)
        channels = [(self.state.cvx, seq.vx, self.noise.vx_std),
                    (self.state.cwz, seq.wz, self.noise.wz_std)]
        if self.model.is_holonomic():
            channels.append((self.state.cvy, seq.vy, self.noise.vy_std))
        for sampled, nominal, std in channels:
            if std > 0.0:
                bounded_noise = sampled - nominal.unsqueeze(0)
                out += (self.s.gamma / (std * std)) * (nominal.unsqueeze(0) * bounded_noise).sum(dim=1)
        return out

    def update_control_sequence(self, costs: torch.Tensor):
        """New nominal sequence = importance-weighted mean of the sampled sequences."""
        self.phase = OptimizerPhase.UPDATING
        weights = importance_weights(costs, self.s.temperature).unsqueeze(1)
        seq = self.control_sequence
        seq.vx = (self.state.cvx * weights).sum(dim=0)
        seq.wz = (self.state.cwz * weights).sum(dim=0)
        if self.model.is_holonomic():
            seq.vy = (self.state.cvy * weights).sum(dim=0)
        else:
            seq.vy = torch.zeros_like(seq.vx)
        # keep the nominal itself within bounds
        vx, vy, wz = seq.vx.unsqueeze(0), seq.vy.unsqueeze(0), seq.wz.unsqueeze(0)
        self.model.clamp_velocities(vx, vy, wz)
        seq.vx, seq.vy, seq.wz = vx[0], vy[0], wz[0]

    def _optimize(self, cancel_event: Optional[threading.Event]) -> Tuple[CycleStatus, int]:
        t0 = time.perf_counter()
        for i in range(self.s.iteration_count):
            previous = self.control_sequence.clone()
            self._generate_noised_trajectories()
            if not self._score():
                return CycleStatus.NO_VALID_TRAJECTORIES, i + 1
            self.update_control_sequence(self.costs + self._control_cost())

            if cancel_event is not None and cancel_event.is_set():
                return CycleStatus.CANCELLED, i + 1

            if self.s.convergence_tolerance > 0.0:
                delta = torch.max(torch.abs(self.control_sequence.as_tensor() - previous.as_tensor()))
                if float(delta) < self.s.convergence_tolerance:
                    self.phase = OptimizerPhase.CONVERGED
                    return CycleStatus.OK, i + 1

            if self.s.time_budget > 0.0 and (time.perf_counter() - t0) > self.s.time_budget:
                logger.warning("Optimizer time budget %.3f s exhausted after %d iterations",
                               self.s.time_budget, i + 1)
                return CycleStatus.OK, i + 1

        self.phase = OptimizerPhase.ITERATION_LIMIT
        return CycleStatus.OK, self.s.iteration_count

    def eval_control(self, pose: Pose2D, speed: Twist2D, path: Path, goal: Pose2D,
                     costmap: CostmapGrid,
                     cancel_event: Optional[threading.Event] = None) -> ControlResult:
        warm_start = self.control_sequence.clone()
        self._prepare(pose, speed, path, goal, costmap)

        attempt = 0
        while True:
            status, iterations = self._optimize(cancel_event)
            if status != CycleStatus.NO_VALID_TRAJECTORIES or attempt >= self.s.retry_attempt_limit:
                break
            attempt += 1
            logger.warning("No valid trajectories, retrying from a reset sequence (%d/%d)",
                           attempt, self.s.retry_attempt_limit)
            self.init_warm_start()
            self._prepare(pose, speed, path, goal, costmap)

        if status == CycleStatus.CANCELLED:
            # drop everything this cycle produced
            self.control_sequence = warm_start
            self.history.push(Twist2D())
            self.phase = OptimizerPhase.DONE
            return ControlResult(status=status, iterations=iterations)

        if status == CycleStatus.NO_VALID_TRAJECTORIES:
            logger.warning("All sampled trajectories are in collision, stopping")
            self.init_warm_start()
            self.history.push(Twist2D())
            self.phase = OptimizerPhase.DONE
            return ControlResult(status=status, trajectories=self.trajectories,
                                 costs=self.costs, iterations=iterations)

        offset = 1 if self.s.shift_control_sequence else 0
        if self.s.use_sequence_filter:
            self.phase = OptimizerPhase.FILTERING
            savitzky_golay_filter(self.control_sequence, self.history,
                                  self.s.shift_control_sequence)

        command = self.control_sequence.control(offset)
        optimal = self.optimized_trajectory()
        self.control_sequence.shift()
        self.phase = OptimizerPhase.DONE
        return ControlResult(command=command, status=CycleStatus.OK,
                             trajectories=self.trajectories, costs=self.costs,
                             optimal_trajectory=optimal, iterations=iterations)

    def optimized_trajectory(self) -> torch.Tensor:
        """Rollout of the current nominal sequence, [T, 3]."""
        seq = self.control_sequence
        traj = integrate_velocities(seq.vx.unsqueeze(0), seq.vy.unsqueeze(0),
                                    seq.wz.unsqueeze(0), self.state.pose, self.s.model_dt)
        return traj.as_tensor()[0]
