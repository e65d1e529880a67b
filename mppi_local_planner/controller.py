#!/usr/bin/env python3
from __future__ import annotations
import logging
import math
import threading
import time
from typing import List, Optional, Sequence

from mppi_local_planner.parameters import Parameter, Parameters, SetParametersResult
from mppi_local_planner.utils import clamp
from mppi_local_planner.exceptions import ControllerError, InvalidPoseError
from mppi_local_planner.core.state import Pose2D, Twist2D
from mppi_local_planner.core.costmap import CostmapGrid
from mppi_local_planner.core.motion_models import MOTION_MODELS, ControlConstraints, MotionModel
from mppi_local_planner.costs.critic_manager import CriticManager
from mppi_local_planner.opt.noise import NoiseGenerator
from mppi_local_planner.opt.optimizer import (
    ControlResult, CycleStatus, Optimizer, OptimizerSettings)
from mppi_local_planner.path_handler import PathHandler

__all__ = ["MPPIController", "ControlResult", "CycleStatus"]

# changing any of these needs new sample buffers / noise / model
_REBUILD_KEYS = {
    "batch_size", "time_steps", "model_dt", "motion_model", "vx_std", "vy_std", "wz_std",
    "regenerate_noises", "seed", "num_threads", "AckermannConstraints.min_turning_r",
}
_CONSTRAINT_KEYS = {"vx_max", "vx_min", "vy_max", "wz_max", "ax_max", "ax_min", "ay_max", "az_max"}
_SETTINGS_KEYS = {
    "iteration_count", "temperature", "gamma", "retry_attempt_limit", "shift_control_sequence",
    "use_sequence_filter", "convergence_tolerance", "solver_time_frac", "controller_frequency",
}


class MPPIController:
    """
    MPPI wiring:
      - owns the motion model (limits, dt) and the noise generator
      - owns the CriticManager (critic set + weights)
      - owns the Optimizer (N, T, temperature, warm start, history)
      - owns the PathHandler (plan pruning, cusps)
    Keeps all parameters in one place and updates them via a callback.
    """

    def __init__(self, params: Optional[Parameters] = None,
                 logger: Optional[logging.Logger] = None):
        self.p = params if params is not None else Parameters()
        self.logger = logger or logging.getLogger(__name__)
        self.active = False
        self.speed_limit = 0.0
        self.speed_limit_is_percentage = False
        self._ema_ms = 0.0
        self._lock = threading.Lock()
        self.configure()
        self.p.add_on_set_parameters_callback(self._on_param_update)

    # ---- parameters ----
    def _declare(self):
        p = self.p

        def decl(name, default):
            if not p.has_parameter(name):
                p.declare_parameter(name, default)

        # sampling / horizon
        decl("batch_size", 1000)
        decl("time_steps", 56)
        decl("model_dt", 0.05)
        decl("iteration_count", 1)
        decl("temperature", 0.3)
        decl("gamma", 0.015)
        decl("vx_std", 0.2)
        decl("vy_std", 0.2)
        decl("wz_std", 0.4)
        decl("regenerate_noises", True)
        decl("seed", -1)  # < 0: nondeterministic

        # limits
        decl("vx_max", 0.5)
        decl("vx_min", -0.35)
        decl("vy_max", 0.5)
        decl("wz_max", 1.9)
        decl("ax_max", 3.0)
        decl("ax_min", -3.0)
        decl("ay_max", 3.0)
        decl("az_max", 3.5)
        decl("motion_model", "DiffDrive")
        decl("AckermannConstraints.min_turning_r", 0.2)

        # cycle behaviour
        decl("controller_frequency", 20.0)
        decl("shift_control_sequence", False)
        decl("use_sequence_filter", True)
        decl("retry_attempt_limit", 1)
        decl("convergence_tolerance", 0.0)
        decl("solver_time_frac", 0.0)
        decl("num_threads", 1)

    def _value(self, name):
        return self.p.get_parameter(name).value

    def _checked(self, name: str, value, ok, fallback):
        if ok(value):
            return value
        self.logger.warning("Invalid %s=%r, using %r", name, value, fallback)
        return fallback

    def _read_parameters(self):
        chk = self._checked
        self.batch_size = int(chk("batch_size", int(self._value("batch_size")), lambda v: v > 0, 1000))
        self.time_steps = int(chk("time_steps", int(self._value("time_steps")), lambda v: v > 0, 56))
        self.model_dt = float(chk("model_dt", float(self._value("model_dt")), lambda v: v > 0.0, 0.05))
        self.iteration_count = int(chk("iteration_count", int(self._value("iteration_count")),
                                       lambda v: v > 0, 1))
        self.temperature = float(chk("temperature", float(self._value("temperature")),
                                     lambda v: v > 0.0, 0.3))
        self.gamma = float(chk("gamma", float(self._value("gamma")), lambda v: v >= 0.0, 0.015))
        self.vx_std = float(chk("vx_std", float(self._value("vx_std")), lambda v: v >= 0.0, 0.2))
        self.vy_std = float(chk("vy_std", float(self._value("vy_std")), lambda v: v >= 0.0, 0.2))
        self.wz_std = float(chk("wz_std", float(self._value("wz_std")), lambda v: v >= 0.0, 0.4))
        self.regenerate_noises = bool(self._value("regenerate_noises"))
        seed = int(self._value("seed"))
        self.seed = seed if seed >= 0 else None

        vx_max = float(self._value("vx_max"))
        vx_min = float(chk("vx_min", float(self._value("vx_min")), lambda v: v <= vx_max, -abs(vx_max)))
        self.base_constraints = ControlConstraints(
            vx_max=vx_max,
            vx_min=vx_min,
            vy_max=float(chk("vy_max", float(self._value("vy_max")), lambda v: v >= 0.0, 0.5)),
            wz_max=float(chk("wz_max", float(self._value("wz_max")), lambda v: v >= 0.0, 1.9)),
            ax_max=float(chk("ax_max", float(self._value("ax_max")), lambda v: v > 0.0, 3.0)),
            ax_min=float(chk("ax_min", float(self._value("ax_min")), lambda v: v < 0.0, -3.0)),
            ay_max=float(chk("ay_max", float(self._value("ay_max")), lambda v: v > 0.0, 3.0)),
            az_max=float(chk("az_max", float(self._value("az_max")), lambda v: v > 0.0, 3.5)),
        )
        self.motion_model_name = str(chk("motion_model", self._value("motion_model"),
                                         lambda v: v in MOTION_MODELS, "DiffDrive"))
        self.min_turning_r = float(self._value("AckermannConstraints.min_turning_r"))

        self.controller_frequency = float(chk("controller_frequency",
                                              float(self._value("controller_frequency")),
                                              lambda v: v > 0.0, 20.0))
        self.shift_control_sequence = bool(self._value("shift_control_sequence"))
        self.use_sequence_filter = bool(self._value("use_sequence_filter"))
        self.retry_attempt_limit = int(chk("retry_attempt_limit", int(self._value("retry_attempt_limit")),
                                           lambda v: v >= 0, 1))
        self.convergence_tolerance = float(self._value("convergence_tolerance"))
        self.solver_time_frac = float(chk("solver_time_frac", float(self._value("solver_time_frac")),
                                          lambda v: 0.0 <= v <= 1.0, 0.0))
        self.num_threads = int(self._value("num_threads"))

    def _settings(self) -> OptimizerSettings:
        return OptimizerSettings(
            batch_size=self.batch_size,
            time_steps=self.time_steps,
            model_dt=self.model_dt,
            iteration_count=self.iteration_count,
            temperature=self.temperature,
            gamma=self.gamma,
            retry_attempt_limit=self.retry_attempt_limit,
            shift_control_sequence=self.shift_control_sequence,
            use_sequence_filter=self.use_sequence_filter,
            convergence_tolerance=self.convergence_tolerance,
            time_budget=self.solver_time_frac / self.controller_frequency,
            num_threads=self.num_threads,
        )

    def _make_motion_model(self) -> MotionModel:
        cls = MOTION_MODELS[self.motion_model_name]
        if self.motion_model_name == "Ackermann":
            return cls(self._limited_constraints(), self.model_dt, self.min_turning_r)
        return cls(self._limited_constraints(), self.model_dt)

    def _build_optimizer(self):
        self.motion_model = self._make_motion_model()
        self.noise = NoiseGenerator(
            self.batch_size, self.time_steps, self.vx_std, self.wz_std, vy_std=self.vy_std,
            holonomic=self.motion_model.is_holonomic(),
            regenerate_noises=self.regenerate_noises, seed=self.seed)
        self.optimizer = Optimizer(self._settings(), self.motion_model,
                                   self.critic_manager, self.noise)

    # ---- lifecycle ----
    def configure(self):
        self._declare()
        self._read_parameters()
        self.path_handler = PathHandler(self.p)
        self.critic_manager = CriticManager(self.p)
        self._build_optimizer()
        self.logger.info(
            "Configured MPPI: model=%s N=%d T=%d dt=%.3f iters=%d critics=[%s]",
            self.motion_model_name, self.batch_size, self.time_steps, self.model_dt,
            self.iteration_count, ", ".join(self.critic_manager.critic_names()))

    def activate(self):
        self.active = True
        self.logger.info("MPPI controller activated")

    def deactivate(self):
        self.active = False
        self.logger.info("MPPI controller deactivated")

    def reset(self):
        """Forget the warm start and the issued-control history."""
        with self._lock:
            self.optimizer.reset()
        self.logger.info("MPPI controller reset")

    # ---- inputs ----
    def set_plan(self, poses: Sequence):
        with self._lock:
            self.path_handler.set_path(poses)

    def _limited_constraints(self) -> ControlConstraints:
        base = self.base_constraints
        if self.speed_limit <= 0.0:
            return ControlConstraints(**vars(base))

        if self.speed_limit_is_percentage:
            ratio = self.speed_limit / 100.0
        else:
            ratio = self.speed_limit / base.vx_max if base.vx_max > 0.0 else 1.0
        ratio = clamp(0.0, 1.0, ratio)
        limited = ControlConstraints(**vars(base))
        limited.vx_max = base.vx_max * ratio
        limited.vx_min = base.vx_min * ratio
        limited.vy_max = base.vy_max * ratio
        limited.wz_max = base.wz_max * ratio
        return limited

    def set_speed_limit(self, speed_limit: float, percentage: bool):
        """speed_limit <= 0 removes the limit; otherwise m/s or percent of vx_max."""
        with self._lock:
            self.speed_limit = float(speed_limit)
            self.speed_limit_is_percentage = bool(percentage)
            self.motion_model.c = self._limited_constraints()

    # ---- main cycle ----
    @staticmethod
    def _check_pose(pose: Pose2D, speed: Twist2D):
        values = (pose.x, pose.y, pose.theta, speed.vx, speed.vy, speed.wz)
        if not all(math.isfinite(v) for v in values):
            raise InvalidPoseError(f"non-finite robot state: pose={pose} speed={speed}")

    def compute_velocity_commands(self, pose: Pose2D, speed: Twist2D, costmap: CostmapGrid,
                                  goal: Optional[Pose2D] = None,
                                  cancel_event: Optional[threading.Event] = None) -> ControlResult:
        """
        One control cycle. Raises InvalidPoseError / InvalidPathError when the
        inputs are unusable; infeasible or cancelled cycles come back as a
        zero command with the matching status.
        """
        if not self.active:
            raise ControllerError("controller is not active")
        self._check_pose(pose, speed)

        start_wall = time.perf_counter()
        with self._lock:
            path = self.path_handler.transform_path(pose)
            # a pending cusp is the goal of this segment
            if goal is None or self.path_handler.inversion_locale > 0:
                goal = self.path_handler.goal()
            result = self.optimizer.eval_control(
                pose, speed, path, goal, costmap.snapshot(), cancel_event)

        self._log_timing(start_wall, result.status)
        return result

    def _log_timing(self, start_wall: float, status: CycleStatus):
        comp_ms = (time.perf_counter() - start_wall) * 1000.0
        budget_ms = 1000.0 / self.controller_frequency
        alpha = 0.2
        self._ema_ms = (1.0 - alpha) * self._ema_ms + alpha * comp_ms
        if comp_ms > budget_ms:
            self.logger.warning(
                "[WARN] cycle: compute=%.1f ms exceeds budget=%.0f ms (ema=%.1f ms, status=%s)",
                comp_ms, budget_ms, self._ema_ms, status.value)
        else:
            self.logger.debug(
                "[OK] cycle: compute=%.1f ms, budget=%.0f ms, ema=%.1f ms, status=%s",
                comp_ms, budget_ms, self._ema_ms, status.value)

    # ---- param callback ----
    def _on_param_update(self, params: List[Parameter]) -> SetParametersResult:
        rebuild = False
        with self._lock:
            self._read_parameters()
            for param in params:
                n = param.name
                if n in _REBUILD_KEYS:
                    rebuild = True
                elif n in _CONSTRAINT_KEYS:
                    self.motion_model.c = self._limited_constraints()
                elif n in _SETTINGS_KEYS:
                    self.optimizer.s = self._settings()
                elif n == "critics":
                    self.critic_manager.load_critics()
                else:
                    self.path_handler.on_parameter(n, param.value)

            self.critic_manager.on_parameters([p.name for p in params])
            if rebuild:
                self._build_optimizer()
                self.logger.info("Sampling buffers rebuilt after parameter update")

        return SetParametersResult(successful=True)
