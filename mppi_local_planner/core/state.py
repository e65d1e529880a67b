#!/usr/bin/env python3
from __future__ import annotations
import threading
from dataclasses import dataclass, field
from typing import List
import torch

Tensor = torch.Tensor


@dataclass(frozen=True)
class Pose2D:
    """Robot configuration in the plane."""
    x: float
    y: float
    theta: float

    @staticmethod
    def from_xytheta(x: float, y: float, theta: float) -> "Pose2D":
        return Pose2D(float(x), float(y), float(theta))

    def as_tensor(self) -> Tensor:
        return torch.tensor([self.x, self.y, self.theta], dtype=torch.float32)


@dataclass(frozen=True)
class Twist2D:
    """Velocity command. vy stays 0 for non-holonomic models."""
    vx: float = 0.0
    vy: float = 0.0
    wz: float = 0.0

    def is_zero(self) -> bool:
        return self.vx == 0.0 and self.vy == 0.0 and self.wz == 0.0


# emitted command of a cycle
Control = Twist2D


@dataclass
class ControlSequence:
    """Nominal plan, one entry per time step. Each channel is a [T] tensor."""
    vx: Tensor = field(default_factory=lambda: torch.zeros(0))
    vy: Tensor = field(default_factory=lambda: torch.zeros(0))
    wz: Tensor = field(default_factory=lambda: torch.zeros(0))

    def reset(self, time_steps: int):
        self.vx = torch.zeros(time_steps, dtype=torch.float32)
        self.vy = torch.zeros(time_steps, dtype=torch.float32)
        self.wz = torch.zeros(time_steps, dtype=torch.float32)

    def __len__(self) -> int:
        return int(self.vx.shape[0])

    def control(self, idx: int) -> Twist2D:
        return Twist2D(float(self.vx[idx]), float(self.vy[idx]), float(self.wz[idx]))

    def shift(self):
        """Drop the first entry and duplicate the last one (warm start)."""
        for ch in (self.vx, self.vy, self.wz):
            if ch.shape[0] > 1:
                ch[:-1] = ch[1:].clone()

    def clone(self) -> "ControlSequence":
        return ControlSequence(self.vx.clone(), self.vy.clone(), self.wz.clone())

    def as_tensor(self) -> Tensor:
        """[T, 3] view of (vx, vy, wz)."""
        return torch.stack([self.vx, self.vy, self.wz], dim=1)


class ControlHistory:
    """
    Last four issued controls, oldest first. Bridges the sequence filter's
    left edge across cycles. Replaced as a whole under a lock.
    """
    SIZE = 4

    def __init__(self):
        self._lock = threading.Lock()
        self._controls: List[Twist2D] = [Twist2D()] * self.SIZE

    def reset(self):
        with self._lock:
            self._controls = [Twist2D()] * self.SIZE

    def snapshot(self) -> List[Twist2D]:
        with self._lock:
            return list(self._controls)

    def push(self, control: Twist2D):
        with self._lock:
            self._controls = self._controls[1:] + [control]


@dataclass
class State:
    """Sampled controls (cv*) and model-constrained velocities (v*), all [N, T]."""
    cvx: Tensor = field(default_factory=lambda: torch.zeros(0, 0))
    cvy: Tensor = field(default_factory=lambda: torch.zeros(0, 0))
    cwz: Tensor = field(default_factory=lambda: torch.zeros(0, 0))
    vx: Tensor = field(default_factory=lambda: torch.zeros(0, 0))
    vy: Tensor = field(default_factory=lambda: torch.zeros(0, 0))
    wz: Tensor = field(default_factory=lambda: torch.zeros(0, 0))
    pose: Pose2D = field(default_factory=lambda: Pose2D(0.0, 0.0, 0.0))
    speed: Twist2D = field(default_factory=Twist2D)

    def reset(self, batch_size: int, time_steps: int):
        shape = (batch_size, time_steps)
        self.cvx = torch.zeros(shape)
        self.cvy = torch.zeros(shape)
        self.cwz = torch.zeros(shape)
        self.vx = torch.zeros(shape)
        self.vy = torch.zeros(shape)
        self.wz = torch.zeros(shape)


@dataclass
class Trajectories:
    """Rolled-out poses of the batch, each [N, T]."""
    x: Tensor = field(default_factory=lambda: torch.zeros(0, 0))
    y: Tensor = field(default_factory=lambda: torch.zeros(0, 0))
    yaws: Tensor = field(default_factory=lambda: torch.zeros(0, 0))

    def reset(self, batch_size: int, time_steps: int):
        self.x = torch.zeros(batch_size, time_steps)
        self.y = torch.zeros(batch_size, time_steps)
        self.yaws = torch.zeros(batch_size, time_steps)

    @property
    def batch_size(self) -> int:
        return int(self.x.shape[0])

    @property
    def time_steps(self) -> int:
        return int(self.x.shape[1])

    def as_tensor(self) -> Tensor:
        """[N, T, 3] stack of (x, y, yaw)."""
        return torch.stack([self.x, self.y, self.yaws], dim=-1)
