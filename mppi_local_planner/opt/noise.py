#!/usr/bin/env python3
from __future__ import annotations
from typing import Optional
import torch

from mppi_local_planner.core.state import ControlSequence, State


class NoiseGenerator:
    """
    Zero-mean Gaussian perturbations per channel, [N, T] each.
    Owns an explicit torch.Generator so a seed reproduces a batch exactly.
    """
    def __init__(self, batch_size: int, time_steps: int, vx_std: float, wz_std: float,
                 vy_std: float = 0.0, holonomic: bool = False,
                 regenerate_noises: bool = True, seed: Optional[int] = None):
        self.batch_size = int(batch_size)
        self.time_steps = int(time_steps)
        self.vx_std = float(vx_std)
        self.vy_std = float(vy_std)
        self.wz_std = float(wz_std)
        self.holonomic = bool(holonomic)
        self.regenerate_noises = bool(regenerate_noises)
        self.generator = torch.Generator()
        self.reseed(seed)
        self.noises_vx = self.noises_vy = self.noises_wz = None
        self.generate()

    def reseed(self, seed: Optional[int]):
        if seed is None:
            self.generator.seed()
        else:
            self.generator.manual_seed(int(seed))

    def _draw(self, std: float) -> torch.Tensor:
        shape = (self.batch_size, self.time_steps)
        if std <= 0.0:
            return torch.zeros(shape)
        return torch.randn(shape, generator=self.generator) * std

    def generate(self):
        self.noises_vx = self._draw(self.vx_std)
        self.noises_wz = self._draw(self.wz_std)
        if self.holonomic:
            self.noises_vy = self._draw(self.vy_std)
        else:
            self.noises_vy = torch.zeros(self.batch_size, self.time_steps)

    def set_noised_controls(self, state: State, sequence: ControlSequence):
        """cv* = nominal + noise. Fresh noise per call unless regeneration is disabled."""
        if self.regenerate_noises:
            self.generate()
        state.cvx = sequence.vx.unsqueeze(0) + self.noises_vx
        state.cvy = sequence.vy.unsqueeze(0) + self.noises_vy
        state.cwz = sequence.wz.unsqueeze(0) + self.noises_wz
