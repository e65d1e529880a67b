#!/usr/bin/env python3
from __future__ import annotations
import copy
from typing import Optional, Tuple
import numpy as np
import torch

FREE_SPACE = 0
INSCRIBED_INFLATED_OBSTACLE = 253
LETHAL_OBSTACLE = 254
NO_INFORMATION = 255


class CostmapGrid:
    """
    Stores a 2D cost grid (0..255, row = y, col = x) and exposes world-coordinate
    lookups. Costs follow the usual layered-costmap convention:
    254 lethal, 253 inscribed, 255 unknown.
    """
    def __init__(self, track_unknown_space: bool = False):
        self.ready = False
        self.res = None; self.ox = None; self.oy = None
        self.W = None; self.H = None
        self.frame_id = None
        self.track_unknown_space = bool(track_unknown_space)
        self.grid = None  # torch.ShortTensor [H, W] in 0..255

    @classmethod
    def from_array(cls, data, resolution: float, origin_x: float = 0.0,
                   origin_y: float = 0.0, track_unknown_space: bool = False,
                   frame_id: str = "map") -> "CostmapGrid":
        cm = cls(track_unknown_space=track_unknown_space)
        cm.update(data, resolution, origin_x, origin_y, frame_id)
        return cm

    def update(self, data, resolution: float, origin_x: float, origin_y: float,
               frame_id: str = "map"):
        arr = np.asarray(data, dtype=np.int16)
        if arr.ndim != 2:
            raise ValueError(f"costmap data must be 2D, got shape {arr.shape}")
        self.res = float(resolution)
        self.H, self.W = int(arr.shape[0]), int(arr.shape[1])
        self.ox = float(origin_x); self.oy = float(origin_y)
        self.frame_id = frame_id

        grid = np.clip(arr, 0, 255)
        self.grid = torch.from_numpy(grid.astype(np.int16))
        self.ready = True

    def snapshot(self) -> "CostmapGrid":
        """Detached copy so scoring never sees a concurrent update."""
        out = copy.copy(self)
        if self.grid is not None:
            out.grid = self.grid.clone()
        return out

    # ---- scalar queries ----
    def world_to_map(self, x: float, y: float) -> Optional[Tuple[int, int]]:
        if not self.ready:
            return None
        if x < self.ox or y < self.oy:
            return None
        mx = int((x - self.ox) / self.res)
        my = int((y - self.oy) / self.res)
        if mx >= self.W or my >= self.H:
            return None
        return mx, my

    def get_cost(self, mx: int, my: int) -> int:
        return int(self.grid[my, mx])

    def cost_at(self, x: float, y: float) -> Optional[int]:
        cell = self.world_to_map(x, y)
        if cell is None:
            return None
        return self.get_cost(*cell)

    # ---- batch queries ----
    def costs_at(self, x: torch.Tensor, y: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Nearest-cell costs for world coordinates of any shape.
        Returns (costs, on_map); off-map entries carry NO_INFORMATION.
        """
        if not self.ready or self.grid is None:
            zeros = torch.zeros_like(x, dtype=torch.int16)
            return zeros, torch.ones_like(x, dtype=torch.bool)

        gx = torch.floor((x - self.ox) / self.res)
        gy = torch.floor((y - self.oy) / self.res)
        on_map = (gx >= 0) & (gy >= 0) & (gx < self.W) & (gy < self.H)

        gxc = torch.clamp(gx, 0, self.W - 1).long()
        gyc = torch.clamp(gy, 0, self.H - 1).long()
        costs = self.grid[gyc, gxc]
        costs = torch.where(on_map, costs, torch.full_like(costs, NO_INFORMATION))
        return costs, on_map
