#!/usr/bin/env python3
from __future__ import annotations
import torch

from mppi_local_planner.core.state import ControlHistory, ControlSequence

# Savitzky-Golay, quadratic, 9 points
SG_COEFFS = torch.tensor([-21.0, 14.0, 39.0, 54.0, 59.0, 54.0, 39.0, 14.0, -21.0]) / 231.0
HALF_WINDOW = 4
MIN_SEQUENCE_LENGTH = 20


def _filter_axis(seq: torch.Tensor, history) -> torch.Tensor:
    """
    Filtered copy of seq. The four history values feed the left edge, the
    last entry is repeated on the right edge and itself left untouched.
    """
    n = seq.shape[0] - 1
    left = torch.tensor(history, dtype=seq.dtype)
    right = seq[-1:].repeat(HALF_WINDOW)
    padded = torch.cat([left, seq, right])
    windows = padded.unfold(0, 2 * HALF_WINDOW + 1, 1)[:n]  # [n, 9]
    out = seq.clone()
    out[:n] = windows @ SG_COEFFS.to(seq.dtype)
    return out


def savitzky_golay_filter(sequence: ControlSequence, history: ControlHistory,
                          shift_control_sequence: bool = False) -> bool:
    """
    Smooth every channel of sequence in place and advance history with the
    entry that will be issued. Returns False (no-op) for short sequences.
    """
    if len(sequence) < MIN_SEQUENCE_LENGTH:
        return False

    hist = history.snapshot()
    sequence.vx = _filter_axis(sequence.vx, [c.vx for c in hist])
    sequence.vy = _filter_axis(sequence.vy, [c.vy for c in hist])
    sequence.wz = _filter_axis(sequence.wz, [c.wz for c in hist])

    offset = 1 if shift_control_sequence else 0
    history.push(sequence.control(offset))
    return True
