#!/usr/bin/env python3


class ControllerError(Exception):
    """Base for recoverable per-cycle controller failures."""


class InvalidPathError(ControllerError):
    """No plan was set, or the plan is empty."""


class InvalidPoseError(ControllerError):
    """Robot pose unavailable or not finite this cycle."""


class NoValidControlError(ControllerError):
    """Raised by callers that escalate an infeasible cycle."""
