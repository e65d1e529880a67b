#!/usr/bin/env python3
"""
Parameter store with the declare/get/set/callback surface of a ROS 2 node.

Values come from declared defaults, overridden by a YAML file in the usual
`<node>: ros__parameters: {...}` layout. Nested keys are flattened to dotted
names ("PathFollowCritic.cost_weight").
"""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import yaml

logger = logging.getLogger(__name__)


@dataclass
class Parameter:
    name: str
    value: Any


@dataclass
class SetParametersResult:
    successful: bool = True
    reason: str = ""


class ParameterNotDeclaredError(KeyError):
    pass


def flatten(tree: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in tree.items():
        name = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict):
            out.update(flatten(value, name))
        else:
            out[name] = value
    return out


class Parameters:
    def __init__(self, overrides: Optional[Dict[str, Any]] = None):
        self._overrides: Dict[str, Any] = dict(overrides or {})
        self._values: Dict[str, Any] = {}
        self._callbacks: List[Callable[[List[Parameter]], SetParametersResult]] = []

    # ---- construction ----
    @classmethod
    def from_dict(cls, tree: Dict[str, Any]) -> "Parameters":
        return cls(flatten(tree))

    @classmethod
    def from_yaml(cls, path: str, node_name: Optional[str] = None) -> "Parameters":
        if not os.path.isfile(path):
            raise FileNotFoundError(f"parameter file not found: {path}")
        with open(path, "r") as f:
            raw = yaml.safe_load(f) or {}

        tree = raw
        if node_name is not None:
            tree = raw.get(node_name, {})
        elif len(raw) == 1:
            only = next(iter(raw.values()))
            if isinstance(only, dict) and "ros__parameters" in only:
                tree = only
        if isinstance(tree, dict) and "ros__parameters" in tree:
            tree = tree["ros__parameters"]

        logger.info("Loaded parameters from %s", path)
        return cls.from_dict(tree or {})

    # ---- node-like API ----
    def declare_parameter(self, name: str, default: Any = None) -> Parameter:
        if name not in self._values:
            self._values[name] = self._overrides.get(name, default)
        return Parameter(name, self._values[name])

    def has_parameter(self, name: str) -> bool:
        return name in self._values

    def get_parameter(self, name: str) -> Parameter:
        if name not in self._values:
            raise ParameterNotDeclaredError(name)
        return Parameter(name, self._values[name])

    def get_parameters_by_prefix(self, prefix: str) -> Dict[str, Any]:
        p = prefix + "."
        return {k[len(p):]: v for k, v in self._values.items() if k.startswith(p)}

    def add_on_set_parameters_callback(self, cb: Callable[[List[Parameter]], SetParametersResult]):
        self._callbacks.append(cb)

    def set_parameters(self, params: Union[Dict[str, Any], Iterable[Parameter]]) -> SetParametersResult:
        if isinstance(params, dict):
            params = [Parameter(k, v) for k, v in params.items()]
        params = list(params)
        for p in params:
            if p.name not in self._values:
                return SetParametersResult(False, f"parameter '{p.name}' is not declared")

        previous = {p.name: self._values[p.name] for p in params}
        for p in params:
            self._values[p.name] = p.value
        for cb in self._callbacks:
            try:
                result = cb(params)
            except Exception:
                self._values.update(previous)
                logger.error("Parameter callback failed, update rolled back")
                raise
            if not result.successful:
                self._values.update(previous)
                logger.warning("Rejected parameter update: %s", result.reason)
                return result
        return SetParametersResult(True)
