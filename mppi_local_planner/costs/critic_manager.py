#!/usr/bin/env python3
from __future__ import annotations
import logging
from typing import Dict, List, Type
import torch

from mppi_local_planner.core.critic_data import CriticData
from mppi_local_planner.parameters import Parameters
from mppi_local_planner.costs.critic_function import CriticFunction
from mppi_local_planner.costs.constraint_critic import ConstraintCritic
from mppi_local_planner.costs.cost_critic import CostCritic
from mppi_local_planner.costs.goal_critic import GoalCritic
from mppi_local_planner.costs.goal_angle_critic import GoalAngleCritic
from mppi_local_planner.costs.path_align_critic import PathAlignCritic
from mppi_local_planner.costs.path_follow_critic import PathFollowCritic
from mppi_local_planner.costs.path_angle_critic import PathAngleCritic
from mppi_local_planner.costs.prefer_forward_critic import PreferForwardCritic
from mppi_local_planner.costs.twirling_critic import TwirlingCritic
from mppi_local_planner.costs.velocity_smoothness_critic import VelocitySmoothnessCritic
from mppi_local_planner.costs.velocity_deadband_critic import VelocityDeadbandCritic

logger = logging.getLogger(__name__)

CRITICS: Dict[str, Type[CriticFunction]] = {
    "ConstraintCritic": ConstraintCritic,
    "CostCritic": CostCritic,
    "GoalCritic": GoalCritic,
    "GoalAngleCritic": GoalAngleCritic,
    "PathAlignCritic": PathAlignCritic,
    "PathFollowCritic": PathFollowCritic,
    "PathAngleCritic": PathAngleCritic,
    "PreferForwardCritic": PreferForwardCritic,
    "TwirlingCritic": TwirlingCritic,
    "VelocitySmoothnessCritic": VelocitySmoothnessCritic,
    "VelocityDeadbandCritic": VelocityDeadbandCritic,
}

DEFAULT_CRITICS = [
    "ConstraintCritic", "CostCritic", "GoalCritic", "GoalAngleCritic",
    "PathAlignCritic", "PathFollowCritic", "PathAngleCritic", "PreferForwardCritic",
]


class CriticManager:
    """
    Runs the configured critics in order. Each critic fills its own column of
    an [N, C] matrix; columns are summed into data.costs once all ran, so no
    critic ever writes into another's slot. A raised fail_flag stops the pipeline.
    """
    def __init__(self, params: Parameters):
        self.p = params
        self.critics: List[CriticFunction] = []
        self.load_critics()

    def load_critics(self):
        if not self.p.has_parameter("critics"):
            self.p.declare_parameter("critics", list(DEFAULT_CRITICS))
        names = list(self.p.get_parameter("critics").value or [])

        self.critics = []
        for name in names:
            cls = CRITICS.get(name)
            if cls is None:
                logger.warning("Unknown critic '%s' ignored; available: %s",
                               name, ", ".join(sorted(CRITICS)))
                continue
            self.critics.append(cls(name, self.p))
            logger.info("Critic loaded: %s", name)

    def critic_names(self) -> List[str]:
        return [c.name for c in self.critics]

    def on_parameters(self, names: List[str]):
        """Reload critics whose namespace appears in names."""
        for critic in self.critics:
            if any(n.startswith(critic.name + ".") for n in names):
                critic.load()

    def eval_trajectories_scores(self, data: CriticData):
        n = data.batch_size
        columns = torch.zeros(n, max(len(self.critics), 1))
        data.critic_costs = {}

        for i, critic in enumerate(self.critics):
            if data.fail_flag:
                break
            cost = critic.score(data)
            if cost is None:
                continue
            columns[:, i] = cost
            data.critic_costs[critic.name] = cost

        data.costs = data.costs + columns.sum(dim=1)
