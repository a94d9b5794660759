# Copyright 2010-2025 Google LLC
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Configures the building and the solving of a placement model."""

import dataclasses
import datetime
import math
from typing import Optional

from vmplacement.placement.python import errors


@dataclasses.dataclass(frozen=True)
class PenaltyWeights:
    """The weights of the soft objectives.

    Attributes:
      server: Cost of each used provider.
      oversubscription: Cost of the first oversubscription tier of a provider
        dimension.
      oversubscription_growth: Ratio between the costs of two consecutive
        oversubscription tiers, >= 1.
      affinity: Cost of splitting two workloads of the same affinity group.
      anti_affinity: Cost of each extra workload of an anti-affinity group on a
        provider.
    """

    server: float = 100.0
    oversubscription: float = 1.0
    oversubscription_growth: float = 1.0
    affinity: float = 10.0
    anti_affinity: float = 10.0

    def __post_init__(self) -> None:
        for field in dataclasses.fields(self):
            value = getattr(self, field.name)
            if not math.isfinite(value) or value < 0:
                raise errors.InvalidWeightError(
                    f"{field.name} weight must be finite and non-negative, got"
                    f" {value}"
                )
        if self.oversubscription_growth < 1:
            raise errors.InvalidWeightError(
                "oversubscription_growth must be >= 1, got"
                f" {self.oversubscription_growth}"
            )


@dataclasses.dataclass(frozen=True)
class PlacementParameters:
    """Parameters to build and solve a placement model.

    Attributes:
      weights: The weights of the soft objectives.
      step_granularity: Distance between two oversubscription tiers. Values
        above 1 reduce the model size at the cost of a coarser penalty.
      solver_name: The model_builder solver backend, e.g. "scip" or "sat".
      time_limit: The maximum time the solver should spend, or None for no
        limit. This is not a hard limit.
      enable_output: If the solver should print out its log messages.
      solver_specific_parameters: Parameters passed as is to the backend.
    """

    weights: PenaltyWeights = dataclasses.field(default_factory=PenaltyWeights)
    step_granularity: int = 1
    solver_name: str = "scip"
    time_limit: Optional[datetime.timedelta] = None
    enable_output: bool = False
    solver_specific_parameters: str = ""

    def __post_init__(self) -> None:
        if self.step_granularity < 1:
            raise errors.InvalidTierError(
                f"step_granularity must be >= 1, got {self.step_granularity}"
            )
        if self.time_limit is not None and self.time_limit <= datetime.timedelta():
            raise ValueError(f"time_limit must be positive, got {self.time_limit}")
