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

"""The minimization objective of a placement model."""

import dataclasses
from typing import Dict, Iterator, Mapping, Optional, Tuple

import immutabledict

from vmplacement.placement.python import elastic
from vmplacement.placement.python import errors
from vmplacement.placement.python import variables


@dataclasses.dataclass(frozen=True)
class ObjectiveFunction:
    """Minimize sum_i weights[x_i] * x_i.

    Attributes:
      weights: The positive weight of each variable in the objective, ordered by
        variable handle. Variables with a zero weight are omitted.
    """

    weights: Mapping[variables.DecisionVariable, float] = (
        immutabledict.immutabledict()
    )

    def terms(self) -> Iterator[Tuple[variables.DecisionVariable, float]]:
        return iter(self.weights.items())

    def value(self, values: Mapping[variables.DecisionVariable, float]) -> float:
        """Returns the objective value, missing variables are 0."""
        return sum(
            weight * values.get(var, 0.0) for var, weight in self.weights.items()
        )

    def __len__(self) -> int:
        return len(self.weights)

    def __contains__(self, var: object) -> bool:
        return var in self.weights


class ObjectiveComposer:
    """Collects the weights of the cost-bearing variables of one build."""

    def __init__(self) -> None:
        self._weights: Dict[variables.DecisionVariable, float] = {}

    def set_weight(self, var: variables.DecisionVariable, weight: float) -> None:
        """Sets the weight of a cost-bearing variable, replacing any previous one.

        Raises:
          InvalidWeightError: if the weight is negative or not finite, or if the
            variable is not cost-bearing.
        """
        if weight is None:
            raise errors.InvalidWeightError(f"{var.name!r}: weight must not be None")
        elastic.check_weight(weight, repr(var.name))
        if not var.cost_bearing:
            raise errors.InvalidWeightError(
                f"{var.name!r} is not cost-bearing and cannot have a weight"
            )
        self._weights[var] = float(weight)

    def charge(self, constraint: elastic.ElasticConstraint) -> None:
        """Sets the weights carried by an elastic constraint.

        Variables without a weight in the constraint are left unset, they must be
        given one with set_weight() before compose().
        """
        for var, weight in constraint.weights.items():
            if weight is not None:
                self.set_weight(var, weight)

    def weight(self, var: variables.DecisionVariable) -> Optional[float]:
        return self._weights.get(var)

    def compose(self, registry: variables.VariableRegistry) -> ObjectiveFunction:
        """Returns the objective over the cost-bearing variables of `registry`.

        Raises:
          UnweightedCostVariableError: if a cost-bearing variable has no weight.
          UnknownVariableError: if a weight was set on a variable of another
            registry.
        """
        for var in self._weights:
            registry.check_owns(var)
        weights = {}
        for var in registry.cost_bearing_variables():
            weight = self._weights.get(var)
            if weight is None:
                raise errors.UnweightedCostVariableError(
                    f"cost-bearing variable {var.name!r} has no weight"
                )
            if weight != 0.0:
                weights[var] = weight
        return ObjectiveFunction(weights=immutabledict.immutabledict(weights))
