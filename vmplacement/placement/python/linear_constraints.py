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

"""Linear constraint in a placement model."""

import collections
import dataclasses
import enum
import math
from typing import Dict, Iterable, Mapping, Tuple

from vmplacement.placement.python import variables


@enum.unique
class Sense(enum.Enum):
    """The comparison operator of a linear constraint."""

    LESS_OR_EQUAL = "<="
    GREATER_OR_EQUAL = ">="
    EQUAL = "=="


@dataclasses.dataclass(frozen=True)
class LinearTerm:
    coefficient: float
    variable: variables.DecisionVariable

    def __str__(self) -> str:
        return f"{self.coefficient:g}*{self.variable.name}"


@dataclasses.dataclass(frozen=True)
class LinearConstraint:
    """A linear constraint of a placement model.

    A LinearConstraint adds the following restriction on feasible solutions:
      sum_{i in I} a_i * x_i (sense) rhs
    where sense is one of <=, >=, ==. The a_i are constants known when the model
    is built, which is what keeps the model linear.

    Do not create a LinearConstraint directly, use linear_constraint() instead.

    Attributes:
      name: Name of the constraint, also used to name the variables minted when
        the constraint is relaxed.
      terms: The a_i * x_i terms, with distinct variables and nonzero a_i.
      sense: The comparison operator.
      rhs: The constant right-hand side.
    """

    name: str
    terms: Tuple[LinearTerm, ...]
    sense: Sense
    rhs: float

    def term_variables(self) -> Tuple[variables.DecisionVariable, ...]:
        return tuple(term.variable for term in self.terms)

    def coefficient(self, var: variables.DecisionVariable) -> float:
        for term in self.terms:
            if term.variable == var:
                return term.coefficient
        return 0.0

    def activity(self, values: Mapping[variables.DecisionVariable, float]) -> float:
        """Returns the value of the left-hand side, missing variables are 0."""
        return sum(
            term.coefficient * values.get(term.variable, 0.0) for term in self.terms
        )

    def is_satisfied(
        self,
        values: Mapping[variables.DecisionVariable, float],
        tolerance: float = 1e-6,
    ) -> bool:
        activity = self.activity(values)
        if self.sense == Sense.LESS_OR_EQUAL:
            return activity <= self.rhs + tolerance
        if self.sense == Sense.GREATER_OR_EQUAL:
            return activity >= self.rhs - tolerance
        return abs(activity - self.rhs) <= tolerance

    def __str__(self) -> str:
        lhs = " + ".join(str(term) for term in self.terms) or "0"
        return f"{lhs} {self.sense.value} {self.rhs:g}"


def linear_constraint(
    name: str,
    terms: Iterable[Tuple[float, variables.DecisionVariable]],
    sense: Sense,
    rhs: float,
) -> LinearConstraint:
    """Returns a LinearConstraint from (coefficient, variable) pairs.

    Repeated variables have their coefficients summed and variables with a zero
    coefficient are dropped. The order of first appearance is kept so that models
    are assembled deterministically.

    Raises:
      ValueError: if a coefficient or the rhs is NaN or infinite.
    """
    if not math.isfinite(rhs):
        raise ValueError(f"constraint {name!r}: rhs must be finite, got {rhs}")
    merged: Dict[variables.DecisionVariable, float] = collections.OrderedDict()
    for coefficient, var in terms:
        if not math.isfinite(coefficient):
            raise ValueError(
                f"constraint {name!r}: coefficient of {var.name!r} must be"
                f" finite, got {coefficient}"
            )
        merged[var] = merged.get(var, 0.0) + coefficient
    return LinearConstraint(
        name=name,
        terms=tuple(
            LinearTerm(coefficient, var)
            for var, coefficient in merged.items()
            if coefficient != 0.0
        ),
        sense=sense,
        rhs=float(rhs),
    )
