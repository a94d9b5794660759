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

"""Decision variables and the registry owning them.

A VariableRegistry is created for each model build. It allocates variables in
an arena: the handle of a variable is its index in declaration order, so that a
solver adapter can map handles to solver indices without ambiguity. The
workload x provider assignment matrix and the per provider usage indicators are
explicit indexes owned by the registry.

Weights are not stored here, see objectives.ObjectiveComposer.
"""

import dataclasses
import enum
import math
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

import immutabledict

from vmplacement.placement.python import definitions
from vmplacement.placement.python import errors


@enum.unique
class DomainKind(enum.Enum):
    BINARY = "binary"
    NON_NEGATIVE = "non_negative"
    BOUNDED = "bounded"


@dataclasses.dataclass(frozen=True)
class Domain:
    """The values a decision variable can take.

    Use the binary(), non_negative() and bounded() constructors.
    """

    kind: DomainKind
    lower_bound: float
    upper_bound: float

    @classmethod
    def binary(cls) -> "Domain":
        return cls(DomainKind.BINARY, 0.0, 1.0)

    @classmethod
    def non_negative(cls) -> "Domain":
        return cls(DomainKind.NON_NEGATIVE, 0.0, math.inf)

    @classmethod
    def bounded(cls, lower_bound: float, upper_bound: float) -> "Domain":
        if math.isnan(lower_bound) or math.isnan(upper_bound):
            raise ValueError("bounds must not be NaN")
        if lower_bound > upper_bound:
            raise ValueError(
                f"empty domain: lower bound {lower_bound} > upper bound"
                f" {upper_bound}"
            )
        return cls(DomainKind.BOUNDED, float(lower_bound), float(upper_bound))

    @property
    def is_integer(self) -> bool:
        return self.kind == DomainKind.BINARY

    def contains(self, value: float, tolerance: float = 1e-6) -> bool:
        if value < self.lower_bound - tolerance or value > self.upper_bound + tolerance:
            return False
        if self.is_integer:
            return abs(value - round(value)) <= tolerance
        return True

    def __str__(self) -> str:
        if self.kind == DomainKind.BINARY:
            return "{0, 1}"
        return f"[{self.lower_bound}, {self.upper_bound}]"


@enum.unique
class VariableRole(enum.Enum):
    """What a decision variable stands for in the placement model.

    Attributes:
      ASSIGNMENT: 1 iff a workload is placed on a provider.
      USAGE_INDICATOR: 1 iff at least one workload is placed on a provider.
      EXCESS: By how much a relaxed constraint is violated.
      SLACK: Absorbs a tolerance of a relaxed constraint, without cost.
      AUXILIARY: Any other variable.
    """

    ASSIGNMENT = "assignment"
    USAGE_INDICATOR = "usage_indicator"
    EXCESS = "excess"
    SLACK = "slack"
    AUXILIARY = "auxiliary"


@dataclasses.dataclass(frozen=True)
class DecisionVariable:
    """A decision variable of a placement model.

    Attributes:
      handle: Stable index of the variable in its registry.
      name: Unique name in its registry.
      domain: The values the variable can take.
      role: What the variable stands for.
      cost_bearing: If True, the objective must give this variable a weight.
    """

    handle: int
    name: str
    domain: Domain
    role: VariableRole = VariableRole.AUXILIARY
    cost_bearing: bool = False

    def __str__(self) -> str:
        return self.name


_QUOTED_CHARACTERS = frozenset(",[]'\"\\")


def _format_id(element_id: str) -> str:
    if any(c in _QUOTED_CHARACTERS for c in element_id):
        return repr(element_id)
    return element_id


def indexed_name(prefix: str, *ids: str) -> str:
    """Returns `prefix[id1,id2,...]`.

    Ids containing a delimiter or a quote are written as Python string literals,
    so distinct id tuples always give distinct names.
    """
    return f"{prefix}[{','.join(_format_id(i) for i in ids)}]"


def assignment_name(workload_id: str, provider_id: str) -> str:
    return indexed_name("assign", workload_id, provider_id)


def usage_indicator_name(provider_id: str) -> str:
    return indexed_name("used", provider_id)


class VariableRegistry:
    """Allocates and tracks the decision variables of one model build.

    Not thread-safe; a registry is meant to be owned by a single build.
    """

    def __init__(self) -> None:
        self._variables: List[DecisionVariable] = []
        self._by_name: Dict[str, DecisionVariable] = {}
        self._assignments: Dict[Tuple[str, str], DecisionVariable] = {}
        self._usage_indicators: Dict[str, DecisionVariable] = {}

    def declare_variable(
        self,
        name: str,
        domain: Domain,
        *,
        role: VariableRole = VariableRole.AUXILIARY,
        cost_bearing: bool = False,
    ) -> DecisionVariable:
        """Creates a new variable.

        Args:
          name: The name of the variable, must be unique in this registry.
          domain: The values the variable can take.
          role: What the variable stands for.
          cost_bearing: If True, compose() will require a weight for it.

        Returns:
          The new variable.

        Raises:
          DuplicateVariableError: if `name` is already registered.
        """
        if name in self._by_name:
            raise errors.DuplicateVariableError(
                f"variable {name!r} is already registered"
            )
        var = DecisionVariable(
            handle=len(self._variables),
            name=name,
            domain=domain,
            role=role,
            cost_bearing=cost_bearing,
        )
        self._variables.append(var)
        self._by_name[name] = var
        return var

    def declare_assignment_matrix(
        self,
        workloads: Iterable[definitions.Workload],
        providers: Iterable[definitions.ResourceProvider],
    ) -> Mapping[Tuple[str, str], DecisionVariable]:
        """Declares a binary assignment variable per eligible pair.

        Pairs where the provider cannot host the workload get no variable.

        Args:
          workloads: The workloads, declared in this order.
          providers: The providers, declared in this order for each workload.

        Returns:
          The assignment variables keyed by (workload id, provider id).
        """
        providers = list(providers)
        declared = {}
        for workload in workloads:
            for provider in providers:
                if not provider.can_host(workload):
                    continue
                var = self.declare_variable(
                    assignment_name(workload.id, provider.id),
                    Domain.binary(),
                    role=VariableRole.ASSIGNMENT,
                )
                self._assignments[(workload.id, provider.id)] = var
                declared[(workload.id, provider.id)] = var
        return immutabledict.immutabledict(declared)

    def declare_usage_indicators(
        self, providers: Iterable[definitions.ResourceProvider]
    ) -> Mapping[str, DecisionVariable]:
        """Declares a cost-bearing binary usage indicator per provider."""
        declared = {}
        for provider in providers:
            var = self.declare_variable(
                usage_indicator_name(provider.id),
                Domain.binary(),
                role=VariableRole.USAGE_INDICATOR,
                cost_bearing=True,
            )
            self._usage_indicators[provider.id] = var
            declared[provider.id] = var
        return immutabledict.immutabledict(declared)

    def assignment(
        self, workload_id: str, provider_id: str
    ) -> Optional[DecisionVariable]:
        """Returns assign[w,p], or None if the provider cannot host w."""
        return self._assignments.get((workload_id, provider_id))

    def assignments_of_workload(
        self, workload_id: str
    ) -> List[Tuple[str, DecisionVariable]]:
        """Returns the (provider id, variable) pairs of a workload."""
        return [
            (provider_id, var)
            for (w, provider_id), var in self._assignments.items()
            if w == workload_id
        ]

    def assignments_on_provider(
        self, provider_id: str
    ) -> List[Tuple[str, DecisionVariable]]:
        """Returns the (workload id, variable) pairs of a provider."""
        return [
            (workload_id, var)
            for (workload_id, p), var in self._assignments.items()
            if p == provider_id
        ]

    def usage_indicator(self, provider_id: str) -> Optional[DecisionVariable]:
        return self._usage_indicators.get(provider_id)

    def get(self, handle: int) -> DecisionVariable:
        if not 0 <= handle < len(self._variables):
            raise errors.UnknownVariableError(f"no variable with handle {handle}")
        return self._variables[handle]

    def by_name(self, name: str) -> DecisionVariable:
        try:
            return self._by_name[name]
        except KeyError:
            raise errors.UnknownVariableError(f"no variable named {name!r}") from None

    def check_owns(self, var: DecisionVariable) -> None:
        """Raises UnknownVariableError if `var` was not declared here."""
        if var not in self:
            raise errors.UnknownVariableError(
                f"variable {var.name!r} does not belong to this registry"
            )

    def cost_bearing_variables(self) -> Iterator[DecisionVariable]:
        """Yields the cost-bearing variables in handle order."""
        return (var for var in self._variables if var.cost_bearing)

    @property
    def variables(self) -> Tuple[DecisionVariable, ...]:
        return tuple(self._variables)

    def __len__(self) -> int:
        return len(self._variables)

    def __iter__(self) -> Iterator[DecisionVariable]:
        return iter(self._variables)

    def __contains__(self, var: object) -> bool:
        if not isinstance(var, DecisionVariable):
            return False
        return (
            0 <= var.handle < len(self._variables)
            and self._variables[var.handle] is var
        )
