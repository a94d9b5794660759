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

"""Rewrites hard linear constraints into elastic (violable) ones.

An elastic constraint accepts a violation of the original constraint, measured
by non-negative excess variables that the objective charges:

  | Original         | Relaxed                                     |
  | sum <= rhs       | sum - excess <= rhs                         |
  | sum >= rhs       | sum + excess >= rhs                         |
  | sum == rhs       | sum + excess_neg - excess_pos == rhs        |
  | banded [lo, hi]  | sum + excess_neg - excess_pos + slack == rhs |

For banded relaxations, slack in [lo, hi] absorbs deviations inside the band
for free. The band must contain 0, the point of perfect satisfaction.

elasticize() never modifies the original constraint; it returns both forms in
an ElasticConstraint.
"""

import dataclasses
import enum
import math
from typing import FrozenSet, Mapping, Optional, Sequence, Tuple

import immutabledict

from vmplacement.placement.python import errors
from vmplacement.placement.python import linear_constraints
from vmplacement.placement.python import variables

_Sense = linear_constraints.Sense
_Role = variables.VariableRole


@enum.unique
class RelaxationKind(enum.Enum):
    """How to relax a constraint.

    Attributes:
      DIRECTIONAL: One excess variable, in the direction of the inequality.
      EQUALITY: Two excess variables, one per direction, for equalities only.
      BANDED: EQUALITY plus a cost free slack variable in a [lo, hi] band.
    """

    DIRECTIONAL = "directional"
    EQUALITY = "equality"
    BANDED = "banded"


@enum.unique
class ExcessSide(enum.Enum):
    """The two excess variables of an equality relaxation.

    Attributes:
      NEGATIVE: excess_neg, non-zero when the left-hand side is below rhs.
      POSITIVE: excess_pos, non-zero when the left-hand side is above rhs.
    """

    NEGATIVE = "neg"
    POSITIVE = "pos"


_BOTH_SIDES = frozenset(ExcessSide)


@dataclasses.dataclass(frozen=True)
class RelaxationPolicy:
    """Configures elasticize().

    Attributes:
      kind: The relaxation to apply. If None, DIRECTIONAL is used for
        inequalities and EQUALITY for equalities.
      weight: The weight of every cost-bearing excess variable. If None, the
        weights must be given later to the ObjectiveComposer.
      band: The (lo, hi) range of the slack variable, BANDED only.
      charged_sides: The excess variables of an equality relaxation which are
        cost-bearing. The others are registered as cost free slack.
      indicator_scale: DIRECTIONAL only. If set, the excess variable is binary
        with coefficient `indicator_scale` in the relaxed constraint, so the
        violation is charged once whatever its amount, up to the scale.
    """

    kind: Optional[RelaxationKind] = None
    weight: Optional[float] = None
    band: Optional[Tuple[float, float]] = None
    charged_sides: FrozenSet[ExcessSide] = _BOTH_SIDES
    indicator_scale: Optional[float] = None

    @classmethod
    def directional(cls, weight: Optional[float] = None) -> "RelaxationPolicy":
        return cls(kind=RelaxationKind.DIRECTIONAL, weight=weight)

    @classmethod
    def equality(
        cls,
        weight: Optional[float] = None,
        charged_sides: FrozenSet[ExcessSide] = _BOTH_SIDES,
    ) -> "RelaxationPolicy":
        return cls(
            kind=RelaxationKind.EQUALITY,
            weight=weight,
            charged_sides=frozenset(charged_sides),
        )

    @classmethod
    def banded(
        cls, lo: float, hi: float, weight: Optional[float] = None
    ) -> "RelaxationPolicy":
        return cls(kind=RelaxationKind.BANDED, weight=weight, band=(lo, hi))

    @classmethod
    def indicator(
        cls, scale: float, weight: Optional[float] = None
    ) -> "RelaxationPolicy":
        return cls(
            kind=RelaxationKind.DIRECTIONAL, weight=weight, indicator_scale=scale
        )


@dataclasses.dataclass(frozen=True)
class ElasticConstraint:
    """A hard constraint and its relaxed form.

    Attributes:
      original: The hard constraint, kept for diagnostics. It is not part of the
        model anymore.
      relaxed: The constraint replacing `original` in the model.
      excess: The excess variables, (excess,) for a directional relaxation and
        (excess_neg, excess_pos) otherwise.
      slack: The cost free slack variable of a banded relaxation.
      weights: The cost-bearing excess variables and their weight, None when the
        policy did not give one.
    """

    original: linear_constraints.LinearConstraint
    relaxed: linear_constraints.LinearConstraint
    excess: Tuple[variables.DecisionVariable, ...]
    slack: Optional[variables.DecisionVariable] = None
    weights: Mapping[variables.DecisionVariable, Optional[float]] = (
        immutabledict.immutabledict()
    )

    @property
    def name(self) -> str:
        return self.original.name

    @property
    def cost_bearing_variables(self) -> Tuple[variables.DecisionVariable, ...]:
        return tuple(self.weights)

    def violation(self, values: Mapping[variables.DecisionVariable, float]) -> float:
        """Returns by how much the original constraint is violated.

        The amount is measured on the original constraint, whatever the excess
        values (an indicator excess only says that a violation occurred). For a
        banded relaxation, a deviation inside the band is not a violation.
        """
        shortfall = self.original.rhs - self.original.activity(values)
        if self.slack is not None:
            band = self.slack.domain
            return max(0.0, shortfall - band.upper_bound, band.lower_bound - shortfall)
        if self.original.sense == _Sense.LESS_OR_EQUAL:
            return max(0.0, -shortfall)
        if self.original.sense == _Sense.GREATER_OR_EQUAL:
            return max(0.0, shortfall)
        return abs(shortfall)

    def penalty(self, values: Mapping[variables.DecisionVariable, float]) -> float:
        """Returns the objective cost of the excess values.

        Raises:
          UnweightedCostVariableError: if a cost-bearing variable has no weight.
        """
        total = 0.0
        for var, weight in self.weights.items():
            if weight is None:
                raise errors.UnweightedCostVariableError(
                    f"variable {var.name!r} of {self.name!r} has no weight"
                )
            total += weight * values.get(var, 0.0)
        return total


def check_weight(weight: Optional[float], what: str) -> None:
    """Raises InvalidWeightError unless weight is None or finite and >= 0."""
    if weight is None:
        return
    if not math.isfinite(weight) or weight < 0:
        raise errors.InvalidWeightError(
            f"{what}: weight must be finite and non-negative, got {weight}"
        )


def _resolve_kind(
    constraint: linear_constraints.LinearConstraint, policy: RelaxationPolicy
) -> RelaxationKind:
    kind = policy.kind
    if kind is None:
        if constraint.sense == _Sense.EQUAL:
            return RelaxationKind.EQUALITY
        return RelaxationKind.DIRECTIONAL
    if kind == RelaxationKind.DIRECTIONAL and constraint.sense == _Sense.EQUAL:
        raise errors.PolicyError(
            f"{constraint.name!r}: a directional relaxation needs an inequality,"
            " use an equality or banded relaxation"
        )
    if kind == RelaxationKind.EQUALITY and constraint.sense != _Sense.EQUAL:
        raise errors.PolicyError(
            f"{constraint.name!r}: an equality relaxation needs an equality,"
            " use a directional or banded relaxation"
        )
    return kind


def _check_policy(
    constraint: linear_constraints.LinearConstraint,
    policy: RelaxationPolicy,
    kind: RelaxationKind,
) -> None:
    check_weight(policy.weight, repr(constraint.name))
    if kind == RelaxationKind.BANDED:
        if policy.band is None:
            raise errors.InvalidBandError(
                f"{constraint.name!r}: a banded relaxation needs a band"
            )
        lo, hi = policy.band
        if math.isnan(lo) or math.isnan(hi) or lo > hi:
            raise errors.InvalidBandError(
                f"{constraint.name!r}: invalid band [{lo}, {hi}]"
            )
        if not lo <= 0 <= hi:
            raise errors.InvalidBandError(
                f"{constraint.name!r}: band [{lo}, {hi}] must contain 0"
            )
    elif policy.band is not None:
        raise errors.PolicyError(
            f"{constraint.name!r}: a band is only valid for banded relaxations"
        )
    if policy.indicator_scale is not None:
        if kind != RelaxationKind.DIRECTIONAL:
            raise errors.PolicyError(
                f"{constraint.name!r}: an indicator scale is only valid for"
                " directional relaxations"
            )
        if not math.isfinite(policy.indicator_scale) or policy.indicator_scale <= 0:
            raise errors.PolicyError(
                f"{constraint.name!r}: indicator scale must be positive, got"
                f" {policy.indicator_scale}"
            )


def elasticize(
    constraint: linear_constraints.LinearConstraint,
    policy: RelaxationPolicy,
    registry: variables.VariableRegistry,
) -> ElasticConstraint:
    """Relaxes a hard constraint.

    The new variables are named after the constraint:
    `<name>:excess`, `<name>:excess_neg`, `<name>:excess_pos` and `<name>:slack`.

    Args:
      constraint: The hard constraint, left untouched.
      policy: How to relax it.
      registry: The registry in which the new variables are declared.

    Returns:
      The relaxed constraint and its new variables.

    Raises:
      InvalidBandError: if the band of a banded policy does not contain 0.
      InvalidWeightError: if the weight is negative or not finite.
      PolicyError: if the policy does not apply to the constraint.
      DuplicateVariableError: if the constraint was already relaxed in this
        registry.
    """
    kind = _resolve_kind(constraint, policy)
    _check_policy(constraint, policy, kind)
    for var in constraint.term_variables():
        registry.check_owns(var)

    terms = [(term.coefficient, term.variable) for term in constraint.terms]
    weights = {}

    if kind == RelaxationKind.DIRECTIONAL:
        if policy.indicator_scale is None:
            excess = registry.declare_variable(
                f"{constraint.name}:excess",
                variables.Domain.non_negative(),
                role=_Role.EXCESS,
                cost_bearing=True,
            )
            scale = 1.0
        else:
            excess = registry.declare_variable(
                f"{constraint.name}:excess",
                variables.Domain.binary(),
                role=_Role.EXCESS,
                cost_bearing=True,
            )
            scale = policy.indicator_scale
        if constraint.sense == _Sense.LESS_OR_EQUAL:
            terms.append((-scale, excess))
        else:
            terms.append((scale, excess))
        weights[excess] = policy.weight
        relaxed = linear_constraints.linear_constraint(
            constraint.name, terms, constraint.sense, constraint.rhs
        )
        return ElasticConstraint(
            original=constraint,
            relaxed=relaxed,
            excess=(excess,),
            weights=immutabledict.immutabledict(weights),
        )

    charged = policy.charged_sides if kind == RelaxationKind.EQUALITY else _BOTH_SIDES
    excess_vars = []
    for side, coefficient in ((ExcessSide.NEGATIVE, 1.0), (ExcessSide.POSITIVE, -1.0)):
        is_charged = side in charged
        var = registry.declare_variable(
            f"{constraint.name}:excess_{side.value}",
            variables.Domain.non_negative(),
            role=_Role.EXCESS if is_charged else _Role.SLACK,
            cost_bearing=is_charged,
        )
        terms.append((coefficient, var))
        excess_vars.append(var)
        if is_charged:
            weights[var] = policy.weight

    slack = None
    if kind == RelaxationKind.BANDED:
        lo, hi = policy.band
        slack = registry.declare_variable(
            f"{constraint.name}:slack",
            variables.Domain.bounded(lo, hi),
            role=_Role.SLACK,
        )
        terms.append((1.0, slack))

    relaxed = linear_constraints.linear_constraint(
        constraint.name, terms, _Sense.EQUAL, constraint.rhs
    )
    return ElasticConstraint(
        original=constraint,
        relaxed=relaxed,
        excess=tuple(excess_vars),
        slack=slack,
        weights=immutabledict.immutabledict(weights),
    )


def elasticize_keep_together(
    constraints: Sequence[linear_constraints.LinearConstraint],
    weight: Optional[float],
    registry: variables.VariableRegistry,
) -> Tuple[ElasticConstraint, ...]:
    """Relaxes per provider co-location equalities.

    For the equality `assign[a,p] - assign[b,p] == 0` of provider p, a split
    placement puts excess_pos to 1 on the provider of `a` and excess_neg to 1 on
    the provider of `b`. Both measure the same violation, so only excess_pos is
    cost-bearing: a split placement costs `weight` whichever providers are used.
    """
    policy = RelaxationPolicy.equality(
        weight, charged_sides=frozenset({ExcessSide.POSITIVE})
    )
    return tuple(elasticize(constraint, policy, registry) for constraint in constraints)
