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

"""Builds the hard constraints of a placement model.

The assignment matrix must be declared in the registry beforehand, see
VariableRegistry.declare_assignment_matrix().
"""

from typing import List, Mapping, Sequence, Tuple

from absl import logging

from vmplacement.placement.python import definitions
from vmplacement.placement.python import errors
from vmplacement.placement.python import linear_constraints
from vmplacement.placement.python import variables

_Sense = linear_constraints.Sense


def build_assignment_uniqueness(
    workloads: Sequence[definitions.Workload],
    providers: Sequence[definitions.ResourceProvider],
    registry: variables.VariableRegistry,
) -> List[linear_constraints.LinearConstraint]:
    """Returns `sum_p assign[w,p] == 1` for each workload w.

    Args:
      workloads: The workloads to place.
      providers: The candidate providers.
      registry: The registry holding the assignment matrix.

    Returns:
      One constraint per workload, in the order of `workloads`.

    Raises:
      InfeasibleByConstructionError: if no provider can host a workload.
    """
    constraints = []
    for workload in workloads:
        terms = []
        for provider in providers:
            if not provider.can_host(workload):
                continue
            var = registry.assignment(workload.id, provider.id)
            if var is None:
                raise errors.UnknownVariableError(
                    "missing assignment variable"
                    f" {variables.assignment_name(workload.id, provider.id)!r}"
                )
            terms.append((1.0, var))
        if not terms:
            raise errors.InfeasibleByConstructionError(
                f"workload {workload.id!r} with demand {dict(workload.demand)} does"
                " not fit on any provider"
            )
        constraints.append(
            linear_constraints.linear_constraint(
                variables.indexed_name("unique", workload.id), terms, _Sense.EQUAL, 1.0
            )
        )
    logging.vlog(1, "Built %d assignment uniqueness constraints", len(constraints))
    return constraints


def usage_terms(
    provider: definitions.ResourceProvider,
    dimension: str,
    workloads: Sequence[definitions.Workload],
    registry: variables.VariableRegistry,
) -> List[Tuple[float, variables.DecisionVariable]]:
    """Returns the `demand(w,d) * assign[w,p]` terms of a provider dimension.

    Workloads with a zero demand or that cannot be hosted by the provider are
    skipped.
    """
    terms = []
    for workload in workloads:
        demand = workload.demand_for(dimension)
        if demand == 0:
            continue
        var = registry.assignment(workload.id, provider.id)
        if var is not None:
            terms.append((demand, var))
    return terms


def build_capacity(
    providers: Sequence[definitions.ResourceProvider],
    workloads: Sequence[definitions.Workload],
    registry: variables.VariableRegistry,
    usage_indicators: Mapping[str, variables.DecisionVariable],
) -> List[linear_constraints.LinearConstraint]:
    """Returns the capacity constraints of each provider and dimension.

    The constraint for provider p and dimension d is
      sum_w demand(w,d) * assign[w,p] <= capacity(p,d) * used[p]
    written with the indicator on the left-hand side. As demands are
    non-negative, used[p] = 0 forces every assignment to p with a nonzero demand
    to 0.

    Dimensions demanded by workloads but not offered by the provider need no
    constraint: such pairs have no assignment variable.
    """
    constraints = []
    for provider in providers:
        indicator = usage_indicators.get(provider.id)
        if indicator is None:
            raise errors.UnknownVariableError(
                f"missing usage indicator for provider {provider.id!r}"
            )
        for dimension in provider.dimensions:
            terms = usage_terms(provider, dimension, workloads, registry)
            terms.append((-provider.capacity_for(dimension), indicator))
            constraints.append(
                linear_constraints.linear_constraint(
                    variables.indexed_name("capacity", provider.id, dimension),
                    terms,
                    _Sense.LESS_OR_EQUAL,
                    0.0,
                )
            )
    logging.vlog(1, "Built %d capacity constraints", len(constraints))
    return constraints


def build_keep_together(
    first: definitions.Workload,
    second: definitions.Workload,
    providers: Sequence[definitions.ResourceProvider],
    registry: variables.VariableRegistry,
) -> List[linear_constraints.LinearConstraint]:
    """Returns `assign[first,p] - assign[second,p] == 0` for each provider p.

    There is one equality per provider and not a single equality on weighted
    provider indices: the latter would charge the distance between provider
    numbers instead of the mere fact of not being co-located.

    Providers that can host neither workload are skipped. A missing assignment
    variable counts as 0.
    """
    constraints = []
    for provider in providers:
        terms = []
        first_var = registry.assignment(first.id, provider.id)
        if first_var is not None:
            terms.append((1.0, first_var))
        second_var = registry.assignment(second.id, provider.id)
        if second_var is not None:
            terms.append((-1.0, second_var))
        if not terms:
            continue
        constraints.append(
            linear_constraints.linear_constraint(
                variables.indexed_name("together", first.id, second.id, provider.id),
                terms,
                _Sense.EQUAL,
                0.0,
            )
        )
    return constraints


def build_keep_apart(
    group: str,
    workloads: Sequence[definitions.Workload],
    providers: Sequence[definitions.ResourceProvider],
    registry: variables.VariableRegistry,
) -> List[linear_constraints.LinearConstraint]:
    """Returns `sum_{w in workloads} assign[w,p] <= 1` for each provider p."""
    constraints = []
    for provider in providers:
        terms = []
        for workload in workloads:
            var = registry.assignment(workload.id, provider.id)
            if var is not None:
                terms.append((1.0, var))
        # At most one candidate: already satisfied.
        if len(terms) < 2:
            continue
        constraints.append(
            linear_constraints.linear_constraint(
                variables.indexed_name("apart", group, provider.id),
                terms,
                _Sense.LESS_OR_EQUAL,
                1.0,
            )
        )
    return constraints
