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

"""Assembles placement models.

A Model is an immutable snapshot of variables, constraints and objective that a
solver adapter can consume (see solve.py). build_placement_model() builds the
full VM placement model:

  * hard: each workload on exactly one provider, capacity of each provider
    dimension gated by the provider usage indicator,
  * soft: used providers, oversubscription tiers between the physical limit and
    the capacity of a provider dimension, split affinity groups, crowded
    anti-affinity groups.

Building is synchronous and side-effect free; each build owns its registry.
"""

import collections
import dataclasses
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from absl import logging

from vmplacement.placement.python import constraint_builder
from vmplacement.placement.python import definitions
from vmplacement.placement.python import elastic
from vmplacement.placement.python import linear_constraints
from vmplacement.placement.python import objectives
from vmplacement.placement.python import parameters as parameters_lib
from vmplacement.placement.python import tiered_penalty
from vmplacement.placement.python import variables


@dataclasses.dataclass(frozen=True)
class Model:
    """A linear model ready to be handed to a solver.

    Attributes:
      variables: All the variables, ordered by handle.
      hard_constraints: Constraints that are never relaxed.
      elastic_constraints: Relaxed constraints, only their `relaxed` form is part
        of the model.
      objective: The minimization objective.
    """

    variables: Tuple[variables.DecisionVariable, ...]
    hard_constraints: Tuple[linear_constraints.LinearConstraint, ...]
    elastic_constraints: Tuple[elastic.ElasticConstraint, ...]
    objective: objectives.ObjectiveFunction

    def constraints(self) -> Iterator[linear_constraints.LinearConstraint]:
        """Yields the hard constraints, then the relaxed ones."""
        yield from self.hard_constraints
        for constraint in self.elastic_constraints:
            yield constraint.relaxed

    @property
    def num_variables(self) -> int:
        return len(self.variables)

    @property
    def num_constraints(self) -> int:
        return len(self.hard_constraints) + len(self.elastic_constraints)

    def penalties(
        self, values: Mapping[variables.DecisionVariable, float]
    ) -> Dict[str, float]:
        """Returns the non-zero penalty of each elastic constraint by name."""
        result = {}
        for constraint in self.elastic_constraints:
            penalty = constraint.penalty(values)
            if penalty:
                result[constraint.name] = penalty
        return result


def assemble(
    registry: variables.VariableRegistry,
    hard_constraints: Iterable[linear_constraints.LinearConstraint],
    elastic_constraints: Iterable[elastic.ElasticConstraint],
    composer: objectives.ObjectiveComposer,
) -> Model:
    """Returns the Model made of the given parts.

    The weights carried by the elastic constraints are charged to `composer`
    before the objective is composed.

    Raises:
      UnweightedCostVariableError: if a cost-bearing variable has no weight.
      UnknownVariableError: if a constraint uses a variable of another registry.
    """
    hard_constraints = tuple(hard_constraints)
    elastic_constraints = tuple(elastic_constraints)
    for constraint in hard_constraints:
        for var in constraint.term_variables():
            registry.check_owns(var)
    for constraint in elastic_constraints:
        composer.charge(constraint)
    return Model(
        variables=registry.variables,
        hard_constraints=hard_constraints,
        elastic_constraints=elastic_constraints,
        objective=composer.compose(registry),
    )


@dataclasses.dataclass(frozen=True)
class PlacementModel:
    """A VM placement model and the definitions it was built from.

    Attributes:
      model: The model to solve.
      registry: The registry of the build, to look variables up.
      workloads: The workloads, in input order.
      providers: The providers, in input order.
      usage_indicators: used[p] keyed by provider id.
    """

    model: Model
    registry: variables.VariableRegistry
    workloads: Tuple[definitions.Workload, ...]
    providers: Tuple[definitions.ResourceProvider, ...]
    usage_indicators: Mapping[str, variables.DecisionVariable]

    def assignment(
        self, workload_id: str, provider_id: str
    ) -> Optional[variables.DecisionVariable]:
        return self.registry.assignment(workload_id, provider_id)


def _groups(
    workloads: Sequence[definitions.Workload], key: str
) -> Dict[str, List[definitions.Workload]]:
    groups = collections.defaultdict(list)
    for workload in workloads:
        group = getattr(workload, key)
        if group is not None:
            groups[group].append(workload)
    return groups


def build_placement_model(
    workloads: Iterable[definitions.Workload],
    providers: Iterable[definitions.ResourceProvider],
    params: Optional[parameters_lib.PlacementParameters] = None,
) -> PlacementModel:
    """Builds the VM placement model.

    Args:
      workloads: The workloads to place.
      providers: The candidate providers. The pool must be finite; sizing an
        unbounded pool is up to the caller.
      params: Weights and tier granularity, the defaults if None.

    Returns:
      The placement model.

    Raises:
      DefinitionError: on duplicate ids or a workload no provider can host.
      PolicyError: on invalid weights or tier configuration.
    """
    params = params or parameters_lib.PlacementParameters()
    weights = params.weights
    workloads = tuple(workloads)
    providers = tuple(providers)
    definitions.check_unique_ids(workloads, providers)

    registry = variables.VariableRegistry()
    composer = objectives.ObjectiveComposer()
    registry.declare_assignment_matrix(workloads, providers)
    usage_indicators = registry.declare_usage_indicators(providers)
    for indicator in usage_indicators.values():
        composer.set_weight(indicator, weights.server)

    hard: List[linear_constraints.LinearConstraint] = []
    hard.extend(
        constraint_builder.build_assignment_uniqueness(workloads, providers, registry)
    )
    hard.extend(
        constraint_builder.build_capacity(
            providers, workloads, registry, usage_indicators
        )
    )

    soft: List[elastic.ElasticConstraint] = []
    for provider in providers:
        for dimension in provider.dimensions:
            baseline = provider.physical_limit_for(dimension)
            ceiling = provider.capacity_for(dimension)
            if baseline >= ceiling:
                continue
            terms = constraint_builder.usage_terms(
                provider, dimension, workloads, registry
            )
            if not terms:
                continue
            soft.extend(
                tiered_penalty.build_tiered_overage_penalty(
                    variables.indexed_name("oversubscription", provider.id, dimension),
                    terms,
                    baseline,
                    ceiling,
                    registry,
                    weight=weights.oversubscription,
                    step_granularity=params.step_granularity,
                    growth=weights.oversubscription_growth,
                )
            )

    for members in _groups(workloads, "affinity_group").values():
        for first, second in zip(members, members[1:]):
            soft.extend(
                elastic.elasticize_keep_together(
                    constraint_builder.build_keep_together(
                        first, second, providers, registry
                    ),
                    weights.affinity,
                    registry,
                )
            )

    apart_policy = elastic.RelaxationPolicy.directional(weights.anti_affinity)
    for group, members in _groups(workloads, "anti_affinity_group").items():
        for constraint in constraint_builder.build_keep_apart(
            group, members, providers, registry
        ):
            soft.append(elastic.elasticize(constraint, apart_policy, registry))

    model = assemble(registry, hard, soft, composer)
    logging.info(
        "Built placement model: %d workloads, %d providers, %d variables,"
        " %d hard and %d elastic constraints, %d objective terms",
        len(workloads),
        len(providers),
        model.num_variables,
        len(model.hard_constraints),
        len(model.elastic_constraints),
        len(model.objective),
    )
    return PlacementModel(
        model=model,
        registry=registry,
        workloads=workloads,
        providers=providers,
        usage_indicators=usage_indicators,
    )
