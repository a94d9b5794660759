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

"""Encodes a graduated overage penalty as a ladder of elastic constraints.

Usage above a baseline (e.g. the physical cores of a server) and up to a hard
ceiling (e.g. twice that many cores with hyper-threading) is charged tier by
tier. The tier thresholds are baseline, baseline + step, ... below ceiling. Each
tier is the constraint
  usage - (ceiling - threshold) * over[threshold] <= threshold
with a binary excess over[threshold], which the solver sets to 1 exactly when
usage exceeds the threshold. Tier i costs weight * growth**i, so the marginal
cost of each extra unit never decreases and no non-linear term is needed.

With step_granularity=1 and growth=1, k integral units over the baseline cost
exactly weight * k. A coarser step needs fewer constraints but charges a whole
tier as soon as it is entered: the error is at most one tier weight, i.e.
O(step_granularity) units of cost per step.
"""

import math
from typing import List, Sequence, Tuple

from absl import logging

from vmplacement.placement.python import elastic
from vmplacement.placement.python import errors
from vmplacement.placement.python import linear_constraints
from vmplacement.placement.python import variables


def tier_thresholds(
    baseline: float, ceiling: float, step_granularity: int = 1
) -> List[float]:
    """Returns baseline, baseline + step, ... strictly below ceiling.

    Raises:
      InvalidTierError: if step_granularity < 1 or ceiling <= baseline.
    """
    if isinstance(step_granularity, bool) or not isinstance(step_granularity, int):
        raise errors.InvalidTierError(
            f"step granularity must be an integer, got {step_granularity!r}"
        )
    if step_granularity < 1:
        raise errors.InvalidTierError(
            f"step granularity must be >= 1, got {step_granularity}"
        )
    if not (math.isfinite(baseline) and math.isfinite(ceiling)):
        raise errors.InvalidTierError(
            f"baseline and ceiling must be finite, got {baseline} and {ceiling}"
        )
    if ceiling <= baseline:
        raise errors.InvalidTierError(
            f"ceiling {ceiling} must be above baseline {baseline}"
        )
    thresholds = []
    threshold = baseline
    while threshold < ceiling:
        thresholds.append(threshold)
        if threshold + step_granularity == threshold:
            raise errors.InvalidTierError(
                f"step granularity {step_granularity} is below the float"
                f" resolution at {threshold}"
            )
        threshold += step_granularity
    return thresholds


def _format_threshold(threshold: float) -> str:
    """Writes integral thresholds without a fractional part, others exactly."""
    if float(threshold).is_integer():
        return str(int(threshold))
    return repr(float(threshold))


def build_tiered_overage_penalty(
    name: str,
    terms: Sequence[Tuple[float, variables.DecisionVariable]],
    baseline: float,
    ceiling: float,
    registry: variables.VariableRegistry,
    *,
    weight: float,
    step_granularity: int = 1,
    growth: float = 1.0,
) -> Tuple[elastic.ElasticConstraint, ...]:
    """Returns the tiers charging `terms` for exceeding `baseline`.

    Args:
      name: Prefix of the tier constraint names, `<name>:tier[<threshold>]`.
      terms: The (coefficient, variable) pairs of the usage expression.
      baseline: Usage up to this value is free.
      ceiling: The maximum usage, enforced elsewhere (e.g. by capacity).
      registry: The registry in which the tier variables are declared.
      weight: Cost of the first tier.
      step_granularity: Distance between two thresholds.
      growth: Ratio between the weights of two consecutive tiers, >= 1.

    Returns:
      The tiers, ordered by increasing threshold.

    Raises:
      InvalidTierError: if the ladder has no tier or growth < 1.
      InvalidWeightError: if weight is negative or not finite.
    """
    elastic.check_weight(weight, repr(name))
    if not math.isfinite(growth) or growth < 1:
        raise errors.InvalidTierError(f"{name!r}: growth must be >= 1, got {growth}")
    tiers = []
    for i, threshold in enumerate(tier_thresholds(baseline, ceiling, step_granularity)):
        hard = linear_constraints.linear_constraint(
            f"{name}:tier[{_format_threshold(threshold)}]",
            terms,
            linear_constraints.Sense.LESS_OR_EQUAL,
            threshold,
        )
        policy = elastic.RelaxationPolicy.indicator(
            scale=ceiling - threshold, weight=weight * growth**i
        )
        tiers.append(elastic.elasticize(hard, policy, registry))
    logging.vlog(
        1, "Built %d tiers for %r in (%g, %g]", len(tiers), name, baseline, ceiling
    )
    return tuple(tiers)
