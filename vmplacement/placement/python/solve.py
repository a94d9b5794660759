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

"""Solves placement models with an OR-Tools model_builder backend.

The solve is a single blocking call. The only way to bound it is the time limit
of the parameters. The status reported by the backend is passed through
unchanged: an infeasible model is not an error here, it is a result whose
status is SolveStatus.INFEASIBLE.
"""

import dataclasses
import math
from typing import Dict, List, Mapping, Optional, Tuple

from absl import logging
import immutabledict
import numpy as np

from ortools.linear_solver.python import model_builder as mb
from vmplacement.placement.python import errors
from vmplacement.placement.python import linear_constraints
from vmplacement.placement.python import model as model_lib
from vmplacement.placement.python import parameters as parameters_lib
from vmplacement.placement.python import variables

SolveStatus = mb.SolveStatus

_SOLVED_STATUSES = frozenset({SolveStatus.OPTIMAL, SolveStatus.FEASIBLE})


@dataclasses.dataclass(frozen=True)
class SolveResult:
    """The outcome of a solve.

    Attributes:
      status: The status reported by the solver, unchanged.
      objective_value: The objective value of the solution, NaN without one.
      values: The value of each variable, ordered by handle. Empty without a
        solution.
      wall_time: Solve time in seconds.
      status_string: Extra information from the solver about the status.
    """

    status: SolveStatus
    objective_value: float = math.nan
    values: Mapping[variables.DecisionVariable, float] = (
        immutabledict.immutabledict()
    )
    wall_time: float = 0.0
    status_string: str = ""

    @property
    def has_solution(self) -> bool:
        return self.status in _SOLVED_STATUSES

    def check_solved(self) -> None:
        """Raises SolverInfeasibleError if the solver returned no solution."""
        if not self.has_solution:
            raise errors.SolverInfeasibleError(
                f"no solution, solver status: {self.status.name}"
                + (f" ({self.status_string})" if self.status_string else "")
            )

    def value(self, var: variables.DecisionVariable) -> float:
        """Returns the value of a variable.

        Raises:
          SolverInfeasibleError: if there is no solution.
        """
        self.check_solved()
        return self.values[var]


def _add_constraint(
    mb_model: mb.Model,
    constraint: linear_constraints.LinearConstraint,
    mb_vars: Dict[int, mb.Variable],
) -> None:
    if constraint.terms:
        expr = mb.LinearExpr.weighted_sum(
            [mb_vars[term.variable.handle] for term in constraint.terms],
            [term.coefficient for term in constraint.terms],
        )
    else:
        expr = 0.0
    lb, ub = constraint.rhs, constraint.rhs
    if constraint.sense == linear_constraints.Sense.LESS_OR_EQUAL:
        lb = -math.inf
    elif constraint.sense == linear_constraints.Sense.GREATER_OR_EQUAL:
        ub = math.inf
    mb_model.add_linear_constraint(expr, lb, ub, constraint.name)


def to_model_builder(
    model: model_lib.Model,
) -> Tuple[mb.Model, Dict[int, mb.Variable]]:
    """Returns the model_builder model of `model` and its variables by handle."""
    mb_model = mb.Model()
    mb_vars: Dict[int, mb.Variable] = {}
    for var in model.variables:
        domain = var.domain
        if domain.kind == variables.DomainKind.BINARY:
            mb_vars[var.handle] = mb_model.new_bool_var(var.name)
        else:
            mb_vars[var.handle] = mb_model.new_num_var(
                domain.lower_bound, domain.upper_bound, var.name
            )
    for constraint in model.constraints():
        _add_constraint(mb_model, constraint, mb_vars)
    terms = list(model.objective.terms())
    if terms:
        mb_model.minimize(
            mb.LinearExpr.weighted_sum(
                [mb_vars[var.handle] for var, _ in terms],
                [weight for _, weight in terms],
            )
        )
    else:
        mb_model.minimize(0.0)
    return mb_model, mb_vars


def solve(
    model: model_lib.Model,
    params: Optional[parameters_lib.PlacementParameters] = None,
) -> SolveResult:
    """Solves `model` and returns the solver's verdict.

    Args:
      model: The model to solve.
      params: Solver name, time limit and output, the defaults if None.

    Returns:
      The result, whose status is the solver status unchanged.

    Raises:
      SolverUnavailableError: if the solver backend is not available.
    """
    params = params or parameters_lib.PlacementParameters()
    solver = mb.Solver(params.solver_name)
    if not solver.solver_is_supported():
        raise errors.SolverUnavailableError(
            f"solver {params.solver_name!r} is not supported"
        )
    if params.time_limit is not None:
        solver.set_time_limit_in_seconds(params.time_limit.total_seconds())
    if params.solver_specific_parameters:
        solver.set_solver_specific_parameters(params.solver_specific_parameters)
    solver.enable_output(params.enable_output)

    mb_model, mb_vars = to_model_builder(model)
    status = solver.solve(mb_model)
    logging.info(
        "Solved with %s: status %s in %.3fs",
        params.solver_name,
        status.name,
        solver.wall_time,
    )
    if status not in _SOLVED_STATUSES:
        return SolveResult(
            status=status,
            wall_time=float(solver.wall_time),
            status_string=solver.status_string,
        )
    values = {var: float(solver.value(mb_vars[var.handle])) for var in model.variables}
    return SolveResult(
        status=status,
        objective_value=float(solver.objective_value),
        values=immutabledict.immutabledict(values),
        wall_time=float(solver.wall_time),
        status_string=solver.status_string,
    )


def placement_of(
    result: SolveResult, placement: model_lib.PlacementModel
) -> Dict[str, str]:
    """Returns the provider id of each workload id.

    Raises:
      SolverInfeasibleError: if there is no solution.
    """
    result.check_solved()
    assigned = {}
    for workload in placement.workloads:
        for provider_id, var in placement.registry.assignments_of_workload(
            workload.id
        ):
            if result.values[var] > 0.5:
                assigned[workload.id] = provider_id
                break
    return assigned


def used_providers(
    result: SolveResult, placement: model_lib.PlacementModel
) -> List[str]:
    """Returns the ids of the providers hosting at least one workload."""
    return sorted(
        set(placement_of(result, placement).values()),
        key=[p.id for p in placement.providers].index,
    )


def assignment_matrix(
    result: SolveResult, placement: model_lib.PlacementModel
) -> np.ndarray:
    """Returns the 0-1 workloads x providers matrix of the solution.

    Rows follow placement.workloads and columns placement.providers. Ineligible
    pairs are 0.
    """
    result.check_solved()
    matrix = np.zeros(
        (len(placement.workloads), len(placement.providers)), dtype=np.int64
    )
    for i, workload in enumerate(placement.workloads):
        for j, provider in enumerate(placement.providers):
            var = placement.registry.assignment(workload.id, provider.id)
            if var is not None:
                matrix[i, j] = int(round(result.values[var]))
    return matrix
