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

"""Errors raised while building and solving placement models.

The errors derive from the standard Python error we would raise for the same
problem, so that callers catching ValueError or RuntimeError keep working:
  - DefinitionError, PolicyError: ValueError
  - SolverError: RuntimeError

Definition and policy errors are always raised synchronously during the build
and abort it; no partial model is ever returned.
"""


class PlacementError(Exception):
    """Base class of all the errors raised by this package."""


class DefinitionError(PlacementError, ValueError):
    """A structural problem with the workloads, providers or variables.

    The caller must fix its inputs and rebuild the model.
    """


class DuplicateVariableError(DefinitionError):
    """A variable with the same name is already registered."""


class UnknownVariableError(DefinitionError):
    """The variable does not belong to the registry it is used with."""


class InfeasibleByConstructionError(DefinitionError):
    """A workload cannot be hosted by any of the providers."""


class PolicyError(PlacementError, ValueError):
    """A misconfigured relaxation or weighting policy.

    The caller can recover by supplying a corrected policy.
    """


class InvalidBandError(PolicyError):
    """A banded relaxation whose tolerance window does not contain 0."""


class InvalidWeightError(PolicyError):
    """A negative or non-finite weight, or a weight on a cost-free variable."""


class InvalidTierError(PolicyError):
    """A tiered penalty ladder that cannot produce any tier."""


class UnweightedCostVariableError(PolicyError):
    """A cost-bearing variable was never given a weight."""


class SolverError(PlacementError, RuntimeError):
    """Errors reported at the solver boundary."""


class SolverUnavailableError(SolverError):
    """The requested solver backend is not available in this build."""


class SolverInfeasibleError(SolverError):
    """The solver did not produce a solution, see SolveResult.status."""
