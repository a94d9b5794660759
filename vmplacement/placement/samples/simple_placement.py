#!/usr/bin/env python3
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

"""Places a few VMs on servers, trading server count for oversubscription."""

from collections.abc import Sequence
import datetime
import io
from typing import Optional

from absl import app
from absl import flags
from absl import logging
import pandas as pd

from vmplacement.placement.python import definitions
from vmplacement.placement.python import model
from vmplacement.placement.python import parameters
from vmplacement.placement.python import solve

_SOLVER = flags.DEFINE_string(
    "solver", "scip", "The model_builder backend to solve with."
)
_TIME_LIMIT = flags.DEFINE_float(
    "time_limit", 10.0, "Time limit of the solve, in seconds."
)
_SERVER_WEIGHT = flags.DEFINE_float(
    "server_weight", 100.0, "Cost of each used server."
)
_OVERSUBSCRIPTION_WEIGHT = flags.DEFINE_float(
    "oversubscription_weight", 5.0, "Cost of the first oversubscribed core."
)
_STEP_GRANULARITY = flags.DEFINE_integer(
    "step_granularity", 1, "Cores per oversubscription tier."
)
_ENABLE_OUTPUT = flags.DEFINE_bool(
    "enable_output", False, "Print the solver logs."
)


def create_data_model() -> tuple[pd.DataFrame, pd.DataFrame]:
  """Create the data for the example."""

  vms_str = """
  vm    cores  memory  affinity  anti_affinity
  web1      4       8       web             -
  web2      4       8       web             -
  db1       8      32         -            db
  db2       8      32         -            db
  cache     2      16       web             -
  batch     6      12         -             -
  """

  servers_str = """
  server  physical_cores  cores  memory
  s1                   8     16      64
  s2                   8     16      64
  s3                  16     16      64
  """

  vms = pd.read_table(
      io.StringIO(vms_str), index_col=0, sep=r"\s+", na_values="-"
  )
  servers = pd.read_table(io.StringIO(servers_str), index_col=0, sep=r"\s+")
  return vms, servers


def _optional(value) -> Optional[str]:
  return None if pd.isna(value) else str(value)


def main(argv: Sequence[str]) -> None:
  if len(argv) > 1:
    raise app.UsageError("Too many command-line arguments.")

  vms, servers = create_data_model()
  workloads = [
      definitions.Workload(
          id=str(name),
          demand={"cores": float(row.cores), "memory": float(row.memory)},
          affinity_group=_optional(row.affinity),
          anti_affinity_group=_optional(row.anti_affinity),
      )
      for name, row in vms.iterrows()
  ]
  providers = [
      definitions.ResourceProvider(
          id=str(name),
          capacity={"cores": float(row.cores), "memory": float(row.memory)},
          physical_limit={"cores": float(row.physical_cores)},
      )
      for name, row in servers.iterrows()
  ]

  params = parameters.PlacementParameters(
      weights=parameters.PenaltyWeights(
          server=_SERVER_WEIGHT.value,
          oversubscription=_OVERSUBSCRIPTION_WEIGHT.value,
      ),
      step_granularity=_STEP_GRANULARITY.value,
      solver_name=_SOLVER.value,
      time_limit=datetime.timedelta(seconds=_TIME_LIMIT.value),
      enable_output=_ENABLE_OUTPUT.value,
  )

  placement = model.build_placement_model(workloads, providers, params)
  result = solve.solve(placement.model, params)
  if not result.has_solution:
    logging.error("No placement found, solver status: %s", result.status.name)
    return

  print(f"Objective = {result.objective_value}")
  assigned = solve.placement_of(result, placement)
  for server in solve.used_providers(result, placement):
    hosted = [vm for vm, s in assigned.items() if s == server]
    cores = int(vms.loc[hosted].cores.sum())
    print(
        f"Server {server}: {', '.join(hosted)}"
        f" ({cores}/{servers.loc[server].physical_cores} physical cores)"
    )
  for name, penalty in placement.model.penalties(result.values).items():
    print(f"  penalty {name}: {penalty:g}")


if __name__ == "__main__":
  app.run(main)
