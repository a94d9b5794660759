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

"""Workloads and resource providers of a placement problem."""

import dataclasses
from typing import Iterable, Mapping, Optional, Tuple

import immutabledict

from vmplacement.placement.python import errors


@dataclasses.dataclass(frozen=True)
class Workload:
    """A workload (e.g. a virtual machine) to place on a provider.

    Attributes:
      id: Unique identifier of the workload in a build.
      demand: The resources needed, keyed by dimension (e.g. "cores"). A
        dimension missing from the mapping has a demand of 0.
      affinity_group: Workloads sharing this group should be placed on the same
        provider.
      anti_affinity_group: Workloads sharing this group should be placed on
        distinct providers.
    """

    id: str
    demand: Mapping[str, float] = immutabledict.immutabledict()
    affinity_group: Optional[str] = None
    anti_affinity_group: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "demand", immutabledict.immutabledict(self.demand))

    def demand_for(self, dimension: str) -> float:
        return self.demand.get(dimension, 0.0)


@dataclasses.dataclass(frozen=True)
class ResourceProvider:
    """A provider (e.g. a server) hosting workloads.

    Attributes:
      id: Unique identifier of the provider in a build.
      capacity: The maximum amount of each resource, including any
        oversubscription headroom.
      physical_limit: The physical amount of each resource. Usage between the
        physical limit and the capacity is oversubscription. Dimensions missing
        from the mapping are not oversubscribed.
    """

    id: str
    capacity: Mapping[str, float] = immutabledict.immutabledict()
    physical_limit: Mapping[str, float] = immutabledict.immutabledict()

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "capacity", immutabledict.immutabledict(self.capacity)
        )
        object.__setattr__(
            self, "physical_limit", immutabledict.immutabledict(self.physical_limit)
        )

    @property
    def dimensions(self) -> Tuple[str, ...]:
        return tuple(self.capacity)

    def capacity_for(self, dimension: str) -> float:
        return self.capacity.get(dimension, 0.0)

    def physical_limit_for(self, dimension: str) -> float:
        return self.physical_limit.get(dimension, self.capacity_for(dimension))

    def can_host(self, workload: Workload) -> bool:
        """Returns True if the workload alone fits within this provider."""
        return all(
            amount <= self.capacity_for(dimension)
            for dimension, amount in workload.demand.items()
        )


def check_unique_ids(
    workloads: Iterable[Workload], providers: Iterable[ResourceProvider]
) -> None:
    """Raises DefinitionError if two workloads or two providers share an id."""
    for kind, items in (("workload", workloads), ("provider", providers)):
        seen = set()
        for item in items:
            if item.id in seen:
                raise errors.DefinitionError(f"duplicate {kind} id: {item.id!r}")
            seen.add(item.id)
