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

from absl.testing import absltest

from vmplacement.placement.python import definitions
from vmplacement.placement.python import elastic
from vmplacement.placement.python import errors
from vmplacement.placement.python import linear_constraints
from vmplacement.placement.python import model
from vmplacement.placement.python import objectives
from vmplacement.placement.python import parameters
from vmplacement.placement.python import variables


def _workloads():
    return [
        definitions.Workload("w1", {"cores": 4}, affinity_group="web"),
        definitions.Workload("w2", {"cores": 4}, affinity_group="web"),
        definitions.Workload("db1", {"cores": 2}, anti_affinity_group="db"),
        definitions.Workload("db2", {"cores": 2}, anti_affinity_group="db"),
    ]


def _providers():
    return [
        definitions.ResourceProvider("p1", {"cores": 16}, {"cores": 8}),
        definitions.ResourceProvider("p2", {"cores": 8}),
    ]


class AssembleTest(absltest.TestCase):

    def test_assemble(self) -> None:
        registry = variables.VariableRegistry()
        x = registry.declare_variable("x", variables.Domain.non_negative())
        hard = linear_constraints.linear_constraint(
            "hard", [(1.0, x)], linear_constraints.Sense.GREATER_OR_EQUAL, 1.0
        )
        soft = elastic.elasticize(
            linear_constraints.linear_constraint(
                "soft", [(1.0, x)], linear_constraints.Sense.LESS_OR_EQUAL, 0.0
            ),
            elastic.RelaxationPolicy.directional(4.0),
            registry,
        )
        m = model.assemble(registry, [hard], [soft], objectives.ObjectiveComposer())
        self.assertEqual(2, m.num_variables)
        self.assertEqual(2, m.num_constraints)
        self.assertEqual([hard, soft.relaxed], list(m.constraints()))
        self.assertEqual({soft.excess[0]: 4.0}, dict(m.objective.weights))
        self.assertEqual({"soft": 4.0}, m.penalties({x: 1.0, soft.excess[0]: 1.0}))
        self.assertEqual({}, m.penalties({x: 0.0}))

    def test_assemble_foreign_hard_constraint(self) -> None:
        registry = variables.VariableRegistry()
        foreign = variables.VariableRegistry().declare_variable(
            "y", variables.Domain.binary()
        )
        hard = linear_constraints.linear_constraint(
            "hard", [(1.0, foreign)], linear_constraints.Sense.EQUAL, 1.0
        )
        with self.assertRaises(errors.UnknownVariableError):
            model.assemble(registry, [hard], [], objectives.ObjectiveComposer())


class BuildPlacementModelTest(absltest.TestCase):

    def test_structure(self) -> None:
        placement = model.build_placement_model(_workloads(), _providers())
        m = placement.model
        # 8 assignments, 2 indicators, 8 tiers on p1, 2 x 2 together excesses and
        # 2 apart excesses.
        self.assertEqual(24, m.num_variables)
        self.assertEqual(6, len(m.hard_constraints))
        self.assertEqual(12, len(m.elastic_constraints))
        self.assertEqual(18, m.num_constraints)
        self.assertLen(m.objective, 14)
        self.assertEqual(
            ["unique[w1]", "unique[w2]", "unique[db1]", "unique[db2]"],
            [c.name for c in m.hard_constraints[:4]],
        )
        self.assertEqual(
            ["capacity[p1,cores]", "capacity[p2,cores]"],
            [c.name for c in m.hard_constraints[4:]],
        )

    def test_objective_weights(self) -> None:
        params = parameters.PlacementParameters(
            weights=parameters.PenaltyWeights(
                server=50.0, oversubscription=2.0, affinity=3.0, anti_affinity=4.0
            )
        )
        placement = model.build_placement_model(_workloads(), _providers(), params)
        registry = placement.registry
        weights = placement.model.objective.weights
        self.assertEqual(50.0, weights[placement.usage_indicators["p1"]])
        self.assertEqual(50.0, weights[placement.usage_indicators["p2"]])
        self.assertEqual(
            2.0, weights[registry.by_name("oversubscription[p1,cores]:tier[8]:excess")]
        )
        self.assertEqual(
            3.0, weights[registry.by_name("together[w1,w2,p1]:excess_pos")]
        )
        self.assertNotIn(
            registry.by_name("together[w1,w2,p1]:excess_neg"), placement.model.objective
        )
        self.assertEqual(4.0, weights[registry.by_name("apart[db,p2]:excess")])

    def test_tiers_only_where_oversubscribed(self) -> None:
        placement = model.build_placement_model(_workloads(), _providers())
        names = [c.name for c in placement.model.elastic_constraints]
        self.assertEqual(
            [f"oversubscription[p1,cores]:tier[{t}]" for t in range(8, 16)],
            [name for name in names if name.startswith("oversubscription")],
        )

    def test_step_granularity(self) -> None:
        params = parameters.PlacementParameters(step_granularity=4)
        placement = model.build_placement_model(_workloads(), _providers(), params)
        names = [c.name for c in placement.model.elastic_constraints]
        self.assertEqual(
            [
                "oversubscription[p1,cores]:tier[8]",
                "oversubscription[p1,cores]:tier[12]",
            ],
            [name for name in names if name.startswith("oversubscription")],
        )

    def test_zero_weight_is_left_out_of_the_objective(self) -> None:
        params = parameters.PlacementParameters(
            weights=parameters.PenaltyWeights(affinity=0.0)
        )
        placement = model.build_placement_model(_workloads(), _providers(), params)
        self.assertLen(placement.model.objective, 12)
        self.assertIn(
            placement.registry.by_name("together[w1,w2,p1]:excess_pos"),
            placement.registry,
        )

    def test_penalties(self) -> None:
        placement = model.build_placement_model(_workloads(), _providers())
        registry = placement.registry
        values = {
            placement.assignment("w1", "p1"): 1.0,
            placement.assignment("w2", "p1"): 1.0,
            placement.assignment("db1", "p1"): 1.0,
            placement.assignment("db2", "p2"): 1.0,
            placement.usage_indicators["p1"]: 1.0,
            placement.usage_indicators["p2"]: 1.0,
            registry.by_name("oversubscription[p1,cores]:tier[8]:excess"): 1.0,
            registry.by_name("oversubscription[p1,cores]:tier[9]:excess"): 1.0,
        }
        for constraint in placement.model.constraints():
            self.assertTrue(constraint.is_satisfied(values), msg=str(constraint))
        self.assertEqual(
            {
                "oversubscription[p1,cores]:tier[8]": 1.0,
                "oversubscription[p1,cores]:tier[9]": 1.0,
            },
            placement.model.penalties(values),
        )
        self.assertEqual(202.0, placement.model.objective.value(values))

    def test_builds_are_independent(self) -> None:
        first = model.build_placement_model(_workloads(), _providers())
        second = model.build_placement_model(_workloads(), _providers())
        self.assertIsNot(first.registry, second.registry)
        self.assertEqual(
            [var.name for var in first.model.variables],
            [var.name for var in second.model.variables],
        )
        self.assertEqual(
            [(var.name, w) for var, w in first.model.objective.terms()],
            [(var.name, w) for var, w in second.model.objective.terms()],
        )

    def test_duplicate_workload(self) -> None:
        workloads = _workloads() + [definitions.Workload("w1", {"cores": 1})]
        with self.assertRaisesRegex(errors.DefinitionError, "'w1'"):
            model.build_placement_model(workloads, _providers())

    def test_duplicate_provider(self) -> None:
        providers = _providers() + [definitions.ResourceProvider("p2", {"cores": 4})]
        with self.assertRaisesRegex(errors.DefinitionError, "'p2'"):
            model.build_placement_model(_workloads(), providers)

    def test_unplaceable_workload(self) -> None:
        workloads = _workloads() + [definitions.Workload("huge", {"cores": 32})]
        with self.assertRaises(errors.InfeasibleByConstructionError):
            model.build_placement_model(workloads, _providers())

    def test_ids_with_delimiters(self) -> None:
        workloads = [
            definitions.Workload("a,b", {"cores": 1}, affinity_group="g"),
            definitions.Workload("a", {"cores": 1}, affinity_group="g"),
        ]
        providers = [
            definitions.ResourceProvider("c", {"cores": 4}),
            definitions.ResourceProvider("b,c", {"cores": 4}),
        ]
        placement = model.build_placement_model(workloads, providers)
        names = [var.name for var in placement.model.variables]
        self.assertLen(set(names), len(names))
        self.assertIsNot(
            placement.assignment("a,b", "c"), placement.assignment("a", "b,c")
        )

    def test_oversubscription_in_megabytes(self) -> None:
        placement = model.build_placement_model(
            [definitions.Workload("vm", {"memory": 1000})],
            [
                definitions.ResourceProvider(
                    "s", {"memory": 1_000_005}, {"memory": 1_000_000}
                )
            ],
        )
        tiers = [
            c.name
            for c in placement.model.elastic_constraints
            if c.name.startswith("oversubscription")
        ]
        thresholds = range(1_000_000, 1_000_005)
        self.assertEqual(
            [f"oversubscription[s,memory]:tier[{t}]" for t in thresholds], tiers
        )

    def test_invalid_weight(self) -> None:
        with self.assertRaises(errors.InvalidWeightError):
            model.build_placement_model(
                _workloads(),
                _providers(),
                parameters.PlacementParameters(
                    weights=parameters.PenaltyWeights(server=-1.0)
                ),
            )


if __name__ == "__main__":
    absltest.main()
