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

from vmplacement.placement.python import constraint_builder
from vmplacement.placement.python import definitions
from vmplacement.placement.python import errors
from vmplacement.placement.python import linear_constraints
from vmplacement.placement.python import variables

_Sense = linear_constraints.Sense


class ConstraintBuilderTest(absltest.TestCase):

    def setUp(self) -> None:
        super().setUp()
        self.workloads = [
            definitions.Workload("w1", {"cores": 2, "memory": 4}),
            definitions.Workload("w2", {"cores": 6}),
            definitions.Workload("w3", {"cores": 10, "memory": 8}),
        ]
        self.providers = [
            definitions.ResourceProvider("p1", {"cores": 8, "memory": 16}),
            definitions.ResourceProvider("p2", {"cores": 16, "memory": 16}),
        ]
        self.registry = variables.VariableRegistry()
        self.registry.declare_assignment_matrix(self.workloads, self.providers)
        self.indicators = self.registry.declare_usage_indicators(self.providers)

    def assign(self, w: str, p: str) -> variables.DecisionVariable:
        var = self.registry.assignment(w, p)
        self.assertIsNotNone(var)
        return var

    def test_assignment_uniqueness(self) -> None:
        constraints = constraint_builder.build_assignment_uniqueness(
            self.workloads, self.providers, self.registry
        )
        self.assertLen(constraints, len(self.workloads))
        self.assertEqual(
            ["unique[w1]", "unique[w2]", "unique[w3]"], [c.name for c in constraints]
        )
        for c in constraints:
            self.assertEqual(_Sense.EQUAL, c.sense)
            self.assertEqual(1.0, c.rhs)
            self.assertTrue(all(term.coefficient == 1.0 for term in c.terms))
        self.assertEqual(
            (self.assign("w1", "p1"), self.assign("w1", "p2")),
            constraints[0].term_variables(),
        )
        # w3 only fits on p2.
        self.assertEqual((self.assign("w3", "p2"),), constraints[2].term_variables())

    def test_assignment_uniqueness_on_a_placement(self) -> None:
        constraints = constraint_builder.build_assignment_uniqueness(
            self.workloads, self.providers, self.registry
        )
        values = {
            self.assign("w1", "p1"): 1.0,
            self.assign("w2", "p1"): 1.0,
            self.assign("w3", "p2"): 1.0,
        }
        for c in constraints:
            self.assertEqual(1.0, c.activity(values))

    def test_assignment_uniqueness_infeasible_by_construction(self) -> None:
        huge = definitions.Workload("huge", {"cores": 64})
        self.registry.declare_assignment_matrix([huge], self.providers)
        with self.assertRaisesRegex(errors.InfeasibleByConstructionError, "'huge'"):
            constraint_builder.build_assignment_uniqueness(
                self.workloads + [huge], self.providers, self.registry
            )

    def test_assignment_uniqueness_needs_the_matrix(self) -> None:
        with self.assertRaises(errors.UnknownVariableError):
            constraint_builder.build_assignment_uniqueness(
                self.workloads, self.providers, variables.VariableRegistry()
            )

    def test_capacity(self) -> None:
        constraints = constraint_builder.build_capacity(
            self.providers, self.workloads, self.registry, self.indicators
        )
        self.assertEqual(
            [
                "capacity[p1,cores]",
                "capacity[p1,memory]",
                "capacity[p2,cores]",
                "capacity[p2,memory]",
            ],
            [c.name for c in constraints],
        )
        p1_cores = constraints[0]
        self.assertEqual(_Sense.LESS_OR_EQUAL, p1_cores.sense)
        self.assertEqual(0.0, p1_cores.rhs)
        self.assertEqual(2.0, p1_cores.coefficient(self.assign("w1", "p1")))
        self.assertEqual(6.0, p1_cores.coefficient(self.assign("w2", "p1")))
        self.assertEqual(-8.0, p1_cores.coefficient(self.indicators["p1"]))
        # w2 has no memory demand: it does not appear in the memory constraint.
        p2_memory = constraints[3]
        self.assertEqual(
            (
                self.assign("w1", "p2"),
                self.assign("w3", "p2"),
                self.indicators["p2"],
            ),
            p2_memory.term_variables(),
        )

    def test_capacity_gated_by_usage_indicator(self) -> None:
        constraints = constraint_builder.build_capacity(
            self.providers, self.workloads, self.registry, self.indicators
        )
        p1_cores = constraints[0]
        values = {self.assign("w1", "p1"): 1.0, self.indicators["p1"]: 0.0}
        self.assertFalse(p1_cores.is_satisfied(values))
        values[self.indicators["p1"]] = 1.0
        self.assertTrue(p1_cores.is_satisfied(values))

    def test_capacity_missing_indicator(self) -> None:
        with self.assertRaises(errors.UnknownVariableError):
            constraint_builder.build_capacity(
                self.providers, self.workloads, self.registry, {}
            )

    def test_usage_terms(self) -> None:
        terms = constraint_builder.usage_terms(
            self.providers[1], "memory", self.workloads, self.registry
        )
        self.assertEqual(
            [(4, self.assign("w1", "p2")), (8, self.assign("w3", "p2"))], terms
        )

    def test_keep_together_one_equality_per_provider(self) -> None:
        constraints = constraint_builder.build_keep_together(
            self.workloads[0], self.workloads[1], self.providers, self.registry
        )
        self.assertEqual(
            ["together[w1,w2,p1]", "together[w1,w2,p2]"], [c.name for c in constraints]
        )
        for c, p in zip(constraints, ("p1", "p2")):
            self.assertEqual(_Sense.EQUAL, c.sense)
            self.assertEqual(0.0, c.rhs)
            self.assertEqual(1.0, c.coefficient(self.assign("w1", p)))
            self.assertEqual(-1.0, c.coefficient(self.assign("w2", p)))

    def test_keep_together_ineligible_provider(self) -> None:
        constraints = constraint_builder.build_keep_together(
            self.workloads[0], self.workloads[2], self.providers, self.registry
        )
        # w3 cannot be on p1, so assign[w1,p1] alone must be 0.
        self.assertEqual((self.assign("w1", "p1"),), constraints[0].term_variables())
        self.assertLen(constraints[1].terms, 2)

    def test_keep_apart(self) -> None:
        constraints = constraint_builder.build_keep_apart(
            "g", self.workloads, self.providers, self.registry
        )
        self.assertEqual(["apart[g,p1]", "apart[g,p2]"], [c.name for c in constraints])
        self.assertLen(constraints[0].terms, 2)
        self.assertLen(constraints[1].terms, 3)
        self.assertEqual(_Sense.LESS_OR_EQUAL, constraints[0].sense)
        self.assertEqual(1.0, constraints[0].rhs)

    def test_keep_apart_skips_trivial_providers(self) -> None:
        constraints = constraint_builder.build_keep_apart(
            "g", [self.workloads[0], self.workloads[2]], self.providers, self.registry
        )
        self.assertEqual(["apart[g,p2]"], [c.name for c in constraints])


if __name__ == "__main__":
    absltest.main()
