"""BDD tests for the refund workflow."""

from pytest_bdd import scenarios

scenarios("features/refund_workflow.feature")
