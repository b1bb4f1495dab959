from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase, override_settings

from testing.financial import runner


@override_settings(ALLOW_TEST_SCENARIOS=True)
class ScenarioRunnerTests(TestCase):
    def test_every_scenario_passes(self):
        self.assertEqual(runner.run_all(stop_on_failure=False), [])

    def test_scenarios_can_run_twice(self):
        runner.run_scenario("no_show_refund")
        runner.run_scenario("no_show_refund")

    def test_unknown_scenario(self):
        with self.assertRaises(Exception):
            runner.run_scenario("nope")


@override_settings(ALLOW_TEST_SCENARIOS=False)
class ScenarioGuardTests(TestCase):
    def test_disabled_environment_refuses(self):
        with self.assertRaises(CommandError):
            call_command("run_financial_scenarios", scenario="overspend")
