from django.core.management.base import BaseCommand, CommandError

from testing.financial.runner import AVAILABLE_SCENARIOS, run_all, run_scenario


class Command(BaseCommand):
    help = "Run ledger and video date scenarios against the configured database (guarded by ALLOW_TEST_SCENARIOS)."

    def add_arguments(self, parser):
        parser.add_argument(
            "--scenario",
            type=str,
            help=f"Run only one scenario. Available: {', '.join(AVAILABLE_SCENARIOS.keys())}",
        )
        parser.add_argument(
            "--list",
            action="store_true",
            help="List available scenarios and exit.",
        )
        parser.add_argument(
            "--keep-going",
            action="store_true",
            help="Run every scenario even after a failure.",
        )

    def handle(self, *args, **options):
        if options.get("list"):
            for name in AVAILABLE_SCENARIOS:
                self.stdout.write(name)
            return

        scenario = options.get("scenario")
        self.stdout.write(self.style.WARNING("=== Ledger Scenario Runner ==="))
        if scenario:
            self.stdout.write(f"Running one scenario: {scenario}")
            try:
                run_scenario(scenario)
            except Exception as exc:
                raise CommandError(f"Scenario {scenario} failed: {exc}")
            self.stdout.write(self.style.SUCCESS("Scenario passed."))
            return

        self.stdout.write("Running all scenarios...")
        try:
            failures = run_all(stop_on_failure=not options.get("keep_going"))
        except Exception as exc:
            raise CommandError(f"Scenario run failed: {exc}")
        if failures:
            for name, exc in failures:
                self.stderr.write(self.style.ERROR(f"✗ {name}: {exc}"))
            raise CommandError(f"{len(failures)} of {len(AVAILABLE_SCENARIOS)} scenarios failed.")
        self.stdout.write(self.style.SUCCESS("All requested scenarios passed."))
