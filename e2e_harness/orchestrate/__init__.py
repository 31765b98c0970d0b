"""Setup, execution and teardown of an end-to-end browser-test run."""

from e2e_harness.orchestrate.run import E2EOrchestrator
from e2e_harness.orchestrate.state import RunState, ShutdownOutcome

__all__ = ["E2EOrchestrator", "RunState", "ShutdownOutcome"]
