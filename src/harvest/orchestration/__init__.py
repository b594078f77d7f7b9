"""Run orchestration: the phase state machine, the run ledger and wiring."""

from harvest.orchestration.factory import HarvestState, build_orchestrator, open_state
from harvest.orchestration.ledger import RunLedger
from harvest.orchestration.orchestrator import Orchestrator

__all__ = ["HarvestState", "Orchestrator", "RunLedger", "build_orchestrator", "open_state"]
