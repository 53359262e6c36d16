from atrium.orchestrator.fallback import UncertaintyFallback, matches_uncertainty
from atrium.orchestrator.loop import Orchestrator, TurnRequest, TurnResult, guarded

__all__ = [
    "Orchestrator",
    "TurnRequest",
    "TurnResult",
    "UncertaintyFallback",
    "guarded",
    "matches_uncertainty",
]
