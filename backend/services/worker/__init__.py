"""Job queue, worker tick, stage handlers, recovery sweep and scheduling trigger."""
