"""Control Plane - background work driven by the registry.

- NodeHealthMonitor: on-demand probes and the fleet radar sweep
- ReconciliationPoller: per-instance state poll chains (resumed at startup)
- WorkflowScheduler: per-instance automation jobs plus the liveness loop

``skyport.control.plane`` wires these together with the services.
"""

from skyport.control.health import NodeHealthMonitor
from skyport.control.reconciler import ReconciliationPoller
from skyport.control.scheduler import WorkflowScheduler

__all__ = ["NodeHealthMonitor", "ReconciliationPoller", "WorkflowScheduler"]
