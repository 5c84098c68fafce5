from .sla import SLAMonitor, SLARecord, SLAResult

__all__ = ["SLAMonitor", "SLARecord", "SLAResult"]
