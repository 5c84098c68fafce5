from .risk_scanner import RiskScanner
from .trend import compute_trend, risk_slope

__all__ = ["RiskScanner", "compute_trend", "risk_slope"]
