"""PageSpeed Insights scorer client and response reducer."""

from psi_runner.scorer.client import PageSpeedClient
from psi_runner.scorer.reducer import reduce_response
from psi_runner.scorer.throttle import CallSpacer

__all__ = ["CallSpacer", "PageSpeedClient", "reduce_response"]
