"""
Access Service - Feature Visibility Resolution

Responsibilities:
- Resolve which features an acting role sees on a target role under a plan
- Drive resolution asynchronously per request
- Publish results to subscribers without blocking on slow consumers
"""

from .resolver import resolve
from .service import ResolutionResult, ResolutionService, ResultSubscription

__all__ = ["resolve", "ResolutionResult", "ResolutionService", "ResultSubscription"]
