"""Commerce bounded context: order lifecycle and payment reconciliation.

Drives orders through their business states with inventory side effects and
folds asynchronous, possibly duplicated payment provider notifications into a
single consistent payment state.
"""

import structlog
from protean.domain import Domain

commerce = Domain(name="commerce")

logger = structlog.get_logger(__name__)
