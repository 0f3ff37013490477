"""Domain services."""

from identity_service.domain.services.link_planner import LinkPlan, Scenario, plan_links
from identity_service.domain.services.reconciliation_service import ReconciliationService

__all__ = ["LinkPlan", "ReconciliationService", "Scenario", "plan_links"]
