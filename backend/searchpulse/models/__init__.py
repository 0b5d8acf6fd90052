from searchpulse.models.audit_log import AuditLog
from searchpulse.models.opportunity import Opportunity
from searchpulse.models.search_metrics import PageMetric, QueryMetric
from searchpulse.models.sync_state import SyncState
from searchpulse.models.task_execution import TaskExecution

__all__ = [
    'AuditLog',
    'Opportunity',
    'PageMetric',
    'QueryMetric',
    'SyncState',
    'TaskExecution',
]
