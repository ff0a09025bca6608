"""
Service Layer

Business logic of the fleet back-office, kept out of the route handlers:

- **SettlementService**: rent slabs and the daily settlement calculation
- **LedgerService**: report approval/rejection, deposit and penalty ledgers, refunds
- **AdjustmentService**: ad-hoc adjustments and their folding into vehicle expenses
- **ReportService**: report submission, editing and deletion
- **OverdueService**: day-by-day overdue evaluation and the rent calendar
- **DriverService**: offline/leave/resigning transitions behind the overdue gate
- **ReportingService**: dashboard and weekly audit summaries
- **AuditService**: audit trail rows written inside the business transaction
"""

from .transaction_helper import TransactionHelper
from .audit_service import AuditService
from .settlement_service import SettlementService, SlabResolver, Settlement, SettlementDirection
from .adjustment_service import AdjustmentService
from .ledger_service import LedgerService
from .report_service import ReportService
from .overdue_service import OverdueService
from .driver_service import DriverService
from .reporting_service import ReportingService

__all__ = [
    'TransactionHelper',
    'AuditService',
    'SettlementService',
    'SlabResolver',
    'Settlement',
    'SettlementDirection',
    'AdjustmentService',
    'LedgerService',
    'ReportService',
    'OverdueService',
    'DriverService',
    'ReportingService',
]
