from stockflow.models.location import Location, LocationAccessScope
from stockflow.models.product import Product, ProductVariation
from stockflow.models.inventory import StockLedgerEntry, StockProjection
from stockflow.models.transfer import StockTransfer, StockTransferItem
from stockflow.models.transfer_policy import TransferPolicySettings
from stockflow.models.transfer_job import TransferJob
from stockflow.models.reconciliation import ReconciliationRun
from stockflow.models.audit_log import AuditLog
