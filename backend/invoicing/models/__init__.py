from .customers import Customer
from .inventory import Purchase, VirtualProduct, VirtualProductComponent, VirtualProductExpense
from .invoices import Invoice, InvoiceItem, InvoicePayment
from .ledger import LedgerEntry
from .documents import SequenceCounter, SyncEvent

__all__ = [
    'Customer',
    'Purchase', 'VirtualProduct', 'VirtualProductComponent', 'VirtualProductExpense',
    'Invoice', 'InvoiceItem', 'InvoicePayment',
    'LedgerEntry',
    'SequenceCounter', 'SyncEvent',
]
