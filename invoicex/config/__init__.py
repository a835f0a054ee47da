from .invoicex_config import InvoiceXConfig

__all__ = ['InvoiceXConfig']
