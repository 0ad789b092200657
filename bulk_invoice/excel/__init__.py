"""Excel export layer."""
from bulk_invoice.excel.generator import export_review_workbook

__all__ = ["export_review_workbook"]
