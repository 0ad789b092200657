"""Input parsing layer."""
from bulk_invoice.parsers.time_entries import load_time_entries, load_time_entries_file, parse_time_entry

__all__ = ["load_time_entries", "load_time_entries_file", "parse_time_entry"]
