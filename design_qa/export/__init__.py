"""Spreadsheet export of final test cases."""
