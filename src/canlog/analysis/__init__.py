"""
Catalog, tracking, event ledger, report and the decode engine
"""
