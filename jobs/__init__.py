"""
Mess Ledger - Jobs Module

Offline jobs run from cron or by an operator:
- reconcile_payments: finish pending ledger credits and persist overdue bills
"""
