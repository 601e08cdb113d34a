"""
============================================================================
Mess Ledger - Services Layer
============================================================================

Meal notice evaluation, leave deduction, billing records and the payment
orchestration/reconciliation core.

Modules are imported directly (e.g. ``from services.meal_time import ...``)
so that the app layer and the services layer can depend on each other's
leaf modules without import cycles.
============================================================================
"""
