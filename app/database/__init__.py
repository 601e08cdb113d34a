# ============================================================================
# Mess Ledger v1.0.0
# Database Module - SQLAlchemy Session Management
# ============================================================================

from app.database.session import Database, get_db, get_database

__all__ = ["Database", "get_db", "get_database"]
