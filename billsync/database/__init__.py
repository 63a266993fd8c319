from billsync.database.db import db

__all__ = ["db"]
