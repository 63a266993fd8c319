# -*- coding: utf-8 -*-
"""billsync - subscription lifecycle reconciliation service."""

__version__ = "0.1.0"
