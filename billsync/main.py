# -*- coding: utf-8 -*-
"""WSGI entry point: ``gunicorn billsync.main:app``."""
import os

from billsync.factory import create_app

app = create_app()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", "5000"))
    app.run(host="0.0.0.0", port=port, debug=os.environ.get("FLASK_DEBUG") == "1")
