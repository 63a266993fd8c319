# -*- coding: utf-8 -*-
from flask_sqlalchemy import SQLAlchemy

# global SQLAlchemy() instance, bound to the app in billsync.factory
db = SQLAlchemy()
