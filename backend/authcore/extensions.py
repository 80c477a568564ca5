# Overview: Flask extension instances for the database, migrations and core signals.

from blinker import Namespace
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()

# Push channel for state changes. Receivers are informed after the fact;
# authorization decisions never depend on them.
core_signals = Namespace()
session_state_changed = core_signals.signal("session-state-changed")
security_alert_raised = core_signals.signal("security-alert-raised")
# Sent when a block run under acting_as()/system_scope() exits on Forbidden,
# after its unit of work was rolled back.
scope_violation = core_signals.signal("scope-violation")
