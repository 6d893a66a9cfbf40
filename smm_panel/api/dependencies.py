"""FastAPI dependencies resolving the services built by ``create_app``."""
from fastapi import Request

from smm_panel.config import Settings
from smm_panel.core.ledger import BalanceLedger
from smm_panel.core.reconciliation import PaymentReconciler
from smm_panel.monitoring.health import HealthCheck


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_reconciler(request: Request) -> PaymentReconciler:
    return request.app.state.reconciler


def get_ledger(request: Request) -> BalanceLedger:
    return request.app.state.ledger


def get_health_check(request: Request) -> HealthCheck:
    return request.app.state.health_check
