"""HTTP API for PingPay."""

from ping_pay.api.server import create_app, run_server

__all__ = ["create_app", "run_server"]
