from offerbot.connection.resilient_connection import ConnectionConfig, ResilientConnection, backoff_delay

__all__ = ["ConnectionConfig", "ResilientConnection", "backoff_delay"]
