"""
offerbot: keeps a standing sell offer for a tokenized asset on the XRP Ledger
order book and re-prices it from aggregated third-party valuations.
"""

__version__ = "1.0.0"
