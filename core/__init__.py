"""Core module - configuration and observability shared by the API and CLI.

Reconciliation logic itself lives in /remittance/.
"""

__version__ = "1.0.0"
