"""
Soarchain Observer

Watches the Soarchain event stream for runner challenge transactions and
provides:
- Per-client earnings ingestion over a Tendermint websocket subscription
- Epoch-bucketed earnings aggregation
- REST API for client earnings, rewards and liveness status
"""

__version__ = "0.2.0"
