"""AumOS Mission Engine.

Compiles compliance controls and overlays into reproducible bundles, drives
the Apply/Verify/Evidence mission phases, and records every run in an
append-only mission ledger and a hash-chained audit trail.
"""

__version__ = "0.1.0"
