"""
Approval Kernel

Sequential, threshold-driven approval routing for monetary requests:
- Signed single-purpose action links instead of authenticated sessions
- Level resolution from configurable spending ceilings
- Per-level step ledger with compare-and-swap transitions
- Best-effort notification that never reverses a recorded decision
"""

__version__ = "0.1.0"
