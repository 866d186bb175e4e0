"""
ModGuard - anti-nuke and automod enforcement engine for Discord

ModGuard watches a guild's activity stream and rate-limits destructive or
spammy behaviour per category inside sliding time windows.

Core Components:

- **Detection**: Event normalization, whitelist exemption, sliding-window
  counters and threshold evaluation (allow / warn / escalate)
- **Enforcement**: Idempotent action dispatch with bounded retries, every
  outcome written to an append-only violation ledger
- **Appeals**: A review workflow that can reverse an enforcement action by
  dispatching its inverse
- **Configuration**: Immutable per-guild policy snapshots with presets,
  whitelists and appeal settings
"""
