"""
Detection and enforcement pipeline.

- **event_normalizer.py**: Raw gateway payloads to immutable ModerationEvent records.
- **whitelist_resolver.py**: User/role/channel exemptions, checked before counting.
- **rate_window_tracker.py**: Per-(guild, category) sliding-window counters.
- **threshold_policy.py**: Count vs. limit decision and the per-actor tie-break.
- **action_dispatcher.py**: Idempotent platform actions with retry/backoff.
- **violation_ledger.py**: Append-only per-guild enforcement history.
- **appeal_state_machine.py**: Appeal lifecycle and reversals.
- **moderation_engine.py**: Runs the steps above over a batch of events.
- **interfaces.py**: Protocols for the platform, notifier, store and classifier.
"""
