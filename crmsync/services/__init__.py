"""
CRM Sync Services Package.

This package contains the sync engine: persistence, provider clients,
importers and the scheduler.

Key service modules:
- crm_db: shared SQLite connection and schema
- sync_state: per-service cursor/status and the dedup ledger
- entity_resolver: find-or-create contacts and companies
- cadence / interaction_store: follow-up scoring and interaction history
- calendar_importer, gmail_importer, contacts_importer: provider importers
- sync_runner / sync_daemon: one-shot and scheduled runs
"""
