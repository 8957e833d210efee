"""Union Sync: catalog fetch, reconciliation and sync orchestration."""
