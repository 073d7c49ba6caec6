"""Invoice Ninja → Xero sync: ledger, orchestrators and reconciliation."""
