"""Building budgets: periods, contribution engine, quorum approvals and the ledger."""
