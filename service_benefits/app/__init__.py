"""
Benefits Service package for the Benefits Access Layer.

This package decides which benefits an employee may access and manages the
point budget they spend on them. It provides:

- app.main: API surface for wallets, accrual, eligibility and health.
- app.conditions: condition parsing and evaluation against employee profiles.
- app.eligibility: per-benefit eligibility rules (OR across rules).
- app.budget: budget policies and the resolver picking one per employee.
- app.wallet: point ledger, wallet state and the WalletLedger service.
- app.accrual: period calendar and the per-tenant accrual run.
- app.persistence: store interfaces, PostgreSQL and in-memory backends.

Guidelines:
- Condition evaluation, eligibility and policy resolution are pure.
- The ledger is the source of truth; wallet balances are a derived cache.
- Every read and write is scoped by tenant.
"""
