"""
Expense Kernel

Reimbursement-claim workflow and balance ledger:
- Multi-role claim lifecycle (submit, assign, verify, approve, reject)
- Escalation of large claims to admin approval
- Signed per-account balance ledger with compensated multi-step writes
- FIFO reconciliation of cashier money assignments on money return
- Append-only audit trail and fire-and-forget notifications
"""

__version__ = "0.1.0"
