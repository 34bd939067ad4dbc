"""
Services for the expense kernel (workflow side).

Import services from their modules (``expense_kernel.services.claim_lifecycle``
etc.) or use ``expense_kernel.kernel.build_kernel``.  This package does not
re-export them: ``store/`` imports ``services.sequence_service`` and the
services import ``store/``.
"""
