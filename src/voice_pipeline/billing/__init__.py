"""
Credit Accounting.

    - costs.py: Credit prices and cost estimation
    - ledger.py: CreditLedger with atomic and legacy deduct strategies
"""
