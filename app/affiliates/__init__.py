"""
Affiliates app: referral attribution, commissions and fraud gating.

Services:
    - affiliates.services.ip_intelligence: cached IP reputation lookups
    - affiliates.services.fraud_scorer: concurrent fraud checks
    - affiliates.services.commission_engine: commission accrual and reversal
"""
