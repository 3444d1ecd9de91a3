"""
Refills app: prescription refill queue and payment matching.

Services:
    - refills.services.RefillAutoMatcher: flips a pending refill to
      payment-verified when the patient's payment arrives
"""
