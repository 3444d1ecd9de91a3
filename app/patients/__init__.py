"""
Patients app: clinics, patients and their Stripe customer links.

The PatientResolver (patients.services) maps a Stripe customer reference to
a local patient, falling back to email matching within a clinic.
"""
