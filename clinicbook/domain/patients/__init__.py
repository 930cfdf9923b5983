"""
Patients Domain

Encrypted patient identities, blind-index lookup and decrypted
appointment details for staff.
"""
