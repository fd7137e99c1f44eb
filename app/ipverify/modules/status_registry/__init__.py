"""
Status Registry module.

One StatusRecord per client IP, moving through the verification workflow:
- Unverified (first contact) -> Pending (request submitted)
- Pending -> Approved / Rejected (admin decision)
- Approved / Rejected -> Pending (resubmission reopens review)
Evidence images are kept as references; the binaries live in the attachment store.
"""
