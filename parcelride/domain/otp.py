"""
Trip-start verification codes.

The OTP is a human-readable pairing code the customer reads out to the
driver at pickup, not an authentication secret, so the module-level PRNG
is sufficient.  Codes are drawn from [1000, 9999] so they never carry a
leading zero.
"""

import random

OTP_MIN = 1000
OTP_MAX = 9999


def generate_otp(rng: random.Random | None = None) -> str:
    return str((rng or random).randint(OTP_MIN, OTP_MAX))
