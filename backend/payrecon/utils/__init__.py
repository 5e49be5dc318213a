from payrecon.utils.hashing import (
    generate_hash, generate_chain_hash, hmac_sha256_hex, hmac_sha256_base64,
    sha256_hex, constant_time_equals,
)
from payrecon.utils.dates import format_payment_date, parse_iso_datetime, to_naive_utc

__all__ = [
    "generate_hash", "generate_chain_hash", "hmac_sha256_hex", "hmac_sha256_base64",
    "sha256_hex", "constant_time_equals",
    "format_payment_date", "parse_iso_datetime", "to_naive_utc",
]
