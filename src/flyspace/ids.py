# ids.py
# Identifier generator for runs, steps and evals.
#
# UUIDv7 embeds a millisecond timestamp plus a monotonic sequence in its most
# significant bits, so the canonical string sorts lexically by creation order.

from uuid_extensions import uuid7str


def new_id() -> str:
    return uuid7str()
