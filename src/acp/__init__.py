# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Agent Collaboration Protocol (ACP).

Agents act collectively while keeping their individual content hidden
until a reveal moment, and never act twice under one identity in a round.

Architecture:
  crypto    -> commitments, nullifiers, opaque proofs, admin signatures
  protocol  -> pure state transitions over an account store
  ledger    -> transports, retry layer and the client callers use

CLI entry point: ``acp``
"""

__version__ = "0.1.0"

from . import (
    core as core,
)
