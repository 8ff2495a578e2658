#!/usr/bin/env python3
"""
ACP CLI - off-protocol helpers for agents and operators.

Commands:
  acp salt                       Generate a random salt / blinding factor
  acp commit vote|bid|signal|identity
                                 Compute a commitment
  acp nullifier epoch|vote       Derive a nullifier from identity secrets
  acp address <kind> [keys...]   Derive an account address
  acp multiplier <days>          Stake-duration vote multiplier
  acp slash-rate <violations>    Escalating slash rate
  acp decode <hex>               Decode raw account bytes
  acp merkle root|proof          Agents-root Merkle tree over identity commitments
  acp action-hash               Hash action data into a swarm action id
"""

from __future__ import annotations

import argparse
import json
import logging
import re
import sys
from pathlib import Path
from typing import Any

from ..core.config import get_config
from ..core.exceptions import ACPException, ValidationException
from ..core.logging import configure_logging
from ..crypto import commitments
from ..crypto.merkle import TREE_DEPTH, MerkleTree
from ..protocol.addresses import AddressBook
from ..protocol.collateral import slash_amount, slash_rate_bps, stake_multiplier_bps, weighted_vote
from ..protocol.layout import decode_account
from ..protocol.models import BPS_DENOMINATOR, Direction, SignalType, record_to_dict

logger = logging.getLogger(__name__)

HEX32 = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


def parse_hex32(value: str) -> bytes:
    """argparse type for 32-byte hex values (optional 0x prefix)."""
    if not HEX32.match(value):
        raise argparse.ArgumentTypeError(f"expected 32 bytes of hex, got {value!r}")
    return bytes.fromhex(value.removeprefix("0x"))


def parse_key(value: str) -> bytes | int:
    """Address key: 32-byte hex, or a decimal integer (epochs, scopes)."""
    if HEX32.match(value):
        return bytes.fromhex(value.removeprefix("0x"))
    if value.isdigit():
        return int(value)
    raise argparse.ArgumentTypeError(f"expected 32-byte hex or an integer, got {value!r}")


def output_result(data: dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(data, indent=2, default=str))
        return
    for key, value in data.items():
        print(f"{key}: {value}")


def output_error(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)


# ============================================================================
# Commands
# ============================================================================


def cmd_salt(args: argparse.Namespace) -> int:
    """Print fresh salts, one per line."""
    for _ in range(args.count):
        print(commitments.generate_salt().hex())
    return 0


def cmd_commit(args: argparse.Namespace) -> int:
    """Compute a commitment; generates the salt when none is given."""
    result: dict[str, Any] = {}
    if args.kind == "identity":
        commitment = commitments.identity_commitment(args.owner_secret, args.agent_id, args.registration_secret)
    elif args.kind == "vote":
        salt = args.salt or commitments.generate_salt()
        commitment = commitments.vote_commitment(args.vote == "yes", salt, args.action_hash)
        result["salt"] = salt.hex()
    elif args.kind == "bid":
        salt = args.salt or commitments.generate_salt()
        commitment = commitments.bid_commitment(args.amount, salt, args.action_hash)
        result["salt"] = salt.hex()
    else:
        blinding = args.blinding or commitments.generate_salt()
        commitment = commitments.signal_commitment(
            SignalType[args.type.upper()],
            Direction[args.direction.upper()],
            args.confidence,
            args.magnitude,
            args.stake,
            blinding,
            args.nullifier,
        )
        result["blinding"] = blinding.hex()
    output_result({"commitment": commitment.hex(), **result}, args.json)
    return 0


def cmd_nullifier(args: argparse.Namespace) -> int:
    if args.kind == "epoch":
        nullifier = commitments.epoch_nullifier(args.owner_secret, args.agent_id, args.registration_secret, args.epoch)
    else:
        nullifier = commitments.vote_nullifier(
            args.owner_secret, args.agent_id, args.registration_secret, args.action_hash
        )
    output_result({"nullifier": nullifier.hex()}, args.json)
    return 0


def cmd_address(args: argparse.Namespace) -> int:
    """Derive an account address under the configured program id."""
    book = AddressBook(args.program_id or get_config().program_id)
    try:
        address = book.by_name(args.kind, *args.keys)
    except TypeError:
        raise ValidationException(f"wrong number of keys for {args.kind}", field="keys", value=len(args.keys))
    output_result({"kind": args.kind, "address": address.hex()}, args.json)
    return 0


def cmd_multiplier(args: argparse.Namespace) -> int:
    bps = stake_multiplier_bps(args.days)
    result: dict[str, Any] = {"days": args.days, "multiplier_bps": bps, "multiplier": bps / BPS_DENOMINATOR}
    if args.stake is not None:
        result["weighted_vote"] = weighted_vote(args.stake, bps)
    output_result(result, args.json)
    return 0


def cmd_slash_rate(args: argparse.Namespace) -> int:
    bps = slash_rate_bps(args.violations)
    result: dict[str, Any] = {"violations": args.violations, "rate_bps": bps}
    if args.amount is not None:
        collateral = args.collateral if args.collateral is not None else args.amount
        result["slashed"] = slash_amount(args.amount, args.violations, collateral)
    output_result(result, args.json)
    return 0


def cmd_decode(args: argparse.Namespace) -> int:
    """Decode account bytes given as hex or read from a file."""
    if args.file:
        data = Path(args.file).read_bytes()
    elif args.data:
        try:
            data = bytes.fromhex(args.data.removeprefix("0x"))
        except ValueError:
            raise ValidationException("account data is not valid hex", field="data")
    else:
        output_error("pass account data as hex or --file")
        return 2
    record = decode_account(data)
    output_result({"type": type(record).__name__, **record_to_dict(record)}, args.json)
    return 0


def _load_tree(args: argparse.Namespace) -> MerkleTree:
    if args.tree:
        tree = MerkleTree.deserialize(Path(args.tree).read_text())
        for commitment in args.commitments:
            tree.add_leaf(commitment)
        return tree
    return MerkleTree.from_commitments(args.commitments, depth=args.depth)


def cmd_merkle(args: argparse.Namespace) -> int:
    """Build the agents tree from commitments (and/or a saved tree) and print root or proof."""
    tree = _load_tree(args)
    result: dict[str, Any] = {"depth": tree.depth, "leaf_count": tree.leaf_count, "root": tree.root().hex()}
    if args.kind == "proof":
        result.update(tree.proof(args.index).to_dict())
    output_result(result, args.json)
    if args.save:
        Path(args.save).write_text(tree.serialize())
        logger.info(f"Saved tree with {tree.leaf_count} leaves to {args.save}")
    return 0


def cmd_action_hash(args: argparse.Namespace) -> int:
    try:
        data = bytes.fromhex(args.data.removeprefix("0x"))
    except ValueError:
        raise ValidationException("action data is not valid hex", field="data")
    digest = commitments.action_hash(args.type, data)
    output_result({"action_type": args.type, "action_hash": digest.hex()}, args.json)
    return 0


# ============================================================================
# Parser
# ============================================================================


def _add_identity_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--owner-secret", type=parse_hex32, required=True, help="Owner secret (hex)")
    parser.add_argument("--agent-id", type=parse_hex32, required=True, help="Agent id (hex)")
    parser.add_argument("--registration-secret", type=parse_hex32, required=True, help="Registration secret (hex)")


def app() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="acp",
        description="Agent Collaboration Protocol helpers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  acp salt                                       Random 32-byte salt
  acp commit vote --vote yes --action-hash <hex> Vote commitment (prints salt)
  acp commit bid --amount 300 --action-hash <hex>
  acp nullifier epoch --owner-secret .. --agent-id .. --registration-secret .. --epoch 3
  acp address aggregator 3                       Aggregator address for epoch 3
  acp multiplier 90 --stake 1000000              Weighted vote after 90 days
  acp slash-rate 2 --amount 1000                 Third violation
  acp decode <hex>                               Inspect an account
  acp merkle root <commitment>...                 agents_root for update_root
  acp merkle proof --index 2 <commitment>...      Membership proof for leaf 2
        """,
    )
    parser.add_argument("--json", action="store_true", help="JSON output")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # salt
    salt_parser = subparsers.add_parser("salt", help="Generate random salts")
    salt_parser.add_argument("--count", "-n", type=int, default=1)
    salt_parser.set_defaults(func=cmd_salt)

    # commit
    commit_parser = subparsers.add_parser("commit", help="Compute a commitment")
    commit_sub = commit_parser.add_subparsers(dest="kind", required=True)

    identity_parser = commit_sub.add_parser("identity", help="Identity commitment")
    _add_identity_args(identity_parser)

    vote_parser = commit_sub.add_parser("vote", help="Vote commitment")
    vote_parser.add_argument("--vote", choices=["yes", "no"], required=True)
    vote_parser.add_argument("--action-hash", type=parse_hex32, required=True)
    vote_parser.add_argument("--salt", type=parse_hex32, help="Salt (generated if omitted)")

    bid_parser = commit_sub.add_parser("bid", help="Bid commitment")
    bid_parser.add_argument("--amount", type=int, required=True)
    bid_parser.add_argument("--action-hash", type=parse_hex32, required=True)
    bid_parser.add_argument("--salt", type=parse_hex32, help="Salt (generated if omitted)")

    signal_parser = commit_sub.add_parser("signal", help="Signal commitment")
    signal_parser.add_argument("--type", choices=[t.name.lower() for t in SignalType], required=True)
    signal_parser.add_argument("--direction", choices=[d.name.lower() for d in Direction], required=True)
    signal_parser.add_argument("--confidence", type=int, required=True)
    signal_parser.add_argument("--magnitude", type=int, required=True)
    signal_parser.add_argument("--stake", type=int, required=True)
    signal_parser.add_argument("--nullifier", type=parse_hex32, required=True)
    signal_parser.add_argument("--blinding", type=parse_hex32, help="Blinding (generated if omitted)")
    commit_parser.set_defaults(func=cmd_commit)

    # nullifier
    nullifier_parser = subparsers.add_parser("nullifier", help="Derive a nullifier")
    nullifier_sub = nullifier_parser.add_subparsers(dest="kind", required=True)
    epoch_parser = nullifier_sub.add_parser("epoch", help="Per-epoch nullifier (signals, proposals)")
    _add_identity_args(epoch_parser)
    epoch_parser.add_argument("--epoch", type=int, required=True)
    vote_null_parser = nullifier_sub.add_parser("vote", help="Per-action vote nullifier")
    _add_identity_args(vote_null_parser)
    vote_null_parser.add_argument("--action-hash", type=parse_hex32, required=True)
    nullifier_parser.set_defaults(func=cmd_nullifier)

    # address
    address_parser = subparsers.add_parser("address", help="Derive an account address")
    address_parser.add_argument("kind", help="Account kind, e.g. agent, swarm-action, aggregator")
    address_parser.add_argument("keys", nargs="*", type=parse_key, help="Keys: 32-byte hex or integers")
    address_parser.add_argument("--program-id", help="Override ACP_PROGRAM_ID")
    address_parser.set_defaults(func=cmd_address)

    # multiplier
    multiplier_parser = subparsers.add_parser("multiplier", help="Stake-duration multiplier")
    multiplier_parser.add_argument("days", type=int)
    multiplier_parser.add_argument("--stake", type=int, help="Show the weighted vote for this stake")
    multiplier_parser.set_defaults(func=cmd_multiplier)

    # slash-rate
    slash_parser = subparsers.add_parser("slash-rate", help="Slash rate for a violation count")
    slash_parser.add_argument("violations", type=int)
    slash_parser.add_argument("--amount", type=int, help="Requested slash amount")
    slash_parser.add_argument("--collateral", type=int, help="Collateral held (caps the result)")
    slash_parser.set_defaults(func=cmd_slash_rate)

    # decode
    decode_parser = subparsers.add_parser("decode", help="Decode raw account bytes")
    decode_parser.add_argument("data", nargs="?", help="Account data as hex")
    decode_parser.add_argument("--file", "-f", help="Read raw account bytes from a file")
    decode_parser.set_defaults(func=cmd_decode)

    # merkle
    merkle_parser = subparsers.add_parser("merkle", help="Agents-root Merkle tree")
    merkle_sub = merkle_parser.add_subparsers(dest="kind", required=True)
    root_parser = merkle_sub.add_parser("root", help="Root over identity commitments")
    proof_parser = merkle_sub.add_parser("proof", help="Membership proof for one leaf")
    proof_parser.add_argument("--index", type=int, required=True, help="Leaf index")
    for sub in (root_parser, proof_parser):
        sub.add_argument("commitments", nargs="*", type=parse_hex32, help="Identity commitments in order")
        sub.add_argument("--depth", type=int, default=TREE_DEPTH, help=f"Tree depth (default {TREE_DEPTH})")
        sub.add_argument("--tree", help="Load a saved tree; commitments are appended to it")
        sub.add_argument("--save", help="Write the resulting tree to this file")
    merkle_parser.set_defaults(func=cmd_merkle)

    # action-hash
    action_parser = subparsers.add_parser("action-hash", help="Swarm action id from type and data")
    action_parser.add_argument("--type", type=int, required=True, help="Action type")
    action_parser.add_argument("--data", required=True, help="Action data as hex")
    action_parser.set_defaults(func=cmd_action_hash)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = app()
    args = parser.parse_args(argv)
    configure_logging(level="DEBUG" if args.verbose else None)

    try:
        return args.func(args)
    except ACPException as e:
        logger.debug(f"{args.command} failed: {e.to_dict()}")
        output_error(e.message)
        return 1


if __name__ == "__main__":
    sys.exit(main())
