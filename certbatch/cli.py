#!/usr/bin/env python3
"""certbatch CLI: certificate batch issuing, verification and redaction.

This is the installable CLI entrypoint (console_scripts).

Subcommands:
- certbatch batch <raw-dir> <batched-dir> --key K   → Issue a directory of raw documents as one batch
- certbatch verify <file>                          → Verify one issued document
- certbatch verify-all <dir>                       → Verify every issued document in a directory
- certbatch filter <source> <destination> [fields] → Redact fields of an issued document
- certbatch about                                  → Print package identity info

Exit codes:
- 0: success
- 1: check failed (verification failed, batch rejected, etc.)
- 3: usage/internal error
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from importlib.metadata import PackageNotFoundError, metadata, version
from pathlib import Path
from typing import Any

from certbatch.config import ConfigError, Settings, resolve_log_level, resolve_settings
from certbatch.core.log import LOG_LEVELS, setup_logging
from certbatch.engine.verify import BatchReport, DocumentResult
from certbatch.protocol.registry import SchemaRegistry, get_builtin_registry


logger = logging.getLogger("certbatch.cli")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 3

ANCHOR_WARNING = (
    "Signature and proof are valid for the embedded issuer key; check the merkle root "
    "against the issuer's anchoring store before trusting this certificate."
)

EPILOGUE = """The common subcommands you might be interested in are:
- batch
- verify
- verify-all
- filter"""


def _package_version() -> str:
    try:
        return version("certbatch")
    except PackageNotFoundError:
        return "0.0.0"


def _load_keyring(args: argparse.Namespace) -> Any:
    from certbatch.engine.signature import load_keyring

    path = getattr(args, "trusted_keys", None)
    if not path:
        return None
    return load_keyring(Path(path))


def _read_schema(settings: Settings) -> str | None:
    # Issued documents are checked against the version they declare unless one is pinned.
    return settings.schema_version if settings.schema_pinned else None


def _result_line(r: DocumentResult) -> str:
    if r.ok:
        return f"PASS {r.source}"
    return f"FAIL {r.source}: {r.message} [{r.category}]"


def _result_to_dict(r: DocumentResult) -> dict[str, Any]:
    return {
        "source": r.source,
        "ok": r.ok,
        "category": r.category,
        "targetHash": r.target_hash,
        "merkleRoot": r.merkle_root,
        "checks": [
            {"check_id": c.check_id, "status": c.status, "category": c.category, "message": c.message}
            for c in r.checks
        ],
    }


def _report_to_dict(report: BatchReport) -> dict[str, Any]:
    return {
        "ok": report.ok,
        "total": len(report.results),
        "failed": len(report.failed),
        "merkleRoots": ["0x" + m for m in report.merkle_roots],
        "results": [_result_to_dict(r) for r in report.results],
    }


# ---------------------------------------------------------------------------
# batch subcommand
# ---------------------------------------------------------------------------

def cmd_batch(args: argparse.Namespace, settings: Settings, registry: SchemaRegistry) -> int:
    from certbatch.core.errors import CertbatchError
    from certbatch.engine.issue import issue_batch
    from certbatch.engine.signature import load_private_key_file

    try:
        private_key = load_private_key_file(Path(args.key))
    except ValueError as e:
        logger.error("cannot load issuer key: %s", e)
        return EXIT_USAGE

    try:
        batch = issue_batch(
            Path(args.raw_dir),
            Path(args.batched_dir),
            settings.schema_version,
            registry,
            private_key,
            max_workers=settings.max_workers,
        )
    except CertbatchError as e:
        logger.error("batch issuance failed: %s [%s]", e, e.category)
        return EXIT_FAILED
    except OSError as e:
        logger.error("batch issuance failed: %s", e)
        return EXIT_FAILED

    logger.info("issued %d certificate(s) into %s", len(batch.documents), args.batched_dir)
    logger.debug("Batch Certificate Root: %s", batch.root_0x)
    print(batch.root_0x)
    return EXIT_OK


# ---------------------------------------------------------------------------
# verify subcommands
# ---------------------------------------------------------------------------

def cmd_verify(args: argparse.Namespace, settings: Settings, registry: SchemaRegistry) -> int:
    from certbatch.engine.verify import verify_file

    try:
        keyring = _load_keyring(args)
    except ValueError as e:
        logger.error("%s", e)
        return EXIT_USAGE

    result = verify_file(Path(args.file), _read_schema(settings), registry, keyring=keyring)
    if args.json:
        print(json.dumps(_result_to_dict(result), indent=2, sort_keys=True))
    else:
        print(_result_line(result))

    if not result.ok:
        logger.error("Certificate's signature or integrity proof is invalid: %s", result.message)
        return EXIT_FAILED

    logger.debug("Certificate's signature is valid!")
    if keyring is None:
        logger.warning(ANCHOR_WARNING)
    return EXIT_OK


def cmd_verify_all(args: argparse.Namespace, settings: Settings, registry: SchemaRegistry) -> int:
    from certbatch.core.errors import CertbatchError
    from certbatch.engine.verify import verify_directory

    try:
        keyring = _load_keyring(args)
    except ValueError as e:
        logger.error("%s", e)
        return EXIT_USAGE

    try:
        report = verify_directory(
            Path(args.dir),
            _read_schema(settings),
            registry,
            keyring=keyring,
            max_workers=settings.max_workers,
        )
    except CertbatchError as e:
        logger.error("%s", e)
        return EXIT_FAILED

    if args.json:
        print(json.dumps(_report_to_dict(report), indent=2, sort_keys=True))
    else:
        for r in report.results:
            print(_result_line(r))

    if not report.ok:
        logger.error("At least one certificate failed verification (%d of %d)", len(report.failed), len(report.results))
        return EXIT_FAILED

    logger.info("All certificates in %s are verified", args.dir)
    if keyring is None and report.results:
        logger.warning(ANCHOR_WARNING)
    return EXIT_OK


# ---------------------------------------------------------------------------
# filter subcommand
# ---------------------------------------------------------------------------

def cmd_filter(args: argparse.Namespace, settings: Settings, registry: SchemaRegistry) -> int:
    from certbatch.core.errors import CertbatchError
    from certbatch.engine.obfuscate import redact_file

    if not args.fields:
        logger.error("no fields given to filter")
        return EXIT_USAGE

    try:
        keyring = _load_keyring(args)
        redact_file(
            Path(args.source),
            Path(args.destination),
            list(args.fields),
            _read_schema(settings),
            registry,
            keyring=keyring,
        )
    except ValueError as e:
        logger.error("%s", e)
        return EXIT_USAGE
    except CertbatchError as e:
        logger.error("filter failed, nothing written: %s [%s]", e, e.category)
        return EXIT_FAILED

    logger.info("Obfuscated certificate saved to: %s", args.destination)
    return EXIT_OK


# ---------------------------------------------------------------------------
# about subcommand
# ---------------------------------------------------------------------------

def cmd_about(_: argparse.Namespace, __: Settings, registry: SchemaRegistry) -> int:
    """Print package identity info (human-readable)."""

    pkg_name = "certbatch"
    pkg_summary = ""
    try:
        meta = metadata("certbatch")
        pkg_name = str(meta.get("Name") or pkg_name)
        pkg_summary = str(meta.get("Summary") or "")
    except PackageNotFoundError:
        pass

    print(f"{pkg_name} {_package_version()}")
    if pkg_summary:
        print(pkg_summary)
    print(f"Schemas: {', '.join(registry.versions())} (default {registry.latest})")
    print(f"Schema registry: {registry.fingerprint}")
    return EXIT_OK


# ---------------------------------------------------------------------------

def _add_global_options(p: argparse.ArgumentParser, *, registry: SchemaRegistry, suppress: bool) -> None:
    default = argparse.SUPPRESS if suppress else None
    p.add_argument(
        "--log-level",
        choices=list(LOG_LEVELS),
        default=default,
        help="Set the log level (default: info, or $CERTBATCH_LOG_LEVEL)",
    )
    p.add_argument(
        "--schema",
        choices=registry.versions(),
        default=default,
        help=f"Set the schema to use (default: {registry.latest}, or $CERTBATCH_SCHEMA)",
    )
    p.add_argument(
        "--workers",
        type=int,
        default=default,
        help="Worker threads for per-document hashing and verification (default: $CERTBATCH_WORKERS or CPU-based)",
    )


def build_parser(registry: SchemaRegistry) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="certbatch",
        description="Certificate issuing, verification and redaction tool.",
        epilog=EPILOGUE,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {_package_version()}")
    _add_global_options(parser, registry=registry, suppress=False)

    common = argparse.ArgumentParser(add_help=False)
    _add_global_options(common, registry=registry, suppress=True)

    subparsers = parser.add_subparsers(dest="command", help="Subcommand")

    # batch
    p_batch = subparsers.add_parser(
        "batch",
        parents=[common],
        help="Combine a directory of certificates into a certificate batch",
    )
    p_batch.add_argument("raw_dir", help="Directory containing the raw unissued and unsigned certificates")
    p_batch.add_argument("batched_dir", help="Directory to output the batched certificates to")
    p_batch.add_argument("--key", required=True, help="Issuer Ed25519 private key file (64-hex seed or PEM)")
    p_batch.set_defaults(func=cmd_batch)

    # verify
    p_verify = subparsers.add_parser("verify", parents=[common], help="Verify the certificate")
    p_verify.add_argument("file", help="Certificate file to verify")
    p_verify.add_argument("--trusted-keys", help="JSON file mapping issuer id to trusted Ed25519 public key hex")
    p_verify.add_argument("--json", action="store_true", help="Print the diagnostic report as JSON")
    p_verify.set_defaults(func=cmd_verify)

    # verify-all
    p_verify_all = subparsers.add_parser(
        "verify-all",
        parents=[common],
        help="Verify all certificates in a directory",
    )
    p_verify_all.add_argument("dir", help="Directory with all certificates to verify")
    p_verify_all.add_argument("--trusted-keys", help="JSON file mapping issuer id to trusted Ed25519 public key hex")
    p_verify_all.add_argument("--json", action="store_true", help="Print the diagnostic report as JSON")
    p_verify_all.set_defaults(func=cmd_verify_all)

    # filter
    p_filter = subparsers.add_parser("filter", parents=[common], help="Obfuscate fields in the certificate")
    p_filter.add_argument("source", help="Source signed certificate filename")
    p_filter.add_argument("destination", help="Destination to write obfuscated certificate file to")
    p_filter.add_argument("fields", nargs="*", help="Field paths to obfuscate (e.g. recipient.email transcript[0].grade)")
    p_filter.add_argument("--trusted-keys", help="JSON file mapping issuer id to trusted Ed25519 public key hex")
    p_filter.set_defaults(func=cmd_filter)

    # about
    p_about = subparsers.add_parser("about", help="Print package identity info")
    p_about.set_defaults(func=cmd_about)

    return parser


def main(argv: list[str] | None = None) -> int:
    try:
        registry = get_builtin_registry()
    except (OSError, ValueError) as e:
        print(f"[certbatch] ERROR: cannot load schema registry: {e}", file=sys.stderr)
        return EXIT_USAGE

    parser = build_parser(registry)
    args = parser.parse_args(argv)

    try:
        setup_logging(resolve_log_level(args.log_level))
        settings = resolve_settings(
            registry,
            schema=args.schema,
            workers=args.workers,
            log_level=args.log_level,
        )
    except ConfigError as e:
        print(f"[certbatch] ERROR: {e}", file=sys.stderr)
        return EXIT_USAGE

    logger.debug("parsed args: %s", vars(args))

    func = getattr(args, "func", None)
    if args.command is None or func is None:
        parser.print_help()
        return EXIT_USAGE
    return int(func(args, settings, registry))


if __name__ == "__main__":
    sys.exit(main())
