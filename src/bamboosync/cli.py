"""
Command-line interface for bamboosync.

Usage (examples):
  - Plan (no HTTP):
      bsync plan --desired ./permissions.yml --state ./.bamboosync/state.yml

  - Apply against Bamboo:
      bsync apply --desired ./permissions.yml --base-url https://bamboo.example.org --token TOKEN

  - Re-read recorded entities and report drift:
      bsync refresh --base-url https://bamboo.example.org --token TOKEN

  - Who holds which permission on one entity:
      bsync attest --kind project --key PRJ --base-url https://bamboo.example.org --token TOKEN

Exit codes: 0 ok, 2 when an entity failed, 3 on configuration or input errors.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, Dict, Iterable, Optional

from .core.bamboo_client import BambooClient, HttpError
from .core.config import AppConfig, load_config
from .core.entities import EntityRef
from .core.errors import BambooSyncError, ConfigError, RuleValidationError, StateError
from .core.logging_setup import build_logger
from .core.permission_store import BambooPermissionStore
from .core.permissions import EntityPermissions
from .core.reconciler import AssignmentReconciler, StorePrincipalValidator, TrustingValidator
from .core.reporting import print_attestation, print_results, summarize_counts
from .core.rules_loader import load_desired
from .core.state import StateStore
from .core.syncer import PermissionSyncer

EXIT_OK = 0
EXIT_ENTITY_ERRORS = 2
EXIT_CONFIG = 3


def _exit_code_from_counts(counts: Dict[str, int]) -> int:
    if counts.get("ERROR", 0) or counts.get("EXCEPTION", 0):
        return EXIT_ENTITY_ERRORS
    return EXIT_OK


def _add_common(p: argparse.ArgumentParser, *, remote: bool) -> None:
    p.add_argument("--state", default=None, help="Recorded state file")
    p.add_argument("--format", dest="fmt", default="table", choices=["table", "json"], help="Output format")
    p.add_argument(
        "--legacy-priority-collisions",
        action="store_true",
        default=None,
        help="Let the last rule win on duplicate priorities instead of failing",
    )

    if remote:
        # Bamboo / HTTP
        p.add_argument("--base-url", default=None, help="Bamboo base URL")
        p.add_argument("--token", default=None, help="Bamboo personal access token")
        p.add_argument("--verify-tls", default=None, choices=["true", "false"], help="Verify TLS (https)")
        p.add_argument("--timeout-sec", type=int, default=None, help="HTTP timeout seconds")
        p.add_argument("--retries", type=int, default=None, help="HTTP retries (5xx/network)")
        p.add_argument(
            "--no-validate-principals",
            action="store_true",
            help="Push to every named principal without checking it exists",
        )

    # Logging
    p.add_argument("--logs-dir", default=None, help="Logs base directory")
    p.add_argument("--console-level", default=None, help="Console log level (INFO..CRITICAL)")
    p.add_argument("--file-level", default=None, help="File log level (DEBUG..CRITICAL)")


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="bsync", description="Bamboo permission sync")
    sub = p.add_subparsers(dest="cmd", required=True)

    plan = sub.add_parser("plan", help="Show what apply would do, without network calls")
    plan.add_argument("--desired", default=None, help="Desired state file (.yml or .xlsx)")
    _add_common(plan, remote=False)

    apply = sub.add_parser("apply", help="Reconcile Bamboo permissions with the desired state")
    apply.add_argument("--desired", default=None, help="Desired state file (.yml or .xlsx)")
    _add_common(apply, remote=True)

    refresh = sub.add_parser("refresh", help="Re-read recorded entities and report drift")
    _add_common(refresh, remote=True)

    attest = sub.add_parser("attest", help="List who holds which permission on an entity")
    attest.add_argument("--kind", required=True, choices=["project", "plan", "deployment", "repository"])
    attest.add_argument("--key", required=True, help="Entity key or id")
    _add_common(attest, remote=True)

    return p


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Only options given on the command line override file/env configuration."""
    def pick(**kw: Any) -> Dict[str, Any]:
        return {k: v for k, v in kw.items() if v is not None}

    overrides: Dict[str, Any] = {
        "app": {"dry_run": args.cmd == "plan"},
        "bamboo": pick(
            base_url=getattr(args, "base_url", None),
            token=getattr(args, "token", None),
            verify_tls=getattr(args, "verify_tls", None),
            timeout_sec=getattr(args, "timeout_sec", None),
            retries=getattr(args, "retries", None),
        ),
        "engine": pick(legacy_priority_collisions=args.legacy_priority_collisions),
        "logging": pick(
            base_dir=args.logs_dir,
            console_level=args.console_level,
            file_level=args.file_level,
        ),
        "inputs": pick(desired_path=getattr(args, "desired", None), state_path=args.state),
    }
    if getattr(args, "no_validate_principals", False):
        overrides["engine"]["validate_principals"] = False
    return overrides


def _permissions(cfg: AppConfig, logger: logging.LoggerAdapter) -> EntityPermissions:
    client = BambooClient(
        base_url=cfg.bamboo.base_url,
        token=cfg.bamboo.token,
        verify_tls=bool(cfg.bamboo.verify_tls),
        timeout_sec=int(cfg.bamboo.timeout_sec),
        retries=int(cfg.bamboo.retries),
        logger=logger,
    )
    store = BambooPermissionStore(client, logger=logger)
    if cfg.engine.validate_principals:
        validator = StorePrincipalValidator(store, logger=logger)
    else:
        validator = TrustingValidator()
    reconciler = AssignmentReconciler(store, validator=validator, logger=logger)
    return EntityPermissions(
        store,
        reconciler,
        strict_priorities=cfg.strict_priorities,
        logger=logger,
    )


def _run(args: argparse.Namespace) -> int:
    cfg = load_config(_cli_overrides(args))

    target = f"{args.kind}:{args.key}" if args.cmd == "attest" else cfg.inputs.desired_path
    logger = build_logger(
        run_id=cfg.run_id,
        action=args.cmd,
        base_dir=cfg.logging.base_dir,
        console_level=cfg.logging.console_level,
        file_level=cfg.logging.file_level,
        extra={"target": target},
    )
    logger.info("Starting bsync %s (dry_run=%s)", args.cmd, cfg.app.dry_run)

    if args.cmd == "attest":
        entity = EntityRef(args.kind, args.key)
        attestation = _permissions(cfg, logger).attest(entity)
        print_attestation(str(entity), attestation, fmt=args.fmt)
        return EXIT_OK

    state = StateStore(cfg.inputs.state_path, logger=logger)

    if args.cmd == "plan":
        desired = load_desired(cfg.inputs.desired_path)
        logger.info("Loaded %s resource(s) from %s", len(desired), cfg.inputs.desired_path)
        syncer = PermissionSyncer(state, strict_priorities=cfg.strict_priorities, logger=logger)
        results, counts = syncer.plan(desired)
    elif args.cmd == "apply":
        desired = load_desired(cfg.inputs.desired_path)
        logger.info("Loaded %s resource(s) from %s", len(desired), cfg.inputs.desired_path)
        syncer = PermissionSyncer(
            state, _permissions(cfg, logger), strict_priorities=cfg.strict_priorities, logger=logger
        )
        results, counts = syncer.apply(desired)
    else:
        syncer = PermissionSyncer(
            state, _permissions(cfg, logger), strict_priorities=cfg.strict_priorities, logger=logger
        )
        results, counts = syncer.refresh()

    summary = summarize_counts(counts)
    logger.info("%s summary: %s", args.cmd.capitalize(), summary)
    print_results(results, fmt=args.fmt)
    if args.fmt == "table":
        print(summary)
    return _exit_code_from_counts(counts)


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        return _run(args)
    except (ConfigError, RuleValidationError, StateError, FileNotFoundError) as e:
        print(f"bsync: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except (BambooSyncError, HttpError) as e:
        print(f"bsync: {e}", file=sys.stderr)
        return EXIT_ENTITY_ERRORS


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
