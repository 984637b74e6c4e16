#!/usr/bin/env python3
"""
certnet CLI

Usage:
    certnet [--config FILE] [--format json|yaml|text] <command> [subcommand]

Commands:
    verify-proofs FILE    Verify a certified transactions message
    signer tick           Run one signer tick against the aggregator
    signer run            Run the signer on its configured cadence
    config show           Show the effective configuration
    config validate       Validate the effective configuration

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

import yaml

from certnet import __version__
from certnet.config import ConfigError, get_config, get_config_manager
from certnet.entities import ProtocolMessage
from certnet.messages import CertifiedTransactionsMessage, MessageSchemaError, VerifyTransactionsProofsError
from certnet.observability import Layer, configure_logging, get_logger
from certnet.resilience import BackoffStrategy, RetryPolicy
from certnet.signer.certificate_handler import HttpCertificateHandler, RemoteServerTechnicalError
from certnet.signer.runtime import RegistrationFailurePolicy, SignerError, SignerRunner, SignerRuntime
from certnet.signer.single_signer import Ed25519SingleSigner, ProtocolInitializer

logger = get_logger("cli", Layer.CLI)


class OutputFormat(Enum):
    """How command results are printed."""
    JSON = "json"
    YAML = "yaml"
    TEXT = "text"


class CLIError(Exception):
    """A command failed; `exit_code` is returned to the shell."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Render a command result as JSON, YAML or indented text."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    return _format_text(data)


def _format_text(data: Any, indent: str = "") -> str:
    if isinstance(data, dict):
        lines = []
        for k, v in data.items():
            if isinstance(v, (dict, list)) and v:
                lines.append(f"{indent}{k}:")
                lines.append(_format_text(v, indent + "  "))
            else:
                lines.append(f"{indent}{k}: {v}")
        return "\n".join(lines)
    elif isinstance(data, list):
        return "\n".join(f"{indent}- {item}" for item in data)
    return f"{indent}{data}"


def build_runtime() -> SignerRuntime:
    """Signer runtime wired from the current configuration.

    Raises CLIError (exit code 2) when the effective configuration, environment
    included, does not validate.
    """
    errors = get_config_manager().validate()
    if errors:
        raise CLIError("Invalid configuration: " + "; ".join(errors), exit_code=2)

    signer_config = get_config().signer

    seed = signer_config.key_seed.get()
    stake = signer_config.stake.get()
    if seed:
        initializer = ProtocolInitializer.from_seed(stake, bytes.fromhex(seed))
    else:
        initializer = ProtocolInitializer.generate(stake)

    policy = RegistrationFailurePolicy(signer_config.registration_failure_policy.get())
    retry_policy = None
    if policy == RegistrationFailurePolicy.RETRY:
        retry_policy = RetryPolicy(
            max_attempts=signer_config.registration_retry_attempts.get(),
            base_delay_seconds=0.5,
            backoff_strategy=BackoffStrategy.EXPONENTIAL,
            retryable_exceptions=(RemoteServerTechnicalError,),
        )

    return SignerRuntime(
        HttpCertificateHandler(
            signer_config.aggregator_endpoint.get(),
            timeout_seconds=signer_config.http_timeout_seconds.get(),
        ),
        Ed25519SingleSigner(signer_config.party_id.get(), initializer),
        registration_failure_policy=policy,
        retry_policy=retry_policy,
    )


class CertnetCLI:
    """argparse front end over the proof verifier, the signer and the configuration."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="certnet",
            description="Certified transaction proofs and beacon-driven signer",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"certnet {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=["json", "yaml", "text"],
            default="json",
            help="Result format, json by default",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="YAML configuration file",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress error messages",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", metavar="COMMAND")
        self._register_commands()

    def _register_commands(self) -> None:
        """verify-proofs, signer {tick,run}, config {show,validate}."""
        verify = self.subparsers.add_parser("verify-proofs", help="Verify a certified transactions message")
        verify.add_argument("file", help="JSON file holding the message")

        signer = self.subparsers.add_parser("signer", help="Signer runtime")
        signer_sub = signer.add_subparsers(dest="subcommand")
        signer_sub.add_parser("tick", help="Run one tick")
        run = signer_sub.add_parser("run", help="Run ticks on the configured cadence")
        run.add_argument("--max-ticks", type=int, help="Stop after this many ticks")

        config_cmd = self.subparsers.add_parser("config", help="Inspect the effective configuration")
        config_sub = config_cmd.add_subparsers(dest="subcommand")
        config_sub.add_parser("show", help="Print every setting with its effective value")
        config_sub.add_parser("validate", help="Check every setting, exit 2 on problems")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Parse `args`, run the command and return the process exit code."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        try:
            self._load_config(parsed)
            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except ConfigError as e:
            if not parsed.quiet:
                print(f"Configuration error: {e}", file=sys.stderr)
            return 2

    def _load_config(self, args: argparse.Namespace) -> None:
        mgr = get_config_manager()
        if args.config:
            mgr.load_from_file(args.config)
        else:
            mgr.load_defaults()

        # Invalid logging settings fall back to defaults; `config validate` reports them.
        observability = mgr.config.observability
        level, fmt = observability.log_level.get(), observability.log_format.get()
        if not observability.log_level.is_valid(level):
            level = observability.log_level.default
        configure_logging(level, fmt)

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """`signer tick` resolves to `_handle_signer_tick`, and so on."""
        cmd = args.command.replace("-", "_")
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {args.command} {subcmd or ''}".strip())

        return handler(args)

    # Proof handlers
    def _handle_verify_proofs(self, args: argparse.Namespace) -> Any:
        path = Path(args.file)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise CLIError(f"Cannot read {path}: {e}") from e

        try:
            message = CertifiedTransactionsMessage.from_json(text)
            verified = message.verify()
        except MessageSchemaError as e:
            raise CLIError(f"Invalid message: {'; '.join(e.errors)}") from e
        except VerifyTransactionsProofsError as e:
            logger.warning("Proof verification failed", file=str(path), error=str(e))
            raise CLIError(f"Verification failed: {e}") from e

        protocol_message = ProtocolMessage()
        verified.fill_protocol_message(protocol_message)

        result = {"verified": True}
        result.update(verified.to_dict())
        result["non_certified_transactions"] = list(message.non_certified_transactions)
        result["protocol_message"] = protocol_message.to_dict()
        result["protocol_message_hash"] = protocol_message.compute_hash()
        return result

    # Signer handlers
    def _handle_signer_tick(self, args: argparse.Namespace) -> Any:
        runtime = build_runtime()
        try:
            runtime.tick()
        except SignerError as e:
            raise CLIError(f"Tick failed ({type(e).__name__}): {e}") from e

        beacon = runtime.current_beacon
        return {
            "status": "ok",
            "phase": runtime.phase.value,
            "current_beacon": beacon.to_dict() if beacon else None,
        }

    def _handle_signer_run(self, args: argparse.Namespace) -> Any:
        if args.max_ticks is not None and args.max_ticks < 1:
            raise CLIError("--max-ticks must be >= 1")

        runner = SignerRunner(build_runtime(), get_config().signer.run_interval_seconds.get())
        try:
            report = runner.run(max_ticks=args.max_ticks)
        except KeyboardInterrupt:
            return {"status": "interrupted"}

        beacon = runner.runtime.current_beacon
        return {
            "ticks": report.ticks,
            "failures": report.failures,
            "errors": report.errors,
            "current_beacon": beacon.to_dict() if beacon else None,
        }

    # Config handlers
    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        return get_config_manager().config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        errors = get_config_manager().validate()
        if errors:
            raise CLIError("Invalid configuration: " + "; ".join(errors), exit_code=2)
        return {"valid": True, "errors": []}


def main() -> int:
    """CLI entry point."""
    cli = CertnetCLI()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
