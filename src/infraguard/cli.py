import argparse
import logging
import os
import sys
from typing import Dict, List, Optional

from .cancellation import CancellationToken
from .config import load_validator_config
from .core_logic.orchestrator import validate
from .errors import InfraGuardError, OperationCancelled, SetupError
from .models import Summary, ValidationMode
from .output.formatter import FORMATTERS
from .policy_template import DEFAULT_POLICY_FILENAME, DEFAULT_POLICY_TEMPLATE, count_rules, write_policy_template

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_SETUP_ERROR = 2
EXIT_TOOL_ERROR = 3
EXIT_CANCELLED = 130

OUTPUT_EXTENSIONS = {"human": ".txt", "json": ".json", "sarif": ".sarif"}


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )


def parse_output_formats(value: str) -> List[str]:
    formats = [f.strip().lower() for f in value.split(",") if f.strip()]
    unknown = [f for f in formats if f not in FORMATTERS]
    if unknown or not formats:
        raise argparse.ArgumentTypeError(
            f"invalid output format(s): {', '.join(unknown) or value!r} (choose from {', '.join(FORMATTERS)})"
        )
    return formats


def parse_setting(value: str) -> Dict[str, str]:
    key, sep, setting = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {value!r}")
    return {key.strip(): setting}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="infraguard",
        description="Validate Terraform plans against compliance policies and detect drift.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_parser = subparsers.add_parser(
        "validate",
        help="Validate a Terraform configuration against a policy.",
        description="Runs terraform init/validate/plan, evaluates the policy against every planned "
        "resource and, depending on the mode, checks live drift or applies and destroys a sandbox.",
    )
    validate_parser.add_argument(
        "directory", nargs="?", default=None,
        help="Terraform working directory (default: from config, else current directory).",
    )
    validate_parser.add_argument("--policy", dest="policy_path", help="Path to the policy YAML file.")
    validate_parser.add_argument(
        "--provider", help="Cloud provider adapter to use (mock, azure, aws, gcp). Auto-detected from the plan if omitted."
    )
    validate_parser.add_argument(
        "--mode", choices=[m.value for m in ValidationMode], default=None,
        help="validate-existing (rules and drift, read-only) or ephemeral-sandbox (rules, then apply and destroy).",
    )
    validate_parser.add_argument(
        "--output", type=parse_output_formats, default=["human"],
        help="Comma-separated output formats: human, json, sarif (default: human).",
    )
    validate_parser.add_argument(
        "--output-file", help="Write the report to this file instead of stdout. "
        "With several formats, one file per format is written next to it.",
    )
    validate_parser.add_argument(
        "--no-destroy", action="store_true", default=None,
        help="Ephemeral mode: keep the sandbox resources after validation.",
    )
    validate_parser.add_argument("--verbose", "-v", action="store_true", default=None, help="Enable debug logging.")
    validate_parser.add_argument("--config", help="Path to a .infraguard.yml configuration file.")
    validate_parser.add_argument("--terraform-bin", help="Path to the terraform binary.")
    validate_parser.add_argument(
        "--mock-data-file", help="JSON file with live state for the mock provider."
    )
    validate_parser.add_argument(
        "--setting", type=parse_setting, action="append", default=[], metavar="KEY=VALUE",
        help="Provider setting, e.g. subscription_id=..., region=... or project=... (repeatable).",
    )

    init_parser = subparsers.add_parser("init", help="Create a sample policy file.")
    init_parser.add_argument(
        "directory", nargs="?", default=".", help="Project directory (policy goes in <directory>/policies)."
    )
    init_parser.add_argument(
        "--policy-name", default=DEFAULT_POLICY_FILENAME,
        help=f"File name of the policy to create (default: {DEFAULT_POLICY_FILENAME}).",
    )
    init_parser.add_argument("--force", action="store_true", help="Overwrite an existing policy file.")
    return parser


def write_reports(summary: Summary, formats: List[str], output_file: Optional[str]) -> None:
    for fmt in formats:
        rendered = FORMATTERS[fmt](summary)
        if not output_file:
            print(rendered)
            continue
        path = output_file
        if len(formats) > 1:
            path = os.path.splitext(output_file)[0] + OUTPUT_EXTENSIONS[fmt]
        with open(path, "w") as f:
            f.write(rendered)
        print(f"Wrote {fmt} report to {path}")


def run_validate(args: argparse.Namespace) -> int:
    configure_logging(bool(args.verbose))

    provider_settings: Dict[str, str] = {}
    for setting in args.setting:
        provider_settings.update(setting)
    if args.mock_data_file:
        provider_settings["mock_data_file"] = args.mock_data_file

    overrides = {
        "working_dir": args.directory,
        "policy_path": args.policy_path,
        "provider": args.provider,
        "mode": args.mode,
        "no_destroy": args.no_destroy,
        "verbose": args.verbose,
        "terraform_bin": args.terraform_bin,
        "provider_settings": provider_settings or None,
    }

    token = CancellationToken()
    try:
        config = load_validator_config(args.config, overrides)
        if config.verbose and not args.verbose:
            configure_logging(True)
        summary = validate(config, token)
    except (KeyboardInterrupt, OperationCancelled):
        token.cancel()
        print("Validation cancelled.", file=sys.stderr)
        return EXIT_CANCELLED
    except SetupError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_SETUP_ERROR
    except InfraGuardError as e:
        # Tool invocation failures and unexpected provider errors
        logger.debug("Validation run failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_TOOL_ERROR

    try:
        write_reports(summary, args.output, args.output_file)
    except OSError as e:
        print(f"Error: could not write report: {e}", file=sys.stderr)
        return EXIT_SETUP_ERROR

    return EXIT_FAILURES if summary.failed_resources > 0 else EXIT_OK


def run_init(args: argparse.Namespace) -> int:
    try:
        policy_file = write_policy_template(args.directory, args.policy_name, force=args.force)
    except FileExistsError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_SETUP_ERROR
    except OSError as e:
        print(f"Error: failed to write policy file: {e}", file=sys.stderr)
        return EXIT_SETUP_ERROR

    print("✓ Policy initialized successfully!")
    print()
    print(f"Policy file created at: {policy_file}")
    print(f"Policy contains {count_rules(DEFAULT_POLICY_TEMPLATE)} rules.")
    print()
    print("Next steps:")
    print("  1. Review and customize the policy rules:")
    print(f"     {policy_file}")
    print("  2. Validate your infrastructure:")
    print(f"     infraguard validate {args.directory} --policy {policy_file}")
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "validate":
        return run_validate(args)
    return run_init(args)


if __name__ == "__main__":
    sys.exit(main())
