"""Command line entrypoint for ``stackdeploy``."""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import re
import sys
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, NoReturn, Optional, Sequence, Tuple

import yaml
from jinja2 import TemplateError

from .clients.cloudformation import CloudFormationClient
from .constants import VALID_CAPABILITIES
from .deploy import deploy_stack
from .errors import DeployStackError
from .models import (
    Capability,
    DeploymentConfig,
    DeployRequest,
    DeployResult,
    Parameter,
    Tag,
)
from .prompt import auto_confirm, create_prompt
from .rendering import TemplateRenderer
from .storage import DeploymentRepository
from .waiters.base import StackWaiter
from .waiters.event_log import EventLogWaiter
from .waiters.table import TableWaiter

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_DEPLOY_ERROR = 3

TAG_OPTION = re.compile(r"^--tag:(?P<name>.+)$")
ASSIGNMENT = re.compile(r"^(?P<name>\w+)=(?P<value>.*)$")

Pair = Tuple[str, str]

EPILOG = """\
Credentials default to the standard AWS SDK chain: AWS_* environment
variables, then ~/.aws/credentials, then the instance profile.

Tags and template parameters:
  --tag:NAME VALUE       tag added to all created resources (repeatable)
  NAME=VALUE             value for a template parameter

Example:
  stackdeploy \\
      --profile test \\
      --region us-east-1 \\
      --stack-name my-app-dev \\
      --template-path my-app.yaml \\
      --tag:app my-app \\
      DomainName=my-app.example.test
"""


class OptionError(Exception):
    """Raised for an invalid command line."""


class OptionParser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        raise OptionError(message)


@dataclass
class Invocation:
    """Fully resolved inputs for one CLI deployment."""

    stack_name: str
    region: str
    template_body: str
    parameters: List[Parameter] = field(default_factory=list)
    capabilities: List[Capability] = field(default_factory=list)
    tags: List[Tag] = field(default_factory=list)
    profile: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    endpoint_url: Optional[str] = None
    progress: str = "table"
    assume_yes: bool = False


def build_parser() -> OptionParser:
    parser = OptionParser(
        prog="stackdeploy",
        description="Deploy a CloudFormation template through a reviewed change set.",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    credentials = parser.add_argument_group("credential options")
    credentials.add_argument("--profile", help="Profile name in ~/.aws/credentials.")
    credentials.add_argument("--access-key-id", help="Explicit access key id.")
    credentials.add_argument("--secret-access-key", help="Secret access key.")

    parser.add_argument("--region", help="AWS region to create the stack in.")
    parser.add_argument("--stack-name", help="CloudFormation stack name.")
    parser.add_argument("--template-path", help="Path to the stack template (YAML or JSON).")
    parser.add_argument(
        "--config",
        help="Deployment file (YAML or JSON) providing defaults for any option.",
    )
    parser.add_argument(
        "--parameters-file",
        help="Template parameters as a mapping or CloudFormation CLI parameter list.",
    )
    parser.add_argument(
        "--capabilities",
        help=f"Comma separated capabilities: {', '.join(VALID_CAPABILITIES)}.",
    )
    parser.add_argument(
        "--template-var",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Render the template with Jinja using this variable (repeatable).",
    )
    parser.add_argument(
        "--endpoint-url",
        default=os.environ.get("AWS_ENDPOINT_URL"),
        help="Override the CloudFormation endpoint (e.g. LocalStack).",
    )
    parser.add_argument(
        "--progress",
        choices=["table", "log", "none"],
        default=os.environ.get("STACKDEPLOY_PROGRESS", "table"),
        help="How to report progress while waiting (default: table).",
    )
    parser.add_argument(
        "--yes",
        action="store_true",
        help="Execute the change set without asking for confirmation.",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("STACKDEPLOY_LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO).",
    )
    parser.add_argument("parameters", nargs="*", metavar="NAME=VALUE")
    return parser


def extract_tags(argv: Sequence[str]) -> Tuple[List[str], List[Pair]]:
    """Pull ``--tag:NAME VALUE`` pairs out of ``argv``; argparse cannot express them."""
    remaining: List[str] = []
    tags: List[Pair] = []
    args = list(argv)
    index = 0
    while index < len(args):
        match = TAG_OPTION.match(args[index])
        if not match:
            remaining.append(args[index])
            index += 1
            continue
        name = match.group("name")
        if index + 1 >= len(args) or args[index + 1].startswith("--"):
            raise OptionError(f"--tag:{name} requires a value")
        tags.append((name, args[index + 1]))
        index += 2
    return remaining, tags


def parse_assignments(values: Sequence[str], kind: str) -> List[Pair]:
    """Parse ``NAME=VALUE`` strings into pairs, keeping order and repeats."""
    parsed: List[Pair] = []
    unhandled: List[str] = []
    for value in values:
        match = ASSIGNMENT.match(value)
        if match:
            parsed.append((match.group("name"), match.group("value")))
        else:
            unhandled.append(value)
    if unhandled:
        raise OptionError(f"Unhandled {kind}: {' '.join(unhandled)}")
    return parsed


def merge_pairs(base: Mapping[str, str], overrides: Sequence[Pair]) -> List[Pair]:
    """Base entries not named in ``overrides``, followed by every override in order."""
    overridden = {key for key, _ in overrides}
    merged = [(key, value) for key, value in base.items() if key not in overridden]
    return merged + list(overrides)


def parse_capabilities(value: str) -> List[Capability]:
    names = [name.strip() for name in value.split(",") if name.strip()]
    unknown = [name for name in names if name not in VALID_CAPABILITIES]
    if unknown:
        raise OptionError(f"Unknown capabilities: {', '.join(unknown)}")
    return [Capability(name) for name in names]


def parse_arguments(
    argv: Sequence[str],
    repository: Optional[DeploymentRepository] = None,
    renderer: Optional[TemplateRenderer] = None,
) -> Tuple[Invocation, str]:
    """Resolve the command line (and optional deployment file) into an ``Invocation``.

    Returns the invocation and the requested log level.
    """
    repository = repository or DeploymentRepository()
    renderer = renderer or TemplateRenderer()

    remaining, cli_tags = extract_tags(argv)
    args = build_parser().parse_intermixed_args(remaining)

    try:
        config = repository.load_deployment(args.config) if args.config else DeploymentConfig()
    except FileNotFoundError as exc:
        raise OptionError(str(exc)) from exc

    stack_name = args.stack_name or config.stack_name
    region = args.region or config.region
    template_path = args.template_path or config.template_path
    for option, value in (
        ("--region", region),
        ("--stack-name", stack_name),
        ("--template-path", template_path),
    ):
        if not value:
            raise OptionError(f"{option} is required")

    if bool(args.access_key_id) != bool(args.secret_access_key):
        raise OptionError("Must pass both --access-key-id and --secret-access-key if one is used")

    template_file = repository.resolve(template_path)
    if not template_file.exists():
        raise OptionError(f"Template path does not exist: {template_file}")

    capabilities = (
        parse_capabilities(args.capabilities)
        if args.capabilities is not None
        else list(config.capabilities)
    )

    base_parameters: Dict[str, str] = dict(config.parameters)
    parameters_file = args.parameters_file or config.parameters_file
    if parameters_file:
        try:
            base_parameters.update(repository.load_parameters(parameters_file))
        except FileNotFoundError as exc:
            raise OptionError(str(exc)) from exc
    parameters = merge_pairs(base_parameters, parse_assignments(args.parameters, "args"))
    tags = merge_pairs(config.tags, cli_tags)

    template_vars = dict(config.template_vars)
    template_vars.update(parse_assignments(args.template_var, "template vars"))

    template_body = renderer.render(repository.load_template(template_file), template_vars)

    invocation = Invocation(
        stack_name=stack_name,
        region=region,
        template_body=template_body,
        parameters=[Parameter(key=key, value=value) for key, value in parameters],
        capabilities=capabilities,
        tags=[Tag(key=key, value=value) for key, value in tags],
        profile=args.profile or config.profile,
        access_key_id=args.access_key_id,
        secret_access_key=args.secret_access_key,
        endpoint_url=args.endpoint_url or config.endpoint_url,
        progress=args.progress,
        assume_yes=args.yes,
    )
    return invocation, args.log_level


def configure_logging(level: str) -> None:
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise OptionError(f"Invalid log level: {level}")
    log_format = "%(message)s"
    if numeric_level <= logging.DEBUG:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    logging.basicConfig(level=numeric_level, format=log_format, stream=sys.stdout)
    for noisy in ("botocore", "boto3", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def make_waiter(progress: str) -> Optional[StackWaiter]:
    if progress == "table":
        return TableWaiter()
    if progress == "log":
        return EventLogWaiter()
    return None


async def run(invocation: Invocation) -> DeployResult:
    client = CloudFormationClient.from_session(
        region=invocation.region,
        profile=invocation.profile,
        access_key_id=invocation.access_key_id,
        secret_access_key=invocation.secret_access_key,
        endpoint_url=invocation.endpoint_url,
    )
    request = DeployRequest(
        stack_name=invocation.stack_name,
        template_body=invocation.template_body,
        parameters=invocation.parameters,
        capabilities=invocation.capabilities,
        tags=invocation.tags,
    )
    prompt = auto_confirm if invocation.assume_yes else create_prompt()
    return await deploy_stack(
        client, request, waiter=make_waiter(invocation.progress), prompt=prompt
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    try:
        invocation, log_level = parse_arguments(argv)
        configure_logging(log_level)
    except (OptionError, ValueError, yaml.YAMLError, TemplateError) as exc:
        print(exc, file=sys.stderr)
        return EXIT_USAGE

    try:
        asyncio.run(run(invocation))
    except DeployStackError as exc:
        print(exc, file=sys.stderr)
        return EXIT_DEPLOY_ERROR
    except Exception:  # pylint: disable=broad-except
        log.exception("Unhandled error")
        return EXIT_FAILURE

    print("Done")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
