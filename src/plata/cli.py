"""Command line entry point for signed AWS query calls."""
import argparse
import asyncio
import json
import logging
import sys
import time
from typing import List, Optional

from .config import ClientConfig
from .credentials import load_credentials
from .error_handler import PlataError
from .logging_config import get_logger, log_performance, setup_logging
from .services.ec2 import EC2

EC2_COMMANDS = {
    'describe-regions': 'describe_regions',
    'describe-availability-zones': 'describe_availability_zones',
    'describe-instances': 'describe_instances',
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="plata", description="Signed AWS API calls")
    parser.add_argument('--auth-file', help='JSON file with key/secret (defaults to the boto3 credential chain)')
    parser.add_argument('--profile', help='boto3 profile used when no auth file is given')
    parser.add_argument('--region', help='AWS region (overrides environment)')
    parser.add_argument('--config', help='JSON client configuration file')
    parser.add_argument('--log-level', default=None, help='DEBUG, INFO, WARNING, ERROR')
    parser.add_argument('--json-logs', action='store_true', help='Emit logs as JSON')

    subparsers = parser.add_subparsers(dest='service', required=True)
    ec2_parser = subparsers.add_parser('ec2', help='EC2 query actions')
    ec2_parser.add_argument('command', choices=sorted(EC2_COMMANDS))

    return parser


async def _run(args: argparse.Namespace) -> dict:
    config = ClientConfig.from_file(args.config) if args.config else ClientConfig.from_env()
    if args.region:
        config.region = args.region
    config.validate()

    credentials = load_credentials(args.auth_file, profile_name=args.profile)
    ec2 = EC2(
        credentials.key,
        credentials.secret,
        session_token=credentials.session_token,
        region=config.region,
        config=config
    )
    return await getattr(ec2, EC2_COMMANDS[args.command])()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging("plata", log_level=args.log_level, enable_json=args.json_logs or None)
    logger = get_logger(__name__)

    start_time = time.time()
    try:
        result = asyncio.run(_run(args))
    except PlataError as e:
        logger.error("command failed", service=args.service, error_type=e.error_type.value, error=e.message)
        print(f"Error: {e.message}", file=sys.stderr)
        return 2

    log_performance(logging.getLogger(__name__), f"{args.service} {args.command}", (time.time() - start_time) * 1000)
    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
