#!/usr/bin/env python3
"""
Aerodrome Transport - Command-line Entry Point

This module issues a single request through the pooled, robots-aware
transport and prints the response. It is handy for checking marketplace
endpoints, headers and configuration files without writing any code.

Usage Examples:
    python main.py GET https://api.example.com/v1/orders -H "Authorization: Bearer TOKEN"
    python main.py --config transport.yaml GET /v1/orders --include
    python main.py POST https://api.example.com/v1/returns --data '{"id": 1}' -H "Content-Type: application/json"

Exit codes:
    0  the server answered with a 2xx or 3xx status
    1  the server answered with a 4xx or 5xx status, or the request failed
    2  bad arguments or configuration
"""

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Dict, List, Optional

from client import HttpClient
from config import TransportConfig, create_client_config, load_config
from errors import TransportError
from models import ApiResponse, HttpMethod, PostFile
from pool import ConnectionPool
from utils import format_duration, format_file_size, setup_logging


def parse_headers(values: List[str]) -> Dict[str, str]:
    """
    Parse repeated "Name: value" arguments into a header map

    Raises:
        ValueError: If an entry has no colon or an empty name
    """
    headers: Dict[str, str] = {}
    for raw in values or []:
        name, sep, value = raw.partition(':')
        if not sep or not name.strip():
            raise ValueError(f"Invalid header '{raw}', expected 'Name: value'")
        headers[name.strip()] = value.strip()
    return headers


def print_response(response: ApiResponse, include_headers: bool = False, output: Optional[str] = None):
    """Print a response summary and its body to the console, or save the body"""
    status_icon = "✅" if response.is_success() else ("↪️ " if 300 <= response.status_code < 400 else "❌")
    print(f"{status_icon} {response.protocol_version} {response.status_code} {response.reason}")

    if response.redirect_chain:
        print(f"   Redirects ({len(response.redirect_chain)}):")
        for url in response.redirect_chain:
            print(f"     → {url}")

    if include_headers:
        for name, value in response.headers:
            print(f"{name}: {value}")
        print()

    if response.truncated:
        print(f"⚠️  Body truncated at {format_file_size(len(response.content))}")

    if output:
        Path(output).write_bytes(response.content)
        print(f"💾 Saved {format_file_size(len(response.content))} to {output}")
    elif response.charset:
        print(response.text)
    elif response.content:
        print(f"📦 Binary body ({format_file_size(len(response.content))}); use --output to save it")


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Aerodrome Transport - send one request through the marketplace HTTP transport',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s GET https://api.example.com/v1/orders
  %(prog)s --config transport.yaml GET /v1/orders --include
  %(prog)s PUT https://api.example.com/v1/items/7 --data-file item.json -H "Content-Type: application/json"
        """
    )

    parser.add_argument('method',
                        help='HTTP method (GET, POST, PUT, PATCH, DELETE, HEAD, OPTIONS)')
    parser.add_argument('url',
                        help='Absolute URL, or a path when the config locks a host')
    parser.add_argument('--config',
                        help='Configuration file path (YAML)')
    parser.add_argument('-H', '--header',
                        action='append',
                        default=[],
                        help='Request header as "Name: value" (repeatable)')
    body_group = parser.add_mutually_exclusive_group()
    body_group.add_argument('--data',
                            help='Request body text')
    body_group.add_argument('--data-file',
                            help='Send the contents of this file as the request body')
    parser.add_argument('--output',
                        help='Write the response body to this file')
    parser.add_argument('--include',
                        action='store_true',
                        help='Print response headers')
    parser.add_argument('--max-size',
                        type=int,
                        help='Maximum response body size in bytes (negative for unbounded)')
    parser.add_argument('--log-level',
                        default='WARNING',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Set logging level (default: WARNING)')
    parser.add_argument('--log-file',
                        help='Log file path')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point. Returns the process exit code."""
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    try:
        setup_logging(log_level=args.log_level, log_file=args.log_file)
    except (OSError, AttributeError) as e:
        print(f"❌ Failed to set up logging: {str(e)}")
        return 2
    logger = logging.getLogger('aerodrome')

    try:
        method = HttpMethod.parse(args.method)
        headers = parse_headers(args.header)
    except ValueError as e:
        print(f"❌ Error: {str(e)}")
        return 2

    try:
        config = load_config(args.config) if args.config else TransportConfig(client=create_client_config())
    except FileNotFoundError:
        print(f"❌ Configuration file not found: {args.config}")
        print("Please check the file path and try again.")
        return 2
    except Exception as e:
        print(f"❌ Failed to load configuration: {str(e)}")
        print("Please check the configuration file format and try again.")
        return 2

    body = None
    if args.data is not None:
        body = args.data
    elif args.data_file:
        body = PostFile(args.data_file, content_type=headers.get('Content-Type', 'application/octet-stream'))

    logger.info(f"{method.value} {args.url}")

    with ConnectionPool.from_settings(config.pool, config.client.connect_retries) as pool:
        with HttpClient(config.client, pool) as client:
            try:
                request = client.builder.build(method, args.url, headers, body)
            except (TransportError, ValueError) as e:
                print(f"❌ Invalid request: {str(e)}")
                return 2

            start_time = time.time()
            result = client.execute(request, max_download_size=args.max_size)
            duration = time.time() - start_time

    if not result.success:
        print(f"❌ Request failed ({result.error.phase}): {str(result.error)}")
        return 1

    response = result.response
    try:
        print_response(response, include_headers=args.include, output=args.output)
    except OSError as e:
        print(f"❌ Could not write output file: {str(e)}")
        return 1

    print(f"⏱️  {format_duration(duration)}")
    logger.info(f"Finished with HTTP {response.status_code}, {format_file_size(len(response.content))} in {format_duration(duration)}")
    return 1 if response.is_failure() else 0


if __name__ == "__main__":
    sys.exit(main())
