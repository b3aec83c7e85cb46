#!/usr/bin/python3
"""
RouterOS DROP List Generator

This module converts the Spamhaus DROP feeds (IPv4 and IPv6) into RouterOS scripts
that load the listed networks into a dynamic firewall address-list with a timeout.
"""

import argparse
import ipaddress
import json
import logging
import re
import sys
import time
import warnings
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, NamedTuple, Optional, Sequence
import requests


logger = logging.getLogger(__name__)


class DropListConfig:
    """Configuration constants for the DROP list generator."""

    # Feed sources
    FEED_URL_TEMPLATE = 'https://www.spamhaus.org/drop/drop_{version}.json'
    LIST_NAME_TEMPLATE = 'spamhaus-drop-{version}'
    IP_VERSIONS = ('v4', 'v6')

    # Output
    OUTPUT_DIR = Path('build')
    SCRIPT_SUFFIX = '.rsc'
    TIMEOUT_DAYS = 1  # lifetime of each dynamic address-list entry

    # Fetching
    MAX_RETRIES = 3  # total attempts, not retries after the first
    RETRY_DELAY = 1.0  # seconds between attempts
    REQUEST_TIMEOUT = 30
    USER_AGENT = 'RouterOS-DropList-Generator/1.0'

    # Number of script characters shown in dry-run mode
    PREVIEW_LENGTH = 500


class DropListGeneratorError(Exception):
    """Base exception for DROP list generation errors."""
    pass


class FetchError(DropListGeneratorError):
    """Exception raised when a feed cannot be retrieved."""
    pass


class TransportError(FetchError):
    """Network-level failure while talking to the feed host."""
    pass


class StatusError(FetchError):
    """The feed host answered with something other than HTTP 200."""

    def __init__(self, url: str, status_code: int):
        super().__init__(f"Request to {url} failed with status {status_code}")
        self.url = url
        self.status_code = status_code


class FetchExhaustedError(FetchError):
    """Every attempt to fetch a feed failed."""

    def __init__(self, url: str, attempts: int, last_error: Optional[Exception]):
        super().__init__(f"Failed to fetch {url} after {attempts} attempts: {last_error}")
        self.url = url
        self.attempts = attempts
        self.last_error = last_error


class ParseError(DropListGeneratorError):
    """Exception raised when a fetched feed body cannot be read as text."""
    pass


class EmptyResultNotice(UserWarning):
    """A feed produced no valid addresses. Informational only."""
    pass


# Pattern checks, not address parsing: octets may carry leading zeros, and the
# IPv6 shape only covers addresses compressed at the tail ("2001:db8::/32").
IPV4_PATTERN = re.compile(
    r'(?:(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\.){3}'
    r'(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)'
    r'(?:/[0-9]{1,2})?'
)
IPV6_PATTERN = re.compile(
    r'(?:[0-9a-fA-F]{1,4}:){1,7}(?::[0-9a-fA-F]{1,4}|:)(?:/[0-9]{1,3})?'
)
PREFIX_PATTERN = re.compile(r'[0-9]{1,3}')


def is_ipv4(candidate: object) -> bool:
    """Check an IPv4 address or CIDR block against the loose feed pattern."""
    return isinstance(candidate, str) and IPV4_PATTERN.fullmatch(candidate) is not None


def is_ipv6(candidate: object) -> bool:
    """Check an IPv6 address or CIDR block against the loose feed pattern."""
    return isinstance(candidate, str) and IPV6_PATTERN.fullmatch(candidate) is not None


def _is_network(candidate: object, network_type: type) -> bool:
    if not isinstance(candidate, str) or candidate != candidate.strip():
        return False
    _, slash, prefix = candidate.partition('/')
    if slash and not PREFIX_PATTERN.fullmatch(prefix):
        # ipaddress would also accept netmask notation here
        return False
    try:
        network_type(candidate, strict=False)
    except ValueError:
        return False
    return True


def is_ipv4_strict(candidate: object) -> bool:
    """Validate an IPv4 address or CIDR block with the ipaddress module."""
    return _is_network(candidate, ipaddress.IPv4Network)


def is_ipv6_strict(candidate: object) -> bool:
    """Validate an IPv6 address or CIDR block with the ipaddress module."""
    return _is_network(candidate, ipaddress.IPv6Network)


Validator = Callable[[object], bool]

VALIDATORS = {
    'v4': is_ipv4,
    'v6': is_ipv6,
}

STRICT_VALIDATORS = {
    'v4': is_ipv4_strict,
    'v6': is_ipv6_strict,
}


@dataclass(frozen=True)
class FeedSource:
    """One address family's feed and the RouterOS list it is rendered into."""
    version: str
    url: str
    list_name: str
    command_path: str
    validator: Validator


def build_feed_sources(versions: Sequence[str] = DropListConfig.IP_VERSIONS,
                       strict: bool = False) -> List[FeedSource]:
    """
    Build one FeedSource per address family from the configured templates.

    Args:
        versions: Address families to process, in processing order
        strict: Use ipaddress-based validators instead of the loose patterns

    Returns:
        List of FeedSource objects in the order given

    Raises:
        ValueError: If a version is not one of 'v4' or 'v6'
    """
    validators = STRICT_VALIDATORS if strict else VALIDATORS
    sources = []
    for version in versions:
        if version not in validators:
            raise ValueError(f"Unsupported address family: {version!r}")
        sources.append(FeedSource(
            version=version,
            url=DropListConfig.FEED_URL_TEMPLATE.format(version=version),
            list_name=DropListConfig.LIST_NAME_TEMPLATE.format(version=version),
            command_path='/ipv6' if version == 'v6' else '/ip',
            validator=validators[version],
        ))
    return sources


class RecordOutcome(NamedTuple):
    """Result of decoding one feed line: either a CIDR or a skip reason."""
    cidr: Optional[str] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.reason is None


class ParseResult(NamedTuple):
    """Valid entries of a feed in feed order, plus the number of skipped lines."""
    entries: List[str]
    skipped: int


def decode_record(line: str, validator: Validator) -> RecordOutcome:
    """Decode a single JSON feed record and validate its ``cidr`` field."""
    try:
        record = json.loads(line)
    except (ValueError, RecursionError):
        return RecordOutcome(reason='invalid-json')
    if not isinstance(record, dict):
        return RecordOutcome(reason='not-an-object')
    cidr = record.get('cidr')
    if not cidr:
        return RecordOutcome(reason='missing-cidr')
    if not validator(cidr):
        return RecordOutcome(reason='invalid-cidr')
    return RecordOutcome(cidr=cidr)


def parse_feed(body: str, validator: Validator, label: Optional[str] = None) -> ParseResult:
    """
    Extract valid CIDR entries from a newline-delimited JSON feed.

    Malformed lines, records without a ``cidr`` field and addresses rejected by
    the validator are skipped and counted. Blank lines are ignored.

    Args:
        body: Raw feed text
        validator: Address family predicate applied to each ``cidr`` value
        label: Name used in log messages, defaults to the validator's name

    Returns:
        ParseResult with the entries in feed order and the skip count
    """
    label = label or getattr(validator, '__name__', 'feed')
    entries = []
    skipped = 0

    for line_num, line in enumerate(body.splitlines(), 1):
        line = line.strip()
        if not line:
            continue

        outcome = decode_record(line, validator)
        if outcome.ok:
            entries.append(outcome.cidr)
        else:
            skipped += 1
            logger.debug(f"Line {line_num}: skipped ({outcome.reason}): {line[:120]}")

    if not entries:
        message = f"No valid {label} addresses found after parsing"
        logger.warning(message)
        warnings.warn(message, EmptyResultNotice, stacklevel=2)
    if skipped > 0:
        logger.info(f"Skipped {skipped} invalid or non-CIDR lines for {label}")

    return ParseResult(entries, skipped)


def format_timestamp(moment: Optional[datetime] = None) -> str:
    """Format a moment as a UTC ``YYYY-MM-DD HH:MM:SS`` string."""
    if moment is None:
        moment = datetime.now(timezone.utc)
    elif moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime('%Y-%m-%d %H:%M:%S')


def render_script(entries: Sequence[str], list_name: str, command_path: str,
                  timeout_days: int = DropListConfig.TIMEOUT_DAYS,
                  generated_at: Optional[datetime] = None) -> str:
    """
    Render a RouterOS script that replaces an address-list with the given entries.

    Args:
        entries: CIDR blocks or addresses, rendered in the given order
        list_name: RouterOS address-list name
        command_path: Command menu prefix, '/ip' or '/ipv6'
        timeout_days: Lifetime of each dynamic entry
        generated_at: Timestamp for the header line, defaults to now (UTC)

    Returns:
        The script text

    Raises:
        ValueError: If entries is empty
    """
    if not entries:
        raise ValueError(f"Refusing to render empty address-list {list_name}")

    lines = [
        f"# Generated on {format_timestamp(generated_at)}",
        f"{command_path} firewall address-list remove [find list={list_name}]",
        ":local ips { \\",
    ]
    last = len(entries) - 1
    for index, entry in enumerate(entries):
        separator = ';' if index < last else ''
        lines.append(f'{{ "{entry}" }}{separator}\\')
    lines += [
        "};",
        ":foreach ip in=$ips do={",
        f"\t{command_path} firewall address-list add list={list_name} "
        f"address=$ip dynamic=yes timeout={timeout_days}d",
        "}",
        ":set ips",
    ]
    return '\n'.join(lines) + '\n'


class DropListGenerator:
    """Main class for fetching DROP feeds and writing RouterOS scripts."""

    def __init__(self, dry_run: bool = False, verbose: bool = False,
                 output_dir: Optional[str] = None,
                 versions: Sequence[str] = DropListConfig.IP_VERSIONS,
                 timeout_days: int = DropListConfig.TIMEOUT_DAYS,
                 max_retries: int = DropListConfig.MAX_RETRIES,
                 retry_delay: float = DropListConfig.RETRY_DELAY,
                 request_timeout: float = DropListConfig.REQUEST_TIMEOUT,
                 strict: bool = False, continue_on_error: bool = False,
                 log_file: Optional[str] = None):
        """
        Initialize the DROP list generator.

        Args:
            dry_run: If True, log the scripts instead of writing them
            verbose: If True, enable debug logging
            output_dir: Directory receiving the .rsc files (default: build)
            versions: Address families to process, in order
            timeout_days: Lifetime of each dynamic address-list entry
            max_retries: Total fetch attempts per feed
            retry_delay: Seconds to wait between attempts
            request_timeout: Seconds before a single request is abandoned
            strict: Validate addresses with ipaddress instead of patterns
            continue_on_error: Keep processing other families after a failure
            log_file: Optional file receiving a copy of the log
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if request_timeout <= 0:
            raise ValueError("request_timeout must be greater than 0")

        self.dry_run = dry_run
        self.config = DropListConfig()
        self.output_dir = Path(output_dir) if output_dir else self.config.OUTPUT_DIR
        self.timeout_days = timeout_days
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.request_timeout = request_timeout
        self.continue_on_error = continue_on_error
        self.sources = build_feed_sources(versions, strict=strict)
        self._setup_logging(verbose, log_file)
        self.session = self._create_session()

    def _setup_logging(self, verbose: bool, log_file: Optional[str]) -> None:
        """Configure logging with appropriate level and handlers."""
        level = logging.DEBUG if verbose else logging.INFO

        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        logging.basicConfig(
            level=level,
            format=log_format,
            handlers=[logging.StreamHandler()]
        )
        self.logger = logging.getLogger(__name__)
        self.logger.setLevel(level)

        # basicConfig is a no-op once the root logger has handlers
        self.file_handler: Optional[logging.Handler] = None
        if log_file:
            self.file_handler = logging.FileHandler(log_file, encoding='utf-8')
            self.file_handler.setFormatter(logging.Formatter(log_format))
            self.logger.addHandler(self.file_handler)

        if self.dry_run:
            self.logger.info("=== DRY RUN MODE - No files will be written ===")

    def _close_log_file(self) -> None:
        """Detach and close the --log-file handler, if any."""
        if self.file_handler is not None:
            self.logger.removeHandler(self.file_handler)
            self.file_handler.close()
            self.file_handler = None

    def _create_session(self) -> requests.Session:
        """Create a configured requests session."""
        session = requests.Session()
        session.headers.update({'User-Agent': self.config.USER_AGENT})
        return session

    def _fetch_url(self, url: str) -> bytes:
        """
        Make a single attempt at fetching a URL.

        Returns:
            The raw response body

        Raises:
            TransportError: If the host cannot be reached or the request times out
            StatusError: If the response status is not 200
        """
        start_time = time.time()
        try:
            response = self.session.get(url, timeout=self.request_timeout)
        except requests.RequestException as e:
            raise TransportError(f"Request error for {url}: {e}") from e

        if response.status_code != 200:
            raise StatusError(url, response.status_code)

        body = response.content
        elapsed = time.time() - start_time
        self.logger.info(
            f"Successfully fetched {url}, "
            f"response size: {len(body)} bytes, "
            f"elapsed: {elapsed:.2f}s"
        )
        return body

    def fetch_feed(self, url: str, validator: Validator,
                   label: Optional[str] = None) -> ParseResult:
        """
        Fetch a feed with a bounded number of attempts and parse it.

        Transport and status failures are retried after a fixed delay until
        max_retries attempts have been made. A body that cannot be decoded is
        not retried.

        Raises:
            FetchExhaustedError: If every attempt failed
            ParseError: If the body is not valid UTF-8
        """
        attempts = 0
        last_error: Optional[FetchError] = None
        body = None

        while attempts < self.max_retries:
            attempts += 1
            try:
                body = self._fetch_url(url)
                break
            except (TransportError, StatusError) as e:
                last_error = e
            if attempts < self.max_retries:
                self.logger.warning(f"Retrying ({attempts}/{self.max_retries}) for {url}: {last_error}")
                time.sleep(self.retry_delay)

        if body is None:
            raise FetchExhaustedError(url, attempts, last_error) from last_error

        try:
            text = body.decode('utf-8')
        except UnicodeDecodeError as e:
            raise ParseError(f"Failed to parse feed from {url}: {e}") from e

        return parse_feed(text, validator, label=label)

    def write_script(self, list_name: str, script: str) -> Path:
        """Write a rendered script to <output_dir>/<list_name>.rsc."""
        output_file = self.output_dir / f"{list_name}{self.config.SCRIPT_SUFFIX}"

        if self.dry_run:
            self.logger.info(f"DRY RUN: Would write {len(script)} bytes to {output_file}")
            self.logger.info(f"DRY RUN: Script preview:\n{script[:self.config.PREVIEW_LENGTH]}...")
            return output_file

        self.output_dir.mkdir(parents=True, exist_ok=True)
        with open(output_file, 'w', encoding='utf-8', newline='\n') as f:
            f.write(script)
        self.logger.info(f"Script saved to {output_file}")
        return output_file

    def process_source(self, source: FeedSource) -> Optional[Path]:
        """
        Run fetch, render and write for one address family.

        Returns:
            Path of the script, or None when the feed had no valid entries
        """
        self.logger.info(f"Fetching {source.version} addresses from {source.url}")
        with warnings.catch_warnings():
            # already logged by parse_feed
            warnings.simplefilter('ignore', EmptyResultNotice)
            result = self.fetch_feed(source.url, source.validator, label=source.version)

        if not result.entries:
            self.logger.info(f"No valid {source.version} addresses found for {source.list_name}, skipping")
            return None

        self.logger.info(
            f"Found {len(result.entries)} {source.version} addresses. "
            f"Generating RouterOS script for {source.list_name}"
        )
        script = render_script(result.entries, source.list_name, source.command_path,
                               timeout_days=self.timeout_days)
        return self.write_script(source.list_name, script)

    def run(self) -> int:
        """
        Main execution method.

        Returns:
            Number of address families that failed (always 0 unless
            continue_on_error is set, since failures otherwise propagate)
        """
        self.logger.info("=== Starting RouterOS DROP list generation ===")
        failed = []

        try:
            for source in self.sources:
                try:
                    self.process_source(source)
                except DropListGeneratorError as e:
                    if not self.continue_on_error:
                        raise
                    self.logger.error(f"Failed to process {source.list_name}, continuing without it: {e}")
                    failed.append(source.version)
        finally:
            self.session.close()
            self._close_log_file()

        if failed:
            self.logger.warning(f"Completed with failures for: {', '.join(failed)}")
        else:
            self.logger.info("=== DROP list generation completed successfully ===")
        return len(failed)


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return number


def _positive_float(value: str) -> float:
    number = float(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be greater than 0, got {value}")
    return number


def _non_negative_float(value: str) -> float:
    number = float(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must not be negative, got {value}")
    return number


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Generate RouterOS address-list scripts from the Spamhaus DROP lists',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                          # Write build/spamhaus-drop-v4.rsc and -v6.rsc
  %(prog)s --dry-run                # Show what would be written
  %(prog)s --versions v4            # Only process the IPv4 list
  %(prog)s --output-dir /tmp/rsc    # Write scripts elsewhere
  %(prog)s --continue-on-error      # Do not abort when one feed fails
        """
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Show what would be written without creating files'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose (debug) logging'
    )
    parser.add_argument(
        '--output-dir',
        type=str,
        default=str(DropListConfig.OUTPUT_DIR),
        help='Directory for generated .rsc files (default: %(default)s)'
    )
    parser.add_argument(
        '--versions',
        nargs='+',
        choices=DropListConfig.IP_VERSIONS,
        default=list(DropListConfig.IP_VERSIONS),
        help='Address families to process, in order (default: v4 v6)'
    )
    parser.add_argument(
        '--timeout-days',
        type=_positive_int,
        default=DropListConfig.TIMEOUT_DAYS,
        help='Lifetime of each address-list entry in days (default: %(default)s)'
    )
    parser.add_argument(
        '--max-retries',
        type=_positive_int,
        default=DropListConfig.MAX_RETRIES,
        help='Total fetch attempts per feed (default: %(default)s)'
    )
    parser.add_argument(
        '--retry-delay',
        type=_non_negative_float,
        default=DropListConfig.RETRY_DELAY,
        help='Seconds between fetch attempts (default: %(default)s)'
    )
    parser.add_argument(
        '--request-timeout',
        type=_positive_float,
        default=DropListConfig.REQUEST_TIMEOUT,
        help='Seconds before a single request is abandoned (default: %(default)s)'
    )
    parser.add_argument(
        '--strict',
        action='store_true',
        help='Validate addresses with the ipaddress module instead of patterns'
    )
    parser.add_argument(
        '--continue-on-error',
        action='store_true',
        help='Keep processing remaining feeds when one fails'
    )
    parser.add_argument(
        '--log-file',
        type=str,
        help='Also write the log to this file'
    )

    args = parser.parse_args(argv)

    try:
        generator = DropListGenerator(
            dry_run=args.dry_run,
            verbose=args.verbose,
            output_dir=args.output_dir,
            versions=args.versions,
            timeout_days=args.timeout_days,
            max_retries=args.max_retries,
            retry_delay=args.retry_delay,
            request_timeout=args.request_timeout,
            strict=args.strict,
            continue_on_error=args.continue_on_error,
            log_file=args.log_file
        )
        failed = generator.run()
        return 1 if failed else 0
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Interrupted by user")
        return 130
    except FetchExhaustedError as e:
        logging.getLogger(__name__).error(
            f"Fatal error after {e.attempts} attempts: {e.last_error}"
        )
        return 1
    except Exception as e:
        logging.getLogger(__name__).error(f"Fatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
