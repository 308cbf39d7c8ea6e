#!/usr/bin/env python3
"""Mailbox usage checker: probes IMAP accounts, logs usage statistics, mails a report."""

from __future__ import annotations

import argparse
import imaplib
import json
import re
import smtplib
import ssl
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from email.message import EmailMessage
from pathlib import Path
from typing import Callable, Iterable, Iterator

from stats_log import (
    DEFAULT_MAX_LINES,
    DEFAULT_TRUNC_LINES,
    ROTATION_TRUNCATED,
    ROTATION_UNLINKED,
    RotationResult,
    StatsLog,
    UsageRecord,
)


DEFAULT_CONFIG_FILE = "config.json"
DEFAULT_ACCOUNTS_FILE = "acctlst"
DEFAULT_STATS_FILE = "imapsize-stats.csv"
DEFAULT_REPORT_FILE = "imapsize-report.txt"
DEFAULT_WARNING_PERCENT = 85.0
DEFAULT_IMAP_PORT = 993
DEFAULT_PROBE_TIMEOUT_SECONDS = 60.0
DEFAULT_SMTP_HOST = "localhost"
DEFAULT_SMTP_PORT = 25
ACCOUNT_FIELD_DELIMITER = ","
ACCOUNT_FIELD_COUNT = 4
COMMENT_MARKER = "#"
BYTES_PER_MEGABYTE = 1024 * 1024
STATUS_OK = "OK"
STATUS_WARNING = "WARNING"
RFC822_SIZE_PATTERN = re.compile(rb"RFC822\.SIZE\s+(\d+)", re.IGNORECASE)
STATUS_MESSAGES_PATTERN = re.compile(rb"MESSAGES\s+(\d+)", re.IGNORECASE)
LITERAL_MARKER_PATTERN = re.compile(rb"\{\d+\}\s*$")


@dataclass(frozen=True)
class Account:
    server: str
    username: str
    password: str
    quota_mb: int


@dataclass(frozen=True)
class AccountSyntaxError:
    line_number: int
    reason: str


@dataclass
class FolderInfo:
    name: str
    flags: set[str]


@dataclass(frozen=True)
class ProbeResult:
    message_count: int
    total_bytes: int


@dataclass(frozen=True)
class LoginFailed:
    detail: str


@dataclass(frozen=True)
class QuotaUsage:
    quota_bytes: int
    percent: int


@dataclass(frozen=True)
class MailConfig:
    from_address: str
    to_address: str
    smtp_host: str
    smtp_port: int
    smtp_starttls: bool
    smtp_username: str | None
    smtp_password: str | None


@dataclass(frozen=True)
class AppConfig:
    accounts_file: Path
    stats_file: Path
    report_file: Path | None
    max_lines: int
    trunc_lines: int
    warning_percent: float
    imap_port: int
    probe_timeout_seconds: float
    mail: MailConfig


class ProbeError(Exception):
    pass


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Checks IMAP mailboxes for message count and total size, computes usage "
            "against each account's quota, appends the numbers to a bounded CSV "
            "statistics file and mails a summary report."
        )
    )
    parser.add_argument(
        "--config-file",
        default=DEFAULT_CONFIG_FILE,
        help=f"Path to app config JSON file (default: {DEFAULT_CONFIG_FILE}). File is optional.",
    )
    parser.add_argument(
        "--accounts-file",
        default=None,
        help=(
            "Account list, one 'server, username, password, quota_mb' entry per line "
            f"(default: config accounts_file or {DEFAULT_ACCOUNTS_FILE})."
        ),
    )
    parser.add_argument(
        "--stats-file",
        default=None,
        help=f"CSV statistics file (default: config stats_file or {DEFAULT_STATS_FILE}).",
    )
    parser.add_argument(
        "--report-file",
        default=None,
        help=(
            "File the report block is appended to; pass an empty string to disable "
            f"(default: config report_file or {DEFAULT_REPORT_FILE})."
        ),
    )
    parser.add_argument(
        "--max-lines",
        default=None,
        type=int,
        help=f"Data lines kept in the statistics file before rotation (default: {DEFAULT_MAX_LINES}).",
    )
    parser.add_argument(
        "--trunc-lines",
        default=None,
        type=int,
        help=f"Oldest data lines dropped per rotation (default: {DEFAULT_TRUNC_LINES}).",
    )
    parser.add_argument(
        "--warning-percent",
        default=None,
        type=float,
        help=f"Usage above this percentage is reported as WARNING (default: {DEFAULT_WARNING_PERCENT:g}).",
    )
    parser.add_argument(
        "--port",
        default=None,
        type=int,
        help=f"IMAP port (default: {DEFAULT_IMAP_PORT}).",
    )
    parser.add_argument(
        "--no-mail",
        action="store_true",
        help="Print and store the report but do not send it by email.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help=(
            "Probe accounts and print the report only. The statistics file and "
            "report file are not touched and no email is sent."
        ),
    )
    return parser.parse_args(argv)


def parse_nonempty_string_config(raw_value: object, source: str, default: str) -> str:
    if raw_value is None:
        return default
    if not isinstance(raw_value, str):
        raise ValueError(f"{source} must be a string.")
    cleaned = raw_value.strip()
    if not cleaned:
        raise ValueError(f"{source} cannot be empty.")
    return cleaned


def parse_optional_string_config(raw_value: object, source: str) -> str | None:
    if raw_value is None:
        return None
    if not isinstance(raw_value, str):
        raise ValueError(f"{source} must be a string.")
    return raw_value.strip() or None


def parse_boolean_config(raw_value: object, source: str, default: bool) -> bool:
    if raw_value is None:
        return default
    if isinstance(raw_value, bool):
        return raw_value
    raise ValueError(f"{source} must be a boolean.")


def parse_positive_number_config(raw_value: object, source: str, default: float) -> float:
    if raw_value is None:
        return default
    if isinstance(raw_value, bool) or not isinstance(raw_value, (int, float)):
        raise ValueError(f"{source} must be a number.")
    value = float(raw_value)
    if value <= 0:
        raise ValueError(f"{source} must be > 0.")
    return value


def parse_percent_config(raw_value: object, source: str, default: float) -> float:
    if raw_value is None:
        return default
    if isinstance(raw_value, bool) or not isinstance(raw_value, (int, float)):
        raise ValueError(f"{source} must be a number between 0 and 100.")
    value = float(raw_value)
    if value < 0 or value > 100:
        raise ValueError(f"{source} must be between 0 and 100.")
    return value


def parse_positive_int_config(raw_value: object, source: str, default: int) -> int:
    if raw_value is None:
        return default
    if isinstance(raw_value, bool) or not isinstance(raw_value, int):
        raise ValueError(f"{source} must be an integer.")
    if raw_value < 1:
        raise ValueError(f"{source} must be >= 1.")
    return raw_value


def read_config_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}

    try:
        with path.open("r", encoding="utf-8") as file:
            raw = json.load(file)
    except (OSError, json.JSONDecodeError) as error:
        raise ValueError(f"Could not read config file {path}: {error}") from error

    if not isinstance(raw, dict):
        raise ValueError(f"Config file {path} must contain a JSON object.")
    return raw


def load_mail_config(raw: object, require_addresses: bool) -> MailConfig:
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError("Config file has invalid mail section.")

    from_address = parse_optional_string_config(raw.get("from_address"), "mail.from_address")
    to_address = parse_optional_string_config(raw.get("to_address"), "mail.to_address")
    if require_addresses:
        missing = [
            name
            for name, value in (("mail.from_address", from_address), ("mail.to_address", to_address))
            if value is None
        ]
        if missing:
            raise ValueError(
                f"Sending the report requires {' and '.join(missing)}. "
                "Set them in the config file or pass --no-mail."
            )

    return MailConfig(
        from_address=from_address or "",
        to_address=to_address or "",
        smtp_host=parse_nonempty_string_config(raw.get("smtp_host"), "mail.smtp_host", DEFAULT_SMTP_HOST),
        smtp_port=parse_positive_int_config(raw.get("smtp_port"), "mail.smtp_port", DEFAULT_SMTP_PORT),
        smtp_starttls=parse_boolean_config(raw.get("smtp_starttls"), "mail.smtp_starttls", False),
        smtp_username=parse_optional_string_config(raw.get("smtp_username"), "mail.smtp_username"),
        smtp_password=parse_optional_string_config(raw.get("smtp_password"), "mail.smtp_password"),
    )


def load_app_config(path: Path, args: argparse.Namespace) -> AppConfig:
    raw = read_config_file(path)

    report_file_value: object
    if args.report_file is not None:
        report_file_value = args.report_file
    else:
        report_file_value = raw.get("report_file", DEFAULT_REPORT_FILE)
    if not isinstance(report_file_value, str):
        raise ValueError("report_file must be a string.")
    report_file = Path(report_file_value.strip()) if report_file_value.strip() else None

    max_lines = parse_positive_int_config(
        args.max_lines if args.max_lines is not None else raw.get("max_lines"),
        "max_lines",
        DEFAULT_MAX_LINES,
    )
    trunc_lines = parse_positive_int_config(
        args.trunc_lines if args.trunc_lines is not None else raw.get("trunc_lines"),
        "trunc_lines",
        DEFAULT_TRUNC_LINES,
    )

    return AppConfig(
        accounts_file=Path(
            args.accounts_file
            or parse_nonempty_string_config(raw.get("accounts_file"), "accounts_file", DEFAULT_ACCOUNTS_FILE)
        ),
        stats_file=Path(
            args.stats_file
            or parse_nonempty_string_config(raw.get("stats_file"), "stats_file", DEFAULT_STATS_FILE)
        ),
        report_file=report_file,
        max_lines=max_lines,
        trunc_lines=trunc_lines,
        warning_percent=parse_percent_config(
            args.warning_percent if args.warning_percent is not None else raw.get("warning_percent"),
            "warning_percent",
            DEFAULT_WARNING_PERCENT,
        ),
        imap_port=parse_positive_int_config(
            args.port if args.port is not None else raw.get("imap_port"),
            "imap_port",
            DEFAULT_IMAP_PORT,
        ),
        probe_timeout_seconds=parse_positive_number_config(
            raw.get("probe_timeout_seconds"),
            "probe_timeout_seconds",
            DEFAULT_PROBE_TIMEOUT_SECONDS,
        ),
        mail=load_mail_config(raw.get("mail"), require_addresses=not (args.no_mail or args.dry_run)),
    )


def round_half_up(numerator: int, denominator: int) -> int:
    return (2 * numerator + denominator) // (2 * denominator)


def compute_usage(total_bytes: int, quota_mb: int) -> QuotaUsage:
    quota_bytes = quota_mb * BYTES_PER_MEGABYTE
    return QuotaUsage(
        quota_bytes=quota_bytes,
        percent=round_half_up(total_bytes * 100, quota_bytes),
    )


def bytes_to_megabytes(total_bytes: int) -> int:
    return round_half_up(total_bytes, BYTES_PER_MEGABYTE)


def is_warning(percent: int, threshold: float) -> bool:
    return percent > threshold


def usage_status(percent: int, threshold: float) -> str:
    return STATUS_WARNING if is_warning(percent, threshold) else STATUS_OK


def parse_account_line(line: str, line_number: int) -> Account | AccountSyntaxError | None:
    # The comment marker only counts in the first column.
    if line.startswith(COMMENT_MARKER):
        return None
    stripped = line.strip()
    if not stripped:
        return None

    fields = [part.strip() for part in stripped.split(ACCOUNT_FIELD_DELIMITER)]
    if len(fields) != ACCOUNT_FIELD_COUNT:
        return AccountSyntaxError(
            line_number=line_number,
            reason=f"expected {ACCOUNT_FIELD_COUNT} fields, found {len(fields)}",
        )
    if not all(fields):
        return AccountSyntaxError(line_number=line_number, reason="empty field")

    server, username, password, raw_quota = fields
    if not re.fullmatch(r"[0-9]+", raw_quota) or int(raw_quota) < 1:
        return AccountSyntaxError(
            line_number=line_number,
            reason="quota must be a positive whole number of megabytes",
        )
    return Account(server=server, username=username, password=password, quota_mb=int(raw_quota))


def iter_accounts(lines: Iterable[str]) -> Iterator[Account | AccountSyntaxError]:
    for line_number, line in enumerate(lines, start=1):
        entry = parse_account_line(line, line_number)
        if entry is not None:
            yield entry


def load_account_lines(path: Path) -> list[str]:
    with path.open("r", encoding="utf-8") as file:
        return file.read().splitlines()


def parse_folder_line(line: bytes) -> FolderInfo | None:
    text = line.decode("utf-8", errors="replace")
    match = re.match(r"^\((?P<flags>[^)]*)\)\s+(?:\"[^\"]*\"|NIL)\s+(?P<name>.+)$", text, re.IGNORECASE)
    if not match:
        return None

    flags = {token.strip() for token in match.group("flags").split() if token.strip()}
    raw_name = match.group("name").strip()
    if raw_name.startswith('"') and raw_name.endswith('"'):
        # IMAP quoted string escaping.
        name = raw_name[1:-1].replace(r"\\", "\\").replace(r'\"', '"')
    else:
        name = raw_name
    return FolderInfo(name=name, flags=flags)


def quote_mailbox_name(folder_name: str) -> str:
    escaped = folder_name.replace("\\", "\\\\").replace('"', r'\"')
    return f'"{escaped}"'


def decode_imap_response(data: object) -> str:
    if not isinstance(data, list):
        return ""
    parts: list[str] = []
    for item in data:
        if item is None:
            continue
        if isinstance(item, bytes):
            parts.append(item.decode("utf-8", errors="replace"))
        else:
            parts.append(str(item))
    return " | ".join(parts).strip()


def response_lines(data: object) -> list[bytes]:
    if not isinstance(data, list):
        return []
    lines: list[bytes] = []
    for item in data:
        if isinstance(item, tuple) and item and isinstance(item[0], bytes):
            lines.append(item[0])
        elif isinstance(item, bytes):
            lines.append(item)
    return lines


def list_response_lines(data: object) -> list[bytes]:
    """Flatten a LIST reply, splicing literal mailbox names back into their line.

    imaplib returns ``(b'(flags) "/" {9}', b'Re: [x] y')`` for a name sent as
    a literal; the payload is re-quoted so parse_folder_line reads it verbatim.
    """
    if not isinstance(data, list):
        return []
    lines: list[bytes] = []
    for item in data:
        if isinstance(item, tuple) and len(item) >= 2 and isinstance(item[0], bytes):
            prefix, payload = item[0], item[1]
            match = LITERAL_MARKER_PATTERN.search(prefix)
            if match and isinstance(payload, bytes):
                quoted = quote_mailbox_name(payload.decode("utf-8", errors="replace"))
                lines.append(prefix[: match.start()] + quoted.encode("utf-8"))
            else:
                lines.append(prefix)
        elif isinstance(item, bytes):
            lines.append(item)
    return lines


def discover_folders(imap: imaplib.IMAP4) -> list[FolderInfo]:
    status, data = imap.list()
    if status != "OK":
        raise ProbeError(f"LIST failed: {decode_imap_response(data) or status}")

    folders: list[FolderInfo] = []
    for line in list_response_lines(data):
        folder = parse_folder_line(line)
        if folder:
            folders.append(folder)
    return folders


def is_selectable(folder: FolderInfo) -> bool:
    return "\\noselect" not in {flag.lower() for flag in folder.flags}


def folder_message_count(imap: imaplib.IMAP4, folder_name: str) -> int:
    status, data = imap.status(quote_mailbox_name(folder_name), "(MESSAGES)")
    if status != "OK":
        raise ProbeError(f"STATUS failed for {folder_name}: {decode_imap_response(data) or status}")
    for line in response_lines(data):
        match = STATUS_MESSAGES_PATTERN.search(line)
        if match:
            return int(match.group(1))
    raise ProbeError(f"STATUS reply for {folder_name} has no MESSAGES count")


def parse_fetch_sizes(data: object) -> list[int]:
    sizes: list[int] = []
    for line in response_lines(data):
        match = RFC822_SIZE_PATTERN.search(line)
        if match:
            sizes.append(int(match.group(1)))
    return sizes


def folder_total_bytes(imap: imaplib.IMAP4, folder_name: str) -> int:
    status, data = imap.select(quote_mailbox_name(folder_name), readonly=True)
    if status != "OK":
        raise ProbeError(f"EXAMINE failed for {folder_name}: {decode_imap_response(data) or status}")

    status, data = imap.fetch("1:*", "(RFC822.SIZE)")
    if status != "OK":
        raise ProbeError(f"FETCH failed for {folder_name}: {decode_imap_response(data) or status}")
    return sum(parse_fetch_sizes(data))


def measure_mailbox(imap: imaplib.IMAP4) -> ProbeResult:
    message_count = 0
    total_bytes = 0
    for folder in discover_folders(imap):
        if not is_selectable(folder):
            continue
        folder_messages = folder_message_count(imap, folder.name)
        if folder_messages < 1:
            continue
        message_count += folder_messages
        total_bytes += folder_total_bytes(imap, folder.name)
    return ProbeResult(message_count=message_count, total_bytes=total_bytes)


def probe_mailbox(
    account: Account,
    port: int,
    timeout_seconds: float,
    ssl_context: ssl.SSLContext,
    imap_factory: Callable[..., imaplib.IMAP4] = imaplib.IMAP4_SSL,
) -> ProbeResult | LoginFailed:
    with imap_factory(account.server, port, ssl_context=ssl_context, timeout=timeout_seconds) as imap:
        try:
            imap.login(account.username, account.password)
        except imaplib.IMAP4.error as error:
            return LoginFailed(detail=str(error))
        return measure_mailbox(imap)


@dataclass
class ReportBuilder:
    started_at: datetime
    lines: list[str] = field(default_factory=list)
    checked_count: int = 0
    warning_count: int = 0
    syntax_error_count: int = 0
    failure_count: int = 0

    def __post_init__(self) -> None:
        self.lines.append(
            f"Email quota check at {self.started_at.isoformat(timespec='seconds')}"
        )
        self.lines.append("")

    def add_usage(self, account: Account, probe: ProbeResult, usage: QuotaUsage, status: str) -> None:
        self.checked_count += 1
        if status == STATUS_WARNING:
            self.warning_count += 1
        self.lines.append(
            f"{probe.message_count} emails, {probe.total_bytes} bytes "
            f"(~{bytes_to_megabytes(probe.total_bytes)}MB), ~{usage.percent}% of "
            f"{account.quota_mb}MB quota: {account.username} on {account.server} [{status}]"
        )

    def add_syntax_error(self, error: AccountSyntaxError) -> None:
        self.syntax_error_count += 1
        self.lines.append(f"syntax error in line {error.line_number:8d}: {error.reason}")

    def add_login_failure(self, account: Account) -> None:
        self.failure_count += 1
        self.lines.append(f"login for {account.username} ({account.server}) failed")

    def add_probe_failure(self, account: Account, detail: str) -> None:
        self.failure_count += 1
        self.lines.append(f"check for {account.username} ({account.server}) failed: {detail}")

    def add_rotation(self, result: RotationResult, path: Path) -> None:
        if result.action == ROTATION_UNLINKED:
            self.lines.append(
                f"Statistics file {path} had {result.data_lines_before} line(s); "
                "truncation would drop every line kept before the limit, file was removed."
            )
        elif result.action == ROTATION_TRUNCATED:
            self.lines.append(
                f"Statistics file {path} truncated: dropped {result.dropped_lines} oldest line(s), "
                f"kept {result.retained_lines} line(s)."
            )

    def add_growth_warning(self, accounts_processed: int, trunc_lines: int) -> None:
        # Each processed account adds one statistics row per run.
        if accounts_processed > trunc_lines:
            self.lines.append(
                f"WARNING: {accounts_processed} account(s) were processed in this run but only "
                f"{trunc_lines} statistics line(s) are dropped per rotation; the statistics file "
                "may grow without bound."
            )

    def render(self) -> str:
        summary = (
            f"Checked {self.checked_count} account(s): {self.warning_count} warning(s), "
            f"{self.syntax_error_count} syntax error(s), {self.failure_count} failure(s)."
        )
        return "\n".join([*self.lines, "", summary]) + "\n"


@dataclass(frozen=True)
class RunResult:
    report: ReportBuilder
    records: tuple[UsageRecord, ...]

    @property
    def warning_count(self) -> int:
        return self.report.warning_count

    @property
    def failure_count(self) -> int:
        return self.report.failure_count

    @property
    def syntax_error_count(self) -> int:
        return self.report.syntax_error_count


def run_quota_check(
    config: AppConfig,
    account_lines: Iterable[str],
    probe: Callable[[Account], ProbeResult | LoginFailed],
    stats_log: StatsLog | None,
    started_at: datetime,
    clock: Callable[[], float] = time.time,
) -> RunResult:
    report = ReportBuilder(started_at=started_at)
    records: list[UsageRecord] = []

    for entry in iter_accounts(account_lines):
        if isinstance(entry, AccountSyntaxError):
            print(f"Syntax error in {config.accounts_file} line {entry.line_number}: {entry.reason}", file=sys.stderr)
            report.add_syntax_error(entry)
            continue

        account_label = f"{entry.username} ({entry.server})"
        print(f"Checking {account_label}")
        try:
            outcome = probe(entry)
        except (ProbeError, imaplib.IMAP4.error, OSError) as error:
            print(f"IMAP error for account {account_label}: {error}", file=sys.stderr)
            report.add_probe_failure(entry, str(error) or type(error).__name__)
            continue

        if isinstance(outcome, LoginFailed):
            print(f"Login failed for account {account_label}: {outcome.detail}", file=sys.stderr)
            report.add_login_failure(entry)
            continue

        usage = compute_usage(outcome.total_bytes, entry.quota_mb)
        report.add_usage(entry, outcome, usage, usage_status(usage.percent, config.warning_percent))
        record = UsageRecord(
            timestamp=int(clock()),
            message_count=outcome.message_count,
            total_bytes=outcome.total_bytes,
            percent_quota=usage.percent,
            quota_bytes=usage.quota_bytes,
            username=entry.username,
            server=entry.server,
        )
        if stats_log is not None:
            stats_log.append(record)
        records.append(record)

    if stats_log is not None:
        if stats_log.rotation is not None:
            report.add_rotation(stats_log.rotation, stats_log.path)
        report.add_growth_warning(accounts_processed=len(records), trunc_lines=config.trunc_lines)

    return RunResult(report=report, records=tuple(records))


def build_subject(started_at: datetime, warning_count: int) -> str:
    subject = f"Email quota check {started_at.strftime('%Y-%m-%d %H:%M')}"
    if warning_count:
        return f"WARNING: {subject}"
    return subject


def send_report(
    mail_config: MailConfig,
    subject: str,
    body: str,
    smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
) -> None:
    message = EmailMessage()
    message["From"] = mail_config.from_address
    message["To"] = mail_config.to_address
    message["Subject"] = subject
    message.set_content(body)

    with smtp_factory(mail_config.smtp_host, mail_config.smtp_port) as smtp:
        if mail_config.smtp_starttls:
            smtp.starttls(context=ssl.create_default_context())
        if mail_config.smtp_username and mail_config.smtp_password:
            smtp.login(mail_config.smtp_username, mail_config.smtp_password)
        smtp.send_message(message)


def append_report_file(path: Path, body: str) -> None:
    with path.open("a", encoding="utf-8") as file:
        file.write(body)
        file.write("\n")


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        config = load_app_config(Path(args.config_file), args)
    except ValueError as error:
        print(error, file=sys.stderr)
        return 2

    try:
        account_lines = load_account_lines(config.accounts_file)
    except OSError as error:
        print(f"Could not read account list {config.accounts_file}: {error}", file=sys.stderr)
        return 1

    started_at = datetime.now().astimezone()
    context = ssl.create_default_context()

    def probe(account: Account) -> ProbeResult | LoginFailed:
        return probe_mailbox(
            account,
            port=config.imap_port,
            timeout_seconds=config.probe_timeout_seconds,
            ssl_context=context,
        )

    print(f"Beginning quota check of {config.accounts_file} at {started_at.isoformat(timespec='seconds')}")
    if args.dry_run:
        print("Mode: DRY_RUN (no statistics, report-file or email output).")
        result = run_quota_check(config, account_lines, probe, stats_log=None, started_at=started_at)
    else:
        try:
            with StatsLog(config.stats_file, config.max_lines, config.trunc_lines) as stats_log:
                result = run_quota_check(config, account_lines, probe, stats_log, started_at=started_at)
        except OSError as error:
            print(f"Could not update statistics file {config.stats_file}: {error}", file=sys.stderr)
            return 1

    body = result.report.render()
    print()
    print(body, end="")

    if args.dry_run:
        return 1 if result.failure_count else 0

    if config.report_file is not None:
        try:
            append_report_file(config.report_file, body)
        except OSError as error:
            print(f"Could not write report file {config.report_file}: {error}", file=sys.stderr)
            return 1

    if args.no_mail:
        print("Email delivery disabled (--no-mail).")
    else:
        subject = build_subject(started_at, result.warning_count)
        try:
            send_report(config.mail, subject, body)
            print(f"Sent report to {config.mail.to_address}")
        except (smtplib.SMTPException, OSError) as error:
            print(f"Could not send report to {config.mail.to_address}: {error}", file=sys.stderr)
            return 1

    if result.failure_count:
        print(f"{result.failure_count} account(s) could not be checked.", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
