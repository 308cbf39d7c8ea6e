from __future__ import annotations

import imaplib
from pathlib import Path

from imap_quota_stats import AppConfig, MailConfig


def make_mail_config(**overrides) -> MailConfig:
    values = {
        "from_address": "sender@example.test",
        "to_address": "recipient@example.test",
        "smtp_host": "localhost",
        "smtp_port": 25,
        "smtp_starttls": False,
        "smtp_username": None,
        "smtp_password": None,
    }
    values.update(overrides)
    return MailConfig(**values)


def make_config(tmp_path: Path, **overrides) -> AppConfig:
    values = {
        "accounts_file": tmp_path / "acctlst",
        "stats_file": tmp_path / "stats.csv",
        "report_file": tmp_path / "report.txt",
        "max_lines": 10000,
        "trunc_lines": 1000,
        "warning_percent": 85.0,
        "imap_port": 993,
        "probe_timeout_seconds": 60.0,
        "mail": make_mail_config(),
    }
    values.update(overrides)
    return AppConfig(**values)


class FakeIMAP:
    """In-memory IMAP session; also acts as its own IMAP4_SSL factory."""

    def __init__(
        self,
        folders: dict[str, list[int]] | None = None,
        *,
        folder_flags: dict[str, str] | None = None,
        reject_login: bool = False,
        failing_command: str = "",
        literal_folders: set[str] | None = None,
    ) -> None:
        self.folders = folders if folders is not None else {"INBOX": []}
        self.folder_flags = folder_flags or {}
        self.reject_login = reject_login
        self.failing_command = failing_command
        self.literal_folders = literal_folders or set()
        self.opened_with: tuple[object, ...] | None = None
        self.login_calls: list[tuple[str, str]] = []
        self.status_calls: list[str] = []
        self.selected: list[tuple[str, bool]] = []
        self.closed = False

    def __call__(self, host: str, port: int, ssl_context=None, timeout=None) -> FakeIMAP:
        self.opened_with = (host, port, timeout)
        return self

    def __enter__(self) -> FakeIMAP:
        return self

    def __exit__(self, *_exc_info) -> None:
        self.closed = True

    def login(self, user: str, password: str):
        self.login_calls.append((user, password))
        if self.reject_login:
            raise imaplib.IMAP4.error("[AUTHENTICATIONFAILED] Invalid credentials")
        return "OK", [b"LOGIN completed"]

    def list(self):
        if self.failing_command == "LIST":
            return "NO", [b"LIST not allowed"]
        lines: list[object] = []
        for name in self.folders:
            flags = self.folder_flags.get(name, "")
            if name in self.literal_folders:
                payload = name.encode("utf-8")
                lines.append((f'({flags}) "/" {{{len(payload)}}}'.encode("utf-8"), payload))
                # imaplib leaves the closing remainder of the line as its own item.
                lines.append(b"")
            else:
                lines.append(f'({flags}) "/" "{name}"'.encode("utf-8"))
        return "OK", lines

    def status(self, mailbox: str, items: str):
        name = mailbox.strip('"')
        self.status_calls.append(name)
        if self.failing_command == "STATUS":
            return "NO", [b"STATUS failed"]
        if "\\Noselect" in self.folder_flags.get(name, ""):
            raise AssertionError(f"STATUS should not be sent for non-selectable folder {name}")
        count = len(self.folders[name])
        return "OK", [f'"{name}" (MESSAGES {count})'.encode("utf-8")]

    def select(self, mailbox: str, readonly: bool = False):
        name = mailbox.strip('"')
        self.selected.append((name, readonly))
        if self.failing_command == "EXAMINE":
            return "NO", [b"EXAMINE failed"]
        return "OK", [str(len(self.folders[name])).encode("ascii")]

    def fetch(self, message_set: str, items: str):
        if self.failing_command == "FETCH":
            return "NO", [b"FETCH failed"]
        name, _readonly = self.selected[-1]
        return "OK", [
            f"{index} (RFC822.SIZE {size})".encode("ascii")
            for index, size in enumerate(self.folders[name], start=1)
        ]


class FakeSMTP:
    def __init__(self, *, fail_with: Exception | None = None) -> None:
        self.fail_with = fail_with
        self.connected_to: tuple[str, int] | None = None
        self.started_tls = False
        self.logins: list[tuple[str, str]] = []
        self.sent: list[object] = []

    def __call__(self, host: str, port: int) -> FakeSMTP:
        self.connected_to = (host, port)
        return self

    def __enter__(self) -> FakeSMTP:
        return self

    def __exit__(self, *_exc_info) -> None:
        return None

    def starttls(self, context=None) -> None:
        self.started_tls = True

    def login(self, user: str, password: str) -> None:
        self.logins.append((user, password))

    def send_message(self, message) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(message)
