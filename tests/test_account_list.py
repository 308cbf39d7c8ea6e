from __future__ import annotations

import pytest

import imap_quota_stats as app


def test_parse_account_line_trims_fields() -> None:
    entry = app.parse_account_line("  imap.example.com , user@example.com,  secret ,2048 ", 1)

    assert entry == app.Account(
        server="imap.example.com",
        username="user@example.com",
        password="secret",
        quota_mb=2048,
    )


@pytest.mark.parametrize("line", ["", "   ", "# imap.example.com, user, pw, 10", "#"])
def test_parse_account_line_skips_blank_and_comment_lines(line: str) -> None:
    assert app.parse_account_line(line, 7) is None


@pytest.mark.parametrize(
    "line",
    [
        "imap.example.com, user@example.com, secret",
        "imap.example.com, user@example.com, secret, 10, extra",
        "imap.example.com, , secret, 10",
        "imap.example.com, user@example.com, secret, ",
        "imap.example.com, user@example.com, secret, 0",
        "imap.example.com, user@example.com, secret, -5",
        "imap.example.com, user@example.com, secret, 1.5",
        "bad-line",
    ],
)
def test_parse_account_line_reports_syntax_error_with_line_number(line: str) -> None:
    entry = app.parse_account_line(line, 12)

    assert isinstance(entry, app.AccountSyntaxError)
    assert entry.line_number == 12


def test_syntax_error_reason_does_not_leak_password() -> None:
    entry = app.parse_account_line("imap.example.com, user, hunter2, lots", 3)

    assert isinstance(entry, app.AccountSyntaxError)
    assert "hunter2" not in entry.reason


def test_iter_accounts_recovers_after_bad_line_and_keeps_order() -> None:
    lines = [
        "a.example.com, u1@x.com, pw, 1024",
        "bad-line",
        "b.example.com, u2@x.com, pw, 2048",
    ]

    entries = list(app.iter_accounts(lines))

    assert [type(entry) for entry in entries] == [
        app.Account,
        app.AccountSyntaxError,
        app.Account,
    ]
    assert entries[0].username == "u1@x.com"
    assert entries[1].line_number == 2
    assert entries[2].username == "u2@x.com"


def test_iter_accounts_counts_comment_and_blank_lines_in_line_numbers() -> None:
    lines = ["# header comment", "", "oops", "c.example.com, u3, pw, 10"]

    entries = list(app.iter_accounts(lines))

    assert len(entries) == 2
    assert entries[0] == app.AccountSyntaxError(line_number=3, reason=entries[0].reason)
    assert isinstance(entries[1], app.Account)


def test_load_account_lines_reads_file(tmp_path) -> None:
    path = tmp_path / "acctlst"
    path.write_text("a.example.com, u1, pw, 10\n# comment\n", encoding="utf-8")

    assert app.load_account_lines(path) == ["a.example.com, u1, pw, 10", "# comment"]


def test_load_account_lines_missing_file_raises(tmp_path) -> None:
    with pytest.raises(OSError):
        app.load_account_lines(tmp_path / "missing")


def test_indented_comment_marker_is_not_a_comment() -> None:
    entry = app.parse_account_line("  # imap.example.com, user, pw, 10", 4)

    assert isinstance(entry, app.AccountSyntaxError)
    assert entry.line_number == 4
