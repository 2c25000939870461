"""
tests/test_cli.py -- Tests for the maintenance CLI in main.py.

The CLI is driven through main(argv, service=...) so each test runs against
the in-memory service fixture instead of the configured database.
"""

from __future__ import annotations

import pytest

from auth.errors import InvalidCredentials, TokenNotFoundOrRevoked
from auth.service import SessionService
from conftest import STRONG_PASSWORD, register_verified
from main import main


def test_no_command_prints_help(service: SessionService, capsys) -> None:
    """Running without a command prints usage and exits 2."""
    assert main([], service=service) == 2
    assert "purge-sessions" in capsys.readouterr().out


def test_purge_sessions(service: SessionService, capsys) -> None:
    """purge-sessions deletes revoked records and reports the count."""
    user = register_verified(service, "u1", "e1@x.com")
    session = service.login("u1", STRONG_PASSWORD)
    service.logout(user.id, session.refresh_token)

    assert main(["purge-sessions"], service=service) == 0
    assert "Deleted 1" in capsys.readouterr().out
    assert service.refresh_tokens.find(session.refresh_token) is None


def test_verify_email_by_email_address(service: SessionService, capsys) -> None:
    """verify-email accepts an email address and unblocks login."""
    service.register("u1", "e1@x.com", STRONG_PASSWORD)

    assert main(["verify-email", "e1@x.com"], service=service) == 0
    assert "Verified email for u1" in capsys.readouterr().out
    assert service.login("u1", STRONG_PASSWORD).access_token


def test_verify_email_unknown_user(service: SessionService, capsys) -> None:
    """An unknown identifier prints a warning and exits 1."""
    assert main(["verify-email", "nobody"], service=service) == 1
    assert "No user matches 'nobody'" in capsys.readouterr().out


def test_revoke_sessions(service: SessionService, capsys) -> None:
    """revoke-sessions revokes every live session of the user."""
    register_verified(service, "u1", "e1@x.com")
    session = service.login("u1", STRONG_PASSWORD)

    assert main(["revoke-sessions", "u1"], service=service) == 0
    assert "Revoked 1 session(s)" in capsys.readouterr().out
    with pytest.raises(TokenNotFoundOrRevoked):
        service.refresh(session.refresh_token)


def test_list_sessions_shows_states_without_tokens(service: SessionService, capsys) -> None:
    """list-sessions prints one row per record with its state and never the token itself."""
    user = register_verified(service, "u1", "e1@x.com")
    live = service.login("u1", STRONG_PASSWORD)
    revoked = service.login("u1", STRONG_PASSWORD)
    service.logout(user.id, revoked.refresh_token)

    assert main(["list-sessions", "u1"], service=service) == 0
    out = capsys.readouterr().out
    assert "live" in out and "revoked" in out
    assert live.refresh_token not in out
    assert revoked.refresh_token not in out


def test_list_sessions_empty(service: SessionService, capsys) -> None:
    """A user with no sessions gets a one-line notice."""
    register_verified(service, "u1", "e1@x.com")
    assert main(["list-sessions", "u1"], service=service) == 0
    assert "No sessions for 'u1'" in capsys.readouterr().out


def test_deactivate_and_activate_user(service: SessionService, capsys) -> None:
    """deactivate-user blocks login and revokes sessions; activate-user lifts the block."""
    register_verified(service, "u1", "e1@x.com")
    session = service.login("u1", STRONG_PASSWORD)

    assert main(["deactivate-user", "u1"], service=service) == 0
    assert "revoked 1 session(s)" in capsys.readouterr().out
    with pytest.raises(InvalidCredentials):
        service.login("u1", STRONG_PASSWORD)
    with pytest.raises(TokenNotFoundOrRevoked):
        service.refresh(session.refresh_token)

    assert main(["activate-user", "e1@x.com"], service=service) == 0
    assert service.login("u1", STRONG_PASSWORD).access_token
