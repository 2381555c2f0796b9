"""Tests for the libmilter adapter."""

import socket
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

Milter = pytest.importorskip("Milter")

from content_relay.scanner import Verdict  # noqa: E402
from content_relay.services.milter import (  # noqa: E402
    VERDICT_CODES,
    RelayMilter,
    client_address,
    run_milter,
)


@pytest.fixture
def milter(work_dir: Path, make_scanner):
    scanner, _ = make_scanner("return_value=accept")
    return RelayMilter(scanner, str(work_dir))


def test_every_verdict_has_a_milter_code() -> None:
    assert set(VERDICT_CODES) == set(Verdict)
    assert VERDICT_CODES[Verdict.TEMPFAIL] == Milter.TEMPFAIL
    assert VERDICT_CODES[Verdict.CONTINUE] == Milter.CONTINUE


@pytest.mark.parametrize(
    "family,hostaddr,expected",
    [
        (socket.AF_INET, ("192.0.2.1", 40000), "192.0.2.1"),
        (socket.AF_INET6, ("2001:db8::1", 40000, 0, 0), "2001:db8::1"),
        (socket.AF_UNIX, "/var/run/sock", None),
        (socket.AF_INET, None, None),
    ],
)
def test_client_address(family: int, hostaddr, expected) -> None:
    assert client_address(family, hostaddr) == expected


class TestEditorDelegation:
    """RelayMilter maps edits onto libmilter actions."""

    def test_add_recipient(self, milter: RelayMilter) -> None:
        with patch.object(milter, "addrcpt") as mock_action:
            milter.add_recipient("<x@y>")
        mock_action.assert_called_once_with("<x@y>")

    def test_remove_recipient(self, milter: RelayMilter) -> None:
        with patch.object(milter, "delrcpt") as mock_action:
            milter.remove_recipient("<x@y>")
        mock_action.assert_called_once_with("<x@y>")

    def test_add_header(self, milter: RelayMilter) -> None:
        with patch.object(milter, "addheader") as mock_action:
            milter.add_header("X-Scanned", "yes")
        mock_action.assert_called_once_with("X-Scanned", "yes")

    def test_change_and_delete_header(self, milter: RelayMilter) -> None:
        with patch.object(milter, "chgheader") as mock_action:
            milter.change_header("Subject", 1, "new")
            milter.delete_header("X-Spam-Flag", 2)
        assert mock_action.call_args_list[0].args == ("Subject", 1, "new")
        assert mock_action.call_args_list[1].args == ("X-Spam-Flag", 2, "")

    def test_set_reply(self, milter: RelayMilter) -> None:
        with patch.object(milter, "setreply") as mock_action:
            milter.set_reply("451", "4.6.0", "Content scanner malfunction")
        mock_action.assert_called_once_with("451", "4.6.0", "Content scanner malfunction")


class TestCallbacks:
    """RelayMilter callbacks drive the session."""

    def test_transaction(self, milter: RelayMilter, work_dir: Path) -> None:
        with patch.object(milter, "getsymval", return_value="Q77"):
            assert milter.connect("mx.example.org", socket.AF_INET, ("192.0.2.5", 1)) == (
                Milter.CONTINUE
            )
            assert milter.hello("mx.example.org") == Milter.CONTINUE
            assert milter.envfrom("<a@x>", "SIZE=100") == Milter.CONTINUE
            assert (work_dir / "afQ77").is_dir()
            assert milter.envrcpt("<b@y>") == Milter.CONTINUE
            assert milter.header("Subject", "hi") == Milter.CONTINUE
            assert milter.eoh() == Milter.CONTINUE
            assert milter.body(b"text\r\n") == Milter.CONTINUE
            assert milter.eom() == Milter.ACCEPT
        assert milter.close() == Milter.CONTINUE
        assert list(work_dir.iterdir()) == []

    def test_failure_sets_reply(self, milter: RelayMilter) -> None:
        with patch.object(milter, "setreply") as mock_reply:
            assert milter.envrcpt("<b@y>") == Milter.TEMPFAIL
        mock_reply.assert_called_once_with("451", "4.6.0", "Content scanner malfunction")

    def test_abort_without_context(self, milter: RelayMilter) -> None:
        assert milter.abort() == Milter.CONTINUE


def test_run_milter_registers_factory(tmp_path: Path) -> None:
    settings = MagicMock()
    settings.engine_socket = "inet:127.0.0.1:10024"
    settings.engine_timeout = 30
    settings.work_dir = str(tmp_path / "work")
    settings.work_dir_prefix = "af"
    settings.milter_name = "content-relay"
    settings.milter_socket = "inet:8890@127.0.0.1"
    settings.milter_timeout = 600

    with (
        patch("content_relay.services.milter.Milter.runmilter") as mock_run,
        patch("content_relay.services.milter.Milter.set_flags") as mock_flags,
        patch("content_relay.services.milter.Milter.factory", None),
    ):
        run_milter(settings)

        factory = Milter.factory
        assert factory.args[1] == settings.work_dir

    mock_flags.assert_called_once()
    mock_run.assert_called_once_with("content-relay", "inet:8890@127.0.0.1", 600)
    assert (tmp_path / "work").is_dir()
