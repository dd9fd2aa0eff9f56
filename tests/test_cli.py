"""
Tests for the operator command line.
"""
from unittest.mock import patch

import pytest

from marketplace_ops.booking_models import BOOKINGS, CONVERSATIONS, REVIEWS, USERS
from marketplace_ops.cli import EXIT_FAILURE, EXIT_OK, main


class TestBookingCommands:
    def test_transition(self, store, capsys) -> None:
        store.add(BOOKINGS, "b1", {"status": "pending"})

        assert main(["transition", "b1", "accepted"], store=store) == EXIT_OK

        assert "Booking b1: pending -> accepted" in capsys.readouterr().out
        assert store.data(BOOKINGS, "b1")["status"] == "accepted"

    def test_invalid_transition_exits_nonzero(self, store, capsys) -> None:
        store.add(BOOKINGS, "b1", {"status": "completed"})

        assert main(["transition", "b1", "accepted"], store=store) == EXIT_FAILURE

        assert "cannot move from 'completed' to 'accepted'" in capsys.readouterr().err
        assert store.writes == []

    def test_unknown_status_is_usage_error(self, store) -> None:
        with pytest.raises(SystemExit) as exc:
            main(["transition", "b1", "declined"], store=store)
        assert exc.value.code == 2

    def test_transition_missing_booking(self, store, capsys) -> None:
        assert main(["transition", "ghost", "accepted"], store=store) == EXIT_FAILURE
        assert "bookings/ghost not found" in capsys.readouterr().err

    def test_transition_retries_transient_errors(self, store) -> None:
        store.add(BOOKINGS, "b1", {"status": "pending"})
        store.fail("get", BOOKINGS, "b1", times=1)

        assert main(["transition", "b1", "accepted"], store=store) == EXIT_OK

    def test_reset_booking(self, store, capsys) -> None:
        store.add(BOOKINGS, "b1", {"status": "arrived", "acceptedAt": "t", "arrivedAt": "t"})

        assert main(["reset-booking", "b1"], store=store) == EXIT_OK

        assert "Booking b1 reset to pending status" in capsys.readouterr().out
        data = store.data(BOOKINGS, "b1")
        assert data["status"] == "pending"
        assert "acceptedAt" not in data

    def test_booking_report(self, store, capsys) -> None:
        store.add(BOOKINGS, "b1", {"status": "traveling", "clientName": "Ada"})

        assert main(["booking-report"], store=store) == EXIT_OK

        out = capsys.readouterr().out
        assert "ID: b1" in out
        assert "1 active bookings" in out


class TestBookingDetailsCommand:
    def test_after_reset_shows_phase_fields_absent(self, store, capsys) -> None:
        store.add(BOOKINGS, "b1", {"status": "arrived", "latitude": 1, "longitude": 2})
        main(["reset-booking", "b1"], store=store)
        capsys.readouterr()

        assert main(["booking-details", "b1"], store=store) == EXIT_OK

        out = capsys.readouterr().out
        assert "Status: pending" in out
        assert "resolved location: 1.0, 2.0" in out
        assert "acceptedAt: N/A" in out
        assert "startedAt: N/A" in out

    def test_missing_booking(self, store, capsys) -> None:
        assert main(["booking-details", "ghost"], store=store) == EXIT_FAILURE
        assert "bookings/ghost not found" in capsys.readouterr().err


class TestConversationCommands:
    def test_reconcile_all(self, store, capsys) -> None:
        store.add(CONVERSATIONS, "c1", {"participants": ["A"], "unreadCount": {"A": 0, "B": 2}})
        store.add(CONVERSATIONS, "c2", {"participants": ["A", "B"]})
        store.add_sub(CONVERSATIONS, "c1", "messages", "m1", {"senderId": "C"})

        assert main(["reconcile-conversations"], store=store) == EXIT_OK

        out = capsys.readouterr().out
        assert "c1: added ['B', 'C'] -> ['A', 'B', 'C']" in out
        assert "c2: OK - no fix needed" in out
        assert "reconcile_conversations: 2 processed, 1 changed, 0 failed" in out

    def test_reconcile_dry_run(self, store, capsys) -> None:
        store.add(CONVERSATIONS, "c1", {"participants": ["A"], "unreadCount": {"B": 1}})

        assert main(["reconcile-conversations", "--dry-run"], store=store) == EXIT_OK

        assert "would add ['B']" in capsys.readouterr().out
        assert store.writes == []

    def test_reconcile_unknown_id_fails_only_itself(self, store, capsys) -> None:
        store.add(CONVERSATIONS, "c1", {"participants": ["A"], "unreadCount": {"B": 1}})

        code = main(["reconcile-conversations", "--id", "ghost", "--id", "c1"], store=store)

        captured = capsys.readouterr()
        assert code == EXIT_FAILURE
        assert "ghost: FAILED (NotFoundError" in captured.out
        assert "FAILED: reconcile_conversations: 1 of 2 records failed" in captured.err
        assert store.data(CONVERSATIONS, "c1")["participants"] == ["A", "B"]

    def test_clear_deleted(self, store, capsys) -> None:
        store.add(CONVERSATIONS, "c1", {"participants": ["A"], "deleted": {"A": True}})

        assert main(["clear-deleted", "c1", "A"], store=store) == EXIT_OK

        assert "Fixed conversation c1 - cleared deleted flag for A" in capsys.readouterr().out
        assert store.data(CONVERSATIONS, "c1")["deleted"]["A"] is False

    def test_clear_deleted_nothing_to_do(self, store, capsys) -> None:
        store.add(CONVERSATIONS, "c1", {"participants": ["A"]})

        assert main(["clear-deleted", "c1", "A"], store=store) == EXIT_OK
        assert "nothing to do" in capsys.readouterr().out

    def test_repair_deleted_flags_all(self, store, capsys) -> None:
        store.add(CONVERSATIONS, "c1", {"deleted": {"A": True, "B": True}})
        store.add(CONVERSATIONS, "c2", {"deleted": {"C": True}, "unreadCount": {"C": 1}})

        assert main(["repair-deleted-flags", "--all-flags"], store=store) == EXIT_OK

        assert "Total deleted flags cleared: 3" in capsys.readouterr().out

    def test_repair_deleted_flags_stale_only(self, store, capsys) -> None:
        store.add(CONVERSATIONS, "c1", {"deleted": {"A": True}})
        store.add(CONVERSATIONS, "c2", {"deleted": {"C": True}, "unreadCount": {"C": 1}})

        assert main(["repair-deleted-flags"], store=store) == EXIT_OK

        assert "Total deleted flags cleared: 1" in capsys.readouterr().out
        assert store.data(CONVERSATIONS, "c1")["deleted"]["A"] is True

    def test_conversation_participants(self, store, capsys) -> None:
        store.add(USERS, "A", {"firstName": "Ada", "role": "CLIENT"})
        store.add(CONVERSATIONS, "c1", {"participants": ["A", "ghost"]})

        assert main(["conversation-participants"], store=store) == EXIT_OK

        out = capsys.readouterr().out
        assert "    - A: Ada (CLIENT)" in out
        assert "    - ghost: UNKNOWN USER" in out
        assert "1 conversation(s), 1 unknown participant(s)" in out

    def test_conversation_report(self, store, capsys) -> None:
        store.add(CONVERSATIONS, "c1", {"participants": ["A"]})

        assert main(["conversation-report", "c1", "--user", "A"], store=store) == EXIT_OK

        assert "visible in inbox: True" in capsys.readouterr().out


class TestProviderStatsCommand:
    def test_named_providers(self, store, capsys) -> None:
        store.add(USERS, "p1", {"role": "PROVIDER"})
        for i, rating in enumerate([5, 4, 4]):
            store.add(REVIEWS, f"r{i}", {"providerId": "p1", "rating": rating})

        assert main(["provider-stats", "p1"], store=store) == EXIT_OK

        assert "p1: completedJobs=0 reviewCount=3 rating=4.33" in capsys.readouterr().out

    def test_all_with_workers(self, store, capsys) -> None:
        for pid in ("p1", "p2", "p3"):
            store.add(USERS, pid, {"role": "PROVIDER"})

        assert main(["provider-stats", "--all", "--workers", "2"], store=store) == EXIT_OK

        assert "provider_stats: 3 processed" in capsys.readouterr().out

    def test_missing_provider_fails_batch(self, store, capsys) -> None:
        store.add(USERS, "p1", {"role": "PROVIDER"})

        assert main(["provider-stats", "p1", "ghost"], store=store) == EXIT_FAILURE

        assert "1 of 2 records failed" in capsys.readouterr().err
        assert "rating" in store.data(USERS, "p1")

    def test_requires_ids_or_all(self, store, capsys) -> None:
        assert main(["provider-stats"], store=store) == EXIT_FAILURE
        assert "--all" in capsys.readouterr().err


class TestRoleCommands:
    def test_scan_roles(self, store, capsys) -> None:
        store.add(USERS, "u1", {"email": "a@example.com", "status": "pending"})
        store.add(USERS, "u2", {"role": "CLIENT"})

        assert main(["scan-roles"], store=store) == EXIT_OK

        out = capsys.readouterr().out
        assert "Found 1 user(s) missing role:" in out
        assert "- u1 (a@example.com) status=pending" in out

    def test_fix_roles_dry_run(self, store, capsys) -> None:
        store.add(USERS, "u1", {"status": "active"})

        assert main(["fix-roles", "--dry-run"], store=store) == EXIT_OK

        assert "Will update 1 user(s). dry_run=True" in capsys.readouterr().out
        assert store.writes == []

    def test_fix_roles(self, store) -> None:
        store.add(USERS, "u1", {"status": "pending"})

        assert main(["fix-roles"], store=store) == EXIT_OK
        assert store.data(USERS, "u1")["role"] == "PROVIDER"

    def test_set_role(self, store, capsys) -> None:
        store.add(USERS, "u1", {"role": "CLIENT"})

        assert main(["set-role", "u1", "PROVIDER"], store=store) == EXIT_OK

        out = capsys.readouterr().out
        assert "Current role: CLIENT" in out
        assert "Updated u1 role => PROVIDER" in out
        assert store.data(USERS, "u1")["role"] == "PROVIDER"

    def test_set_role_missing_user(self, store, capsys) -> None:
        assert main(["set-role", "ghost", "PROVIDER"], store=store) == EXIT_FAILURE
        assert "users/ghost not found" in capsys.readouterr().err

    def test_set_role_rejects_unknown_role(self, store) -> None:
        with pytest.raises(SystemExit) as exc:
            main(["set-role", "u1", "SUPERUSER"], store=store)
        assert exc.value.code == 2


class TestStartup:
    def test_no_command_prints_help(self, store, capsys) -> None:
        assert main([], store=store) == EXIT_FAILURE
        assert "usage: marketplace-ops" in capsys.readouterr().out

    def test_unconfigured_firebase(self, capsys) -> None:
        with patch("marketplace_ops.cli.get_record_store", side_effect=RuntimeError("Firebase is not configured")):
            assert main(["scan-roles"]) == EXIT_FAILURE
        assert "Firebase is not configured" in capsys.readouterr().err

    def test_missing_credentials_file(self, tmp_path, capsys, monkeypatch) -> None:
        from marketplace_ops.core import firebase_utils

        monkeypatch.setattr(firebase_utils, "_firebase_app", None)
        missing = str(tmp_path / "sa.json")

        assert main(["--credentials", missing, "scan-roles"]) == EXIT_FAILURE
        assert f"Credentials file not found: {missing}" in capsys.readouterr().err

    def test_credentials_flag_is_passed_through(self, store) -> None:
        with patch("marketplace_ops.cli.get_record_store", return_value=store) as mock_get:
            main(["--credentials", "sa.json", "scan-roles"])
        mock_get.assert_called_once_with("sa.json")
