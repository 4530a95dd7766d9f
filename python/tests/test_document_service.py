"""
Tests for the document issuance orchestrator.

Covers issuance, uniqueness, atomicity under injected storage failures,
update semantics, soft delete, access checks, best-effort auditing, racing
writers and the listing queries.
"""

import logging
import threading
from datetime import date, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import event, func, select
from sqlalchemy.exc import IntegrityError, OperationalError

from database.models import (
    AuditAction,
    AuditLog,
    DocumentSequence,
    LostDocument,
    LostItem,
    Resident,
)
from issuance.archival import ArchiveStatus
from issuance.errors import (
    AccessDeniedError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from issuance.inputs import ItemInput

from conftest import ISSUE_TIME


def count(db_provider, model):
    with db_provider.session_scope() as session:
        return session.execute(select(func.count()).select_from(model)).scalar_one()


class TestIssuance:
    """Creating documents."""

    def test_create_returns_loaded_document(self, document_service, users, document_input):
        document = document_service.create(document_input(items=("KTP", "SIM")), users["operator_a"],
                                           now=ISSUE_TIME)

        assert document.reference_number == "SKH/1/X/TUK.7.2.1/2025"
        assert document.period_year == 2025
        assert document.sequence_number == 1
        assert document.operator.id == users["operator_a"]
        assert document.reporting_officer.id == users["officer"]
        assert document.resident.full_name == "Siti Aminah"
        assert [item.item_name for item in document.items] == ["KTP", "SIM"]
        assert document.approved_at is None

    def test_sequential_issuance_is_gapless(self, document_service, users, document_input):
        numbers = [
            document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME).sequence_number
            for _ in range(5)
        ]
        assert numbers == [1, 2, 3, 4, 5]

    def test_reference_numbers_unique(self, document_service, users, document_input):
        references = {
            document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME).reference_number
            for _ in range(4)
        }
        assert len(references) == 4

    def test_same_resident_reused(self, document_service, users, document_input, db_provider):
        first = document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME)
        second = document_service.create(document_input(), users["operator_b"], now=ISSUE_TIME)
        assert first.resident.id == second.resident.id
        assert count(db_provider, Resident) == 1

    def test_configured_last_number_continues(self, document_service, config_service, users,
                                              document_input):
        config_service.save_config({"last_number": "120"}, actor_id=users["admin"])
        document = document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME)
        assert document.sequence_number == 121

    def test_approving_official_sets_approved_at(self, document_service, users, document_input):
        data = document_input(approving_official_id=users["admin"])
        document = document_service.create(data, users["operator_a"], now=ISSUE_TIME)
        assert document.approving_official.id == users["admin"]
        assert document.approved_at == ISSUE_TIME

    def test_audit_entry_written(self, document_service, users, document_input, db_provider):
        document = document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME)
        with db_provider.session_scope() as session:
            log = session.execute(select(AuditLog)).scalar_one()
            assert log.action == AuditAction.DOCUMENT_CREATED
            assert log.user_id == users["operator_a"]
            assert log.resource_id == str(document.id)


class TestIssuanceValidation:
    """Invalid submissions are rejected before anything is written."""

    def test_no_items_rejected(self, document_service, users, document_input, db_provider):
        with pytest.raises(ValidationError) as exc_info:
            document_service.create(document_input(items=()), users["operator_a"], now=ISSUE_TIME)
        assert exc_info.value.field == "items"
        assert count(db_provider, DocumentSequence) == 0

    def test_unknown_reporting_officer_rejected(self, document_service, users, document_input, db_provider):
        with pytest.raises(ValidationError) as exc_info:
            document_service.create(document_input(reporting_officer_id=9999), users["operator_a"],
                                    now=ISSUE_TIME)
        assert exc_info.value.code == "UNKNOWN_USER"
        assert count(db_provider, LostDocument) == 0

    def test_blocked_characters_rejected(self, document_service, users, document_input):
        with pytest.raises(ValidationError) as exc_info:
            document_service.create(document_input(full_name="<script>"), users["operator_a"],
                                    now=ISSUE_TIME)
        assert exc_info.value.code == "BLOCKED_CHARACTERS"

    def test_future_birth_date_rejected(self, document_service, users, document_input):
        tomorrow = date.today() + timedelta(days=1)
        with pytest.raises(ValidationError):
            document_service.create(document_input(birth_date=tomorrow), users["operator_a"],
                                    now=ISSUE_TIME)

    def test_invalid_stored_template_is_configuration_error(self, document_service, db_provider,
                                                            users, document_input):
        from database.repositories import ConfigRepository
        with db_provider.session_scope() as session:
            ConfigRepository(session).upsert_many({"number_format": "SKH/%d"})

        with pytest.raises(ConfigurationError):
            document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME)
        assert count(db_provider, LostDocument) == 0


class TestAtomicity:
    """A failure anywhere in the unit of work leaves no trace."""

    def test_item_failure_rolls_back_everything(self, document_service, users, document_input, db_provider):
        def fail_insert(mapper, connection, target):
            raise OperationalError("INSERT INTO lost_items", {}, Exception("disk I/O error"))

        event.listen(LostItem, "before_insert", fail_insert)
        try:
            with pytest.raises(PersistenceError) as exc_info:
                document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME)
        finally:
            event.remove(LostItem, "before_insert", fail_insert)

        assert "disk" not in str(exc_info.value)
        assert count(db_provider, LostDocument) == 0
        assert count(db_provider, LostItem) == 0
        assert count(db_provider, Resident) == 0
        assert count(db_provider, DocumentSequence) == 0

        # The number was not consumed
        document = document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME)
        assert document.sequence_number == 1

    def test_conflict_is_retried(self, document_service, users, document_input):
        """A transient uniqueness conflict succeeds on the next attempt."""
        from database.repositories import LostDocumentRepository

        original = LostDocumentRepository.create
        calls = {"n": 0}

        def flaky_create(self, document_data, items):
            calls["n"] += 1
            if calls["n"] == 1:
                raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
            return original(self, document_data, items)

        with patch.object(LostDocumentRepository, "create", flaky_create):
            document = document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME)

        assert calls["n"] == 2
        assert document.sequence_number == 1

    def test_persistent_conflict_surfaces(self, document_service, users, document_input, db_provider):
        from database.repositories import DuplicateEntityError, LostDocumentRepository

        def always_conflict(self, document_data, items):
            raise DuplicateEntityError("Document number already issued")

        with patch.object(LostDocumentRepository, "create", always_conflict):
            with pytest.raises(ConflictError):
                document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME)

        assert count(db_provider, DocumentSequence) == 0


class TestBestEffortAudit:
    """A failing audit write never fails the operation it describes."""

    @pytest.mark.parametrize("failure", [
        OperationalError("INSERT INTO audit_logs", {}, Exception("database is locked")),
        TypeError("Object of type set is not JSON serializable"),
    ])
    def test_writes_succeed_when_audit_fails(self, document_service, users, document_input,
                                             db_provider, caplog, failure):
        from database.repositories import AuditRepository

        def broken_log(self, **kwargs):
            raise failure

        with patch.object(AuditRepository, "log", broken_log):
            with caplog.at_level(logging.ERROR, logger="issuance.audit_service"):
                document = document_service.create(document_input(), users["operator_a"],
                                                   now=ISSUE_TIME)
                updated = document_service.update(document.id, document_input(loss_location="Terminal"),
                                                  users["operator_a"], now=ISSUE_TIME)
                document_service.delete(document.id, users["operator_a"])

        assert document.reference_number == "SKH/1/X/TUK.7.2.1/2025"
        assert updated.loss_location == "Terminal"
        assert count(db_provider, LostDocument) == 1
        assert count(db_provider, AuditLog) == 0
        failures = [r for r in caplog.records if "Audit write failed" in r.getMessage()]
        assert len(failures) == 3


class TestConcurrency:
    """Racing writers on the shared SQLite file."""

    THREADS = 8
    PER_THREAD = 5

    def test_parallel_issuance_is_unique_and_gapless(self, document_service, users, document_input,
                                                     db_provider):
        barrier = threading.Barrier(self.THREADS)
        results, errors = [], []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            for _ in range(self.PER_THREAD):
                try:
                    document = document_service.create(document_input(), users["operator_a"],
                                                       now=ISSUE_TIME)
                except Exception as e:
                    with lock:
                        errors.append(e)
                else:
                    with lock:
                        results.append(document)

        threads = [threading.Thread(target=worker) for _ in range(self.THREADS)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        total = self.THREADS * self.PER_THREAD
        assert errors == []
        assert len({d.reference_number for d in results}) == total
        assert sorted(d.sequence_number for d in results) == list(range(1, total + 1))
        # Every report used the same identity
        assert count(db_provider, Resident) == 1
        assert len({d.resident.id for d in results}) == 1


class TestUpdate:
    """Rewriting documents."""

    def test_update_replaces_items(self, document_service, users, document_input, db_provider):
        document = document_service.create(document_input(items=("KTP", "SIM")), users["operator_a"],
                                           now=ISSUE_TIME)
        data = document_input()
        data.items = [ItemInput(item_name="Paspor")]

        updated = document_service.update(document.id, data, users["operator_a"])

        assert [item.item_name for item in updated.items] == ["Paspor"]
        assert count(db_provider, LostItem) == 1

    def test_update_keeps_number_and_operator(self, document_service, users, document_input):
        document = document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME)
        updated = document_service.update(document.id, document_input(loss_location="Terminal"),
                                          users["admin"])

        assert updated.reference_number == document.reference_number
        assert updated.report_date == document.report_date
        assert updated.operator.id == users["operator_a"]
        assert updated.last_updated_by.id == users["admin"]
        assert updated.loss_location == "Terminal"

    def test_changed_identity_resolves_new_resident(self, document_service, users, document_input):
        document = document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME)
        updated = document_service.update(document.id, document_input(full_name="Siti Aminah Putri"),
                                          users["operator_a"])
        assert updated.resident.id != document.resident.id
        assert updated.resident.full_name == "Siti Aminah Putri"

    def test_approval_timestamps(self, document_service, users, document_input):
        document = document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME)
        approved_time = ISSUE_TIME + timedelta(hours=2)

        approved = document_service.update(
            document.id, document_input(approving_official_id=users["admin"]), users["operator_a"],
            now=approved_time
        )
        assert approved.approved_at == approved_time

        same_official = document_service.update(
            document.id, document_input(approving_official_id=users["admin"]), users["operator_a"],
            now=approved_time + timedelta(hours=1)
        )
        assert same_official.approved_at == approved_time

        removed = document_service.update(document.id, document_input(), users["operator_a"])
        assert removed.approved_at is None

    def test_other_operator_cannot_update(self, document_service, users, document_input):
        document = document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME)
        with pytest.raises(AccessDeniedError):
            document_service.update(document.id, document_input(), users["operator_b"])

    def test_item_failure_during_update_rolls_back(self, document_service, users, document_input):
        from database.repositories import LostDocumentRepository

        document = document_service.create(document_input(items=("KTP",)), users["operator_a"],
                                           now=ISSUE_TIME)

        def broken_replace(self, doc, items):
            raise OperationalError("INSERT INTO lost_items", {}, Exception("database is locked"))

        with patch.object(LostDocumentRepository, "replace_items", broken_replace):
            with pytest.raises(PersistenceError):
                document_service.update(document.id, document_input(loss_location="Elsewhere"),
                                        users["operator_a"])

        unchanged = document_service.get(document.id, users["operator_a"])
        assert unchanged.loss_location == "Pasar Baru"
        assert [item.item_name for item in unchanged.items] == ["KTP"]


class TestDeleteAndGet:
    """Soft delete and access ordering."""

    def test_delete_hides_document(self, document_service, users, document_input, db_provider):
        document = document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME)
        document_service.delete(document.id, users["operator_a"])

        with pytest.raises(NotFoundError):
            document_service.get(document.id, users["operator_a"])
        # Row kept, only flagged
        assert count(db_provider, LostDocument) == 1

    def test_deleted_number_never_reissued(self, document_service, users, document_input):
        first = document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME)
        document_service.delete(first.id, users["admin"])
        second = document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME)
        assert second.sequence_number == 2

    def test_delete_twice_not_found(self, document_service, users, document_input):
        document = document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME)
        document_service.delete(document.id, users["operator_a"])
        with pytest.raises(NotFoundError):
            document_service.delete(document.id, users["operator_a"])

    def test_not_found_checked_before_access(self, document_service, users):
        with pytest.raises(NotFoundError):
            document_service.get(12345, users["operator_b"])

    def test_other_operator_cannot_view_or_delete(self, document_service, users, document_input):
        document = document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME)
        with pytest.raises(AccessDeniedError):
            document_service.get(document.id, users["operator_b"])
        with pytest.raises(AccessDeniedError):
            document_service.delete(document.id, users["operator_b"])

    def test_admin_can_view(self, document_service, users, document_input):
        document = document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME)
        assert document_service.get(document.id, users["admin"]).id == document.id


class TestQueries:
    """Listing, global search and expiring notifications."""

    def test_list_splits_active_and_archived(self, document_service, users, document_input):
        old = document_service.create(document_input(full_name="Lama"), users["operator_a"],
                                      now=ISSUE_TIME - timedelta(days=40))
        recent = document_service.create(document_input(full_name="Baru"), users["operator_a"],
                                         now=ISSUE_TIME)

        active, active_total = document_service.list_documents(now=ISSUE_TIME)
        archived, archived_total = document_service.list_documents(status="archived", now=ISSUE_TIME)

        assert [d.id for d in active] == [recent.id]
        assert [d.id for d in archived] == [old.id]
        assert active_total == archived_total == 1
        assert document_service.status_of(old, now=ISSUE_TIME) == ArchiveStatus.ARCHIVED

    def test_list_query_and_paging(self, document_service, users, document_input):
        for index in range(3):
            document_service.create(document_input(full_name=f"Warga {index}"), users["operator_a"],
                                    now=ISSUE_TIME + timedelta(minutes=index))
        document_service.create(document_input(full_name="Lain"), users["operator_a"], now=ISSUE_TIME)

        page, total = document_service.list_documents(query="warga", limit=2, offset=0,
                                                      now=ISSUE_TIME + timedelta(hours=1))
        assert total == 3
        assert [d.resident.full_name for d in page] == ["Warga 2", "Warga 1"]

    def test_list_excludes_deleted(self, document_service, users, document_input):
        document = document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME)
        document_service.delete(document.id, users["operator_a"])
        found, total = document_service.list_documents(now=ISSUE_TIME)
        assert found == [] and total == 0

    def test_global_search_spans_both_classes(self, document_service, users, document_input):
        document_service.create(document_input(full_name="Ahmad Lama"), users["operator_a"],
                                now=ISSUE_TIME - timedelta(days=60))
        document_service.create(document_input(full_name="Ahmad Baru"), users["operator_a"],
                                now=ISSUE_TIME)
        results = document_service.search_global("Ahmad")
        assert [d.resident.full_name for d in results] == ["Ahmad Baru", "Ahmad Lama"]

    def test_search_by_reference_number(self, document_service, users, document_input):
        document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME)
        assert len(document_service.search_global("SKH/1/X")) == 1

    def test_invalid_status_rejected(self, document_service):
        with pytest.raises(ValidationError):
            document_service.list_documents(status="pending")

    def test_expiring_only_own_documents_in_window(self, document_service, users, document_input):
        now = ISSUE_TIME
        expiring = document_service.create(document_input(full_name="Hampir"), users["operator_a"],
                                           now=now - timedelta(days=28))
        document_service.create(document_input(full_name="Masih Lama"), users["operator_a"],
                                now=now - timedelta(days=10))
        document_service.create(document_input(full_name="Sudah Arsip"), users["operator_a"],
                                now=now - timedelta(days=31))
        document_service.create(document_input(full_name="Milik Lain"), users["operator_b"],
                                now=now - timedelta(days=28))

        found = document_service.expiring_for_user(users["operator_a"], window_days=3, now=now)
        assert [d.id for d in found] == [expiring.id]

    @pytest.mark.parametrize("query", ["%", "_", "S_TI"])
    def test_wildcards_are_literal(self, document_service, users, document_input, query):
        document_service.create(document_input(full_name="Siti Aminah"), users["operator_a"],
                                now=ISSUE_TIME)
        assert document_service.search_global(query) == []
        assert document_service.list_documents(query=query, now=ISSUE_TIME)[1] == 0

    def test_literal_percent_still_matches(self, document_service, users, document_input):
        document_service.create(document_input(full_name="Toko 100% Jaya"), users["operator_a"],
                                now=ISSUE_TIME)
        assert len(document_service.search_global("100%")) == 1
