"""
Tests for the task lifecycle engine
"""
import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from fieldtask.models.models import Client, InventoryItem, Notification, Site, SiteSection, Task, User
from fieldtask.schemas.common import GPSFix
from fieldtask.services import task_lifecycle as lifecycle


def _create(db, seed, task_payload, **overrides):
    result = lifecycle.create_task(db, seed.as_admin, task_payload(**overrides))
    assert result.success is True, result.error
    return result.data


def _run_to_in_progress(db, seed, task_payload, **overrides):
    task = _create(db, seed, task_payload, worker_id=seed.worker.id, **overrides)
    assert lifecycle.start_task(db, seed.as_worker, task.id).success is True
    return task


@pytest.mark.unit
class TestCreateTask:
    """Creation preconditions and side effects"""

    def test_create_defaults(self, db, seed, task_payload):
        """Task starts pending, inherits client and branch from the site"""
        task = _create(db, seed, task_payload)
        assert task.status == "pending"
        assert task.client_id == seed.client.id
        assert task.branch_id == seed.branch.id
        assert task.section_ids == [seed.s1.id, seed.s2.id]
        assert task.cost_total == pytest.approx(155.5)

    def test_create_increments_total_counters(self, db, seed, task_payload):
        """Client and site total_tasks go up by one"""
        _create(db, seed, task_payload)
        db.expire_all()
        assert db.get(Client, seed.client.id).total_tasks == 1
        assert db.get(Site, seed.site.id).total_tasks == 1

    def test_reference_media_snapshot_is_concatenation(self, db, seed, task_payload):
        """Snapshot holds s1's media followed by s2's, each tagged with its section"""
        task = _create(db, seed, task_payload)
        captions = [(r.section_id, r.caption) for r in task.reference_media]
        assert captions == [
            (seed.s1.id, "north edge"),
            (seed.s1.id, "south edge"),
            (seed.s2.id, "beds"),
        ]

    def test_snapshot_not_resynced(self, db, seed, task_payload):
        """Changing a section's reference media later leaves the task snapshot untouched"""
        task = _create(db, seed, task_payload)
        section = db.get(SiteSection, seed.s1.id)
        section.reference_media[0].caption = "changed"
        section.reference_media.pop()
        db.commit()

        db.expire_all()
        stored = db.get(Task, task.id)
        assert [r.caption for r in stored.reference_media] == ["north edge", "south edge", "beds"]

    def test_missing_site(self, db, seed, task_payload):
        """Unknown site is not found and nothing is written"""
        result = lifecycle.create_task(db, seed.as_admin, task_payload(site_id=uuid.uuid4()))
        assert result.error.code == "not_found"
        assert db.query(Task).count() == 0

    def test_section_from_other_site(self, db, seed, task_payload):
        """A section belonging to a different site is a validation error"""
        foreign = seed.other_site.sections[0].id
        result = lifecycle.create_task(db, seed.as_admin, task_payload(section_ids=[seed.s1.id, foreign]))
        assert result.error.code == "validation_error"
        assert db.query(Task).count() == 0

    def test_unknown_section(self, db, seed, task_payload):
        """A section id that exists nowhere is not found"""
        result = lifecycle.create_task(db, seed.as_admin, task_payload(section_ids=[uuid.uuid4()]))
        assert result.error.code == "not_found"

    def test_no_sections(self, db, seed, task_payload):
        """At least one section is required"""
        result = lifecycle.create_task(db, seed.as_admin, task_payload(section_ids=[]))
        assert result.error.code == "validation_error"

    def test_worker_cannot_create(self, db, seed, task_payload):
        """Only admins create tasks"""
        result = lifecycle.create_task(db, seed.as_worker, task_payload())
        assert result.status_code == 403

    def test_create_with_worker_assigns_and_deducts_once(self, db, seed, task_payload):
        """Supplying a worker at creation runs the assignment, deducting stock exactly once"""
        materials = [{"inventory_item_id": seed.fertilizer.id, "quantity": 4}]
        task = _create(db, seed, task_payload, worker_id=seed.worker.id, materials=materials)
        assert task.status == "assigned"
        assert task.worker_id == seed.worker.id
        db.expire_all()
        assert db.get(InventoryItem, seed.fertilizer.id).quantity_current == 6


@pytest.mark.unit
class TestAssign:
    """pending -> assigned"""

    def test_assign_deducts_materials(self, db, seed, task_payload):
        """All material lines are deducted on assignment"""
        materials = [
            {"inventory_item_id": seed.fertilizer.id, "quantity": 3},
            {"inventory_item_id": seed.herbicide.id, "quantity": 1.5},
        ]
        task = _create(db, seed, task_payload, materials=materials)
        db.expire_all()
        assert db.get(InventoryItem, seed.fertilizer.id).quantity_current == 10

        result = lifecycle.assign_task(db, seed.as_admin, task.id, seed.worker.id)
        assert result.success is True
        assert result.data.status == "assigned"
        db.expire_all()
        assert db.get(InventoryItem, seed.fertilizer.id).quantity_current == 7
        assert db.get(InventoryItem, seed.herbicide.id).quantity_current == pytest.approx(0.5)

    def test_insufficient_stock_aborts_everything(self, db, seed, task_payload):
        """One short item rolls back every deduction and the status change"""
        materials = [
            {"inventory_item_id": seed.fertilizer.id, "quantity": 3},
            {"inventory_item_id": seed.herbicide.id, "quantity": 5},
        ]
        task = _create(db, seed, task_payload, materials=materials)
        result = lifecycle.assign_task(db, seed.as_admin, task.id, seed.worker.id)
        assert result.success is False
        assert result.error.code == "insufficient_stock"
        assert "Herbicide" in result.error.message

        db.expire_all()
        assert db.get(InventoryItem, seed.fertilizer.id).quantity_current == 10
        assert db.get(InventoryItem, seed.herbicide.id).quantity_current == 2
        stored = db.get(Task, task.id)
        assert stored.status == "pending"
        assert stored.worker_id is None

    def test_assign_non_worker(self, db, seed, task_payload):
        """Assigning an admin account is a validation error"""
        task = _create(db, seed, task_payload)
        result = lifecycle.assign_task(db, seed.as_admin, task.id, seed.admin.id)
        assert result.error.code == "validation_error"

    def test_assign_unknown_worker(self, db, seed, task_payload):
        """Unknown worker is not found"""
        task = _create(db, seed, task_payload)
        result = lifecycle.assign_task(db, seed.as_admin, task.id, uuid.uuid4())
        assert result.error.code == "not_found"

    def test_assign_twice_conflicts(self, db, seed, task_payload):
        """A task that already has a worker cannot be assigned again"""
        task = _create(db, seed, task_payload, worker_id=seed.worker.id)
        result = lifecycle.assign_task(db, seed.as_admin, task.id, seed.other_worker.id)
        assert result.error.code == "conflict"

    def test_assign_records_notification(self, db, seed, task_payload):
        """Assignment leaves a notification record for the worker"""
        _create(db, seed, task_payload, worker_id=seed.worker.id)
        notes = db.query(Notification).filter(Notification.recipient_id == seed.worker.id).all()
        assert len(notes) == 1
        assert notes[0].template_key == "task_assigned"
        assert notes[0].status == "skipped"

    def test_reassign_swaps_worker_without_stock_change(self, db, seed, task_payload):
        """Reassignment while assigned changes the worker only"""
        materials = [{"inventory_item_id": seed.fertilizer.id, "quantity": 2}]
        task = _create(db, seed, task_payload, worker_id=seed.worker.id, materials=materials)
        result = lifecycle.reassign_task(db, seed.as_admin, task.id, seed.other_worker.id)
        assert result.success is True
        assert result.data.worker_id == seed.other_worker.id
        db.expire_all()
        assert db.get(InventoryItem, seed.fertilizer.id).quantity_current == 8


@pytest.mark.unit
class TestStartAndComplete:
    """assigned -> in-progress -> completed"""

    def test_start_records_fix(self, db, seed, task_payload):
        """Starting stamps started_at and the GPS fix"""
        task = _create(db, seed, task_payload, worker_id=seed.worker.id)
        fix = GPSFix(latitude=49.28, longitude=-123.12)
        result = lifecycle.start_task(db, seed.as_worker, task.id, fix)
        assert result.data.status == "in-progress"
        assert result.data.started_at is not None
        assert result.data.start_fix.latitude == pytest.approx(49.28)

    def test_other_worker_cannot_start(self, db, seed, task_payload):
        """Only the assigned worker may act on the task"""
        task = _create(db, seed, task_payload, worker_id=seed.worker.id)
        result = lifecycle.start_task(db, seed.as_other_worker, task.id)
        assert result.status_code == 403

    def test_start_pending_conflicts(self, db, seed, task_payload):
        """Admins cannot start a task that was never assigned"""
        task = _create(db, seed, task_payload)
        result = lifecycle.start_task(db, seed.as_admin, task.id)
        assert result.error.code == "conflict"

    def test_complete_propagates(self, db, seed, task_payload):
        """Completion bumps each counter by one and stamps every section"""
        task = _run_to_in_progress(db, seed, task_payload)
        result = lifecycle.complete_task(db, seed.as_worker, task.id, GPSFix(latitude=49.0, longitude=-123.0))
        assert result.success is True
        assert result.data.status == "completed"
        assert result.data.end_fix is not None

        db.expire_all()
        assert db.get(Client, seed.client.id).completed_tasks == 1
        assert db.get(User, seed.worker.id).completed_tasks == 1
        site = db.get(Site, seed.site.id)
        assert site.completed_tasks == 1
        assert site.last_visit is not None
        assert site.completion_rate == 100.0
        for sid in (seed.s1.id, seed.s2.id):
            section = db.get(SiteSection, sid)
            assert section.last_task_status == "completed"
            assert section.last_task_id == task.id
            assert section.last_worked_on is not None

    def test_complete_twice_conflicts_and_keeps_counters(self, db, seed, task_payload):
        """Second completion is a conflict and counters stay at one"""
        task = _run_to_in_progress(db, seed, task_payload)
        assert lifecycle.complete_task(db, seed.as_worker, task.id).success is True
        second = lifecycle.complete_task(db, seed.as_worker, task.id)
        assert second.success is False
        assert second.error.code == "conflict"

        db.expire_all()
        assert db.get(Client, seed.client.id).completed_tasks == 1
        assert db.get(User, seed.worker.id).completed_tasks == 1
        assert db.get(Site, seed.site.id).completed_tasks == 1

    def test_actual_duration_derived(self, db, seed, task_payload):
        """actual_duration is the started/completed gap in hours, two decimals"""
        task = _run_to_in_progress(db, seed, task_payload)
        lifecycle.complete_task(db, seed.as_worker, task.id)
        stored = db.get(Task, task.id)
        stored.started_at = datetime(2026, 5, 1, 8, 0, 0)
        stored.completed_at = datetime(2026, 5, 1, 10, 20, 0)
        db.commit()
        db.expire_all()
        assert db.get(Task, task.id).actual_duration == round(140 / 60, 2)

    def test_cost_total_recomputed_on_update(self, db, seed, task_payload):
        """cost_total always equals labor plus materials after a save"""
        task = _create(db, seed, task_payload)
        result = lifecycle.update_task(db, seed.as_admin, task.id, {"cost_labor": 200, "cost_materials": 15})
        assert result.data.cost_total == 215
        db.expire_all()
        stored = db.get(Task, task.id)
        assert stored.cost_total == stored.cost_labor + stored.cost_materials

    @pytest.mark.parametrize("field", ["cost_labor", "cost_materials", "estimated_duration"])
    def test_update_rejects_null_required_values(self, db, seed, task_payload, field):
        """Explicit nulls for required numbers are a validation error and change nothing"""
        task = _create(db, seed, task_payload)
        result = lifecycle.update_task(db, seed.as_admin, task.id, {field: None, "notes": "gate code 1234"})
        assert result.success is False
        assert result.error.code == "validation_error"
        db.expire_all()
        stored = db.get(Task, task.id)
        assert stored.notes is None
        assert stored.cost_total == 155.5

    def test_stale_session_completion_conflicts(self, db, engine, seed, task_payload):
        """A session holding an in-progress copy loses the race and counters stay at one"""
        task = _run_to_in_progress(db, seed, task_payload)
        stale = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)()
        try:
            assert stale.get(Task, task.id).status == "in-progress"
            assert lifecycle.complete_task(db, seed.as_worker, task.id).success is True

            second = lifecycle.complete_task(stale, seed.as_worker, task.id)
            assert second.success is False
            assert second.error.code == "conflict"
        finally:
            stale.close()

        db.expire_all()
        assert db.get(Client, seed.client.id).completed_tasks == 1
        assert db.get(User, seed.worker.id).completed_tasks == 1
        assert db.get(Site, seed.site.id).completed_tasks == 1


@pytest.mark.unit
class TestRejectAndReview:
    """Side branch and admin review"""

    def test_reject_propagates_to_sections(self, db, seed, task_payload):
        """Rejection marks every referenced section"""
        task = _create(db, seed, task_payload, worker_id=seed.worker.id)
        result = lifecycle.reject_task(db, seed.as_admin, task.id, "Client cancelled")
        assert result.data.status == "rejected"
        db.expire_all()
        for sid in (seed.s1.id, seed.s2.id):
            section = db.get(SiteSection, sid)
            assert section.last_task_status == "rejected"
            assert section.last_task_id == task.id

    def test_reject_twice_conflicts(self, db, seed, task_payload):
        """A rejected task cannot be rejected again"""
        task = _create(db, seed, task_payload)
        lifecycle.reject_task(db, seed.as_admin, task.id)
        result = lifecycle.reject_task(db, seed.as_admin, task.id)
        assert result.error.code == "conflict"

    def test_review_round_trip_restores_status(self, db, seed, task_payload):
        """Approving a flagged task returns it to the status its timestamps imply"""
        task = _run_to_in_progress(db, seed, task_payload)
        assert lifecycle.flag_for_review(db, seed.as_admin, task.id).data.status == "review"
        result = lifecycle.review_task(db, seed.as_admin, task.id, {"decision": "approved", "comments": "ok"})
        assert result.data.status == "in-progress"
        assert result.data.review_status == "approved"
        assert result.data.reviewed_by == seed.admin.id

    def test_review_rejection_rejects(self, db, seed, task_payload):
        """A rejected review decision runs the reject transition"""
        task = _create(db, seed, task_payload)
        result = lifecycle.review_task(db, seed.as_admin, task.id, {"decision": "rejected"})
        assert result.data.status == "rejected"
        assert result.data.review_status == "rejected"


@pytest.mark.unit
class TestReadAndDelete:
    """Scoped reads, material confirmation and deletion"""

    def test_worker_lists_only_own_tasks(self, db, seed, task_payload):
        """Workers only see tasks assigned to them"""
        _create(db, seed, task_payload, worker_id=seed.worker.id)
        _create(db, seed, task_payload, worker_id=seed.other_worker.id)
        result = lifecycle.list_tasks(db, seed.as_worker)
        assert len(result.data) == 1
        assert result.data[0].worker_id == seed.worker.id

    def test_client_cannot_list_other_client(self, db, seed, task_payload):
        """Clients are limited to their own task list"""
        result = lifecycle.list_client_tasks(db, seed.as_client, uuid.uuid4())
        assert result.status_code == 403

    def test_confirm_material(self, db, seed, task_payload):
        """Assigned worker confirms a material line once"""
        materials = [{"inventory_item_id": seed.fertilizer.id, "quantity": 1}]
        task = _create(db, seed, task_payload, worker_id=seed.worker.id, materials=materials)
        line_id = task.materials[0].id
        result = lifecycle.confirm_material(db, seed.as_worker, task.id, line_id)
        assert result.data.materials[0].confirmed is True
        assert result.data.materials[0].confirmed_by == seed.worker.id
        again = lifecycle.confirm_material(db, seed.as_worker, task.id, line_id)
        assert again.error.code == "conflict"

    def test_delete_task_removes_hosted_media(self, db, seed, task_payload, host):
        """Deleting a task removes its own hosted objects but not section reference media"""
        from conftest import image_file
        from fieldtask.services import media

        task = _create(db, seed, task_payload, worker_id=seed.worker.id)
        media.add_media(db, seed.as_worker, host, task.id, "before", [image_file()])
        result = lifecycle.delete_task(db, seed.as_admin, host, task.id)
        assert result.success is True
        assert result.data["hosted_objects_removed"] == 1
        assert host.deleted == host.uploads
        assert db.query(Task).count() == 0
        assert len(db.get(SiteSection, seed.s1.id).reference_media) == 2

    def test_unexpected_error_is_wrapped(self, db, seed, task_payload, monkeypatch):
        """Unexpected exceptions come back as server_error results"""
        def boom(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(lifecycle, "snapshot_reference_media", boom)
        result = lifecycle.create_task(db, seed.as_admin, task_payload())
        assert result.success is False
        assert result.error.code == "server_error"
        assert result.message == "Failed to create task"
