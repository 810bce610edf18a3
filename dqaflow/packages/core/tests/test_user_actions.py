"""用户动作测试

被拒绝的动作抛出 ValidationError 且不产生指令；
通过的动作返回需要下发的 SyncCommand。
"""

from datetime import timedelta

import pytest
from dqaflow.core import actions
from dqaflow.core.exceptions import ValidationError
from dqaflow.core.models import (
    CommandOp,
    EscalationStatus,
    InvoiceFileMeta,
    InvoiceStatus,
    TaskStatus,
    TaskType,
)
from dqaflow.core.snapshot import Snapshot


class TestTaskActions:
    def test_create_task(self, make_task, manager):
        commands = actions.create_task(make_task("t-new"), manager)
        assert [(c.op, c.entity_id) for c in commands] == [(CommandOp.CREATE_TASK, "t-new")]

    def test_create_task_must_start_in_todo(self, make_task, manager):
        with pytest.raises(ValidationError):
            actions.create_task(make_task(status=TaskStatus.DONE), manager)

    def test_delete_missing_task_is_noop(self, make_collections, make_task):
        snapshot = Snapshot.from_collections(make_collections(tasks=[make_task("t-1")]))
        assert actions.delete_task("t-404", snapshot) == []
        assert actions.delete_task("t-1", snapshot)[0].op == CommandOp.DELETE_TASK

    def test_change_status_with_reason(self, make_collections, make_task, agent, now):
        task = make_task()
        snapshot = Snapshot.from_collections(make_collections(tasks=[task]))
        commands = actions.change_task_status(
            task, TaskStatus.ON_HOLD, agent, snapshot, now=now, note="Waiting on client"
        )
        updated = commands[0].entity
        assert updated.status == TaskStatus.ON_HOLD
        assert updated.notes[-1].text == "Status changed to ON_HOLD: Waiting on client"

    def test_manual_done_blocked_by_active_escalation(
        self, make_collections, make_task, make_escalation, agent, now
    ):
        task = make_task(is_escalated=True)
        snapshot = Snapshot.from_collections(
            make_collections(tasks=[task], escalations=[make_escalation()])
        )
        with pytest.raises(ValidationError):
            actions.change_task_status(task, TaskStatus.DONE, agent, snapshot, now=now)

    def test_manual_done_allowed_after_escalations_closed(
        self, make_collections, make_task, make_escalation, agent, now
    ):
        task = make_task()
        closed = make_escalation(replies=1, status=EscalationStatus.CLOSED)
        snapshot = Snapshot.from_collections(make_collections(tasks=[task], escalations=[closed]))
        commands = actions.change_task_status(task, TaskStatus.DONE, agent, snapshot, now=now)
        assert commands[0].entity.status == TaskStatus.DONE
        assert commands[0].entity.completed_at == now

    def test_notes_are_appended_in_order(self, make_task, agent, now):
        task = make_task()
        first = actions.add_task_note(task, agent, "first", now=now)[0].entity
        second = actions.add_task_note(first, agent, "second", now=now + timedelta(minutes=1))
        assert [n.text for n in second[0].entity.notes] == ["first", "second"]

    def test_empty_note_rejected(self, make_task, agent, now):
        with pytest.raises(ValidationError):
            actions.add_task_note(make_task(), agent, " ", now=now)


class TestEscalationActions:
    def test_raise_flags_task(self, make_task, agent, now):
        commands = actions.raise_escalation(make_task(), agent, "Broken link", now=now)
        assert [c.op for c in commands] == [CommandOp.CREATE_ESCALATION, CommandOp.UPDATE_TASK]
        assert commands[1].entity.is_escalated is True

    def test_raise_on_already_flagged_task(self, make_task, agent, now):
        commands = actions.raise_escalation(
            make_task(is_escalated=True), agent, "Second issue", now=now
        )
        assert [c.op for c in commands] == [CommandOp.CREATE_ESCALATION]

    def test_reply(self, make_escalation, manager, agent, now):
        esc = make_escalation()
        replied = actions.reply_to_escalation(esc, manager, "Try the mirror", now=now)[0].entity
        assert replied.status == EscalationStatus.RESPONDED

        back = actions.reply_to_escalation(replied, agent, "Mirror is down too", now=now)
        assert back[0].entity.status == EscalationStatus.PENDING
        assert len(back[0].entity.history) == 3

    def test_close_clears_flag_when_last_active(
        self, make_collections, make_task, make_escalation, agent, now
    ):
        esc = make_escalation(replies=1)
        snapshot = Snapshot.from_collections(
            make_collections(tasks=[make_task(is_escalated=True)], escalations=[esc])
        )
        commands = actions.close_escalation(esc, agent, snapshot, now=now)
        assert [c.op for c in commands] == [CommandOp.UPDATE_ESCALATION, CommandOp.UPDATE_TASK]
        assert commands[0].entity.status == EscalationStatus.CLOSED
        assert commands[1].entity.is_escalated is False

    def test_close_keeps_flag_with_other_active(
        self, make_collections, make_task, make_escalation, agent, now
    ):
        esc = make_escalation("esc-1", replies=1)
        other = make_escalation("esc-2")
        snapshot = Snapshot.from_collections(
            make_collections(tasks=[make_task(is_escalated=True)], escalations=[esc, other])
        )
        commands = actions.close_escalation(esc, agent, snapshot, now=now)
        assert [c.op for c in commands] == [CommandOp.UPDATE_ESCALATION]

    def test_close_after_task_deleted(self, make_collections, make_escalation, agent, now):
        esc = make_escalation(replies=1)
        snapshot = Snapshot.from_collections(make_collections(escalations=[esc]))
        commands = actions.close_escalation(esc, agent, snapshot, now=now)
        assert [c.op for c in commands] == [CommandOp.UPDATE_ESCALATION]


class TestInvoiceActions:
    def test_create_invoice_with_companion(self, make_invoice, manager, settings, now):
        commands = actions.create_invoice(make_invoice("inv-9"), manager, settings=settings, now=now)
        assert [(c.op, c.entity_id) for c in commands] == [
            (CommandOp.CREATE_INVOICE, "inv-9"),
            (CommandOp.CREATE_TASK, "task-inv-9"),
        ]
        assert commands[1].entity.type == TaskType.INVOICE_PROCESSING

    def test_full_invoice_flow(self, make_invoice, manager, agent, now):
        due = now + timedelta(days=3)
        invoice = make_invoice()

        assigned = actions.assign_invoice(
            invoice, manager, "u-agent", due, now=now, assignee_name="Alex"
        )[0].entity
        assert assigned.status == InvoiceStatus.ASSIGNED

        with pytest.raises(ValidationError):
            actions.complete_invoice(assigned, agent, now=now)

        final = InvoiceFileMeta(name="final.csv", size="2 KB", type="csv")
        completed = actions.complete_invoice(
            assigned, agent, now=now, final_deliverable=final
        )[0].entity
        assert completed.status == InvoiceStatus.COMPLETED
        assert completed.final_csv_file == final

        with pytest.raises(ValidationError):
            actions.confirm_invoice_upload(completed, agent, now=now)
        uploaded = actions.confirm_invoice_upload(completed, manager, now=now)[0].entity
        assert uploaded.status == InvoiceStatus.UPLOADED

    def test_agent_cannot_assign(self, make_invoice, agent, now):
        with pytest.raises(ValidationError):
            actions.assign_invoice(make_invoice(), agent, "u-agent", now, now=now)

    def test_delete_invoice_cascades_to_present_tasks(
        self, make_collections, make_invoice, make_task
    ):
        snapshot = Snapshot.from_collections(
            make_collections(
                invoices=[make_invoice("inv-1")],
                tasks=[make_task("task-inv-1", type=TaskType.INVOICE_PROCESSING)],
            )
        )
        commands = actions.delete_invoice("inv-1", snapshot)
        assert [(c.op, c.entity_id) for c in commands] == [
            (CommandOp.DELETE_INVOICE, "inv-1"),
            (CommandOp.DELETE_TASK, "task-inv-1"),
        ]
