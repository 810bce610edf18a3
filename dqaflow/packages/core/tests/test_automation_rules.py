"""Automation Rule Engine 单元测试

每条规则单独验证，外加 WorkingSet 的按实体合并。
"""

from datetime import timedelta

from dqaflow.core.automation import WorkingSet, evaluate_rules
from dqaflow.core.config import EngineSettings
from dqaflow.core.delta import detect_deltas
from dqaflow.core.models import (
    CommandOp,
    EscalationStatus,
    InventoryStatus,
    InvoiceFileMeta,
    InvoiceStatus,
    TaskPriority,
    TaskStatus,
    TaskType,
    User,
    UserRole,
)
from dqaflow.core.snapshot import CycleFrame, Snapshot


def run_rules(previous, current, settings, now, baseline=False):
    """对两份集合执行一次规则评估"""
    prev_snap = Snapshot.from_collections(previous)
    curr_snap = Snapshot.from_collections(current)
    frame = CycleFrame(cycle_no=2, previous=prev_snap, current=curr_snap, baseline=baseline)
    deltas = detect_deltas(prev_snap, curr_snap, baseline)
    return evaluate_rules(frame, deltas, settings, now)


def by_id(commands):
    return {c.entity_id: c for c in commands}


class TestWorkingSet:
    """按实体合并"""

    def test_create_then_update_merges_into_create(self, make_task):
        ws = WorkingSet({})
        ws.put_task(make_task("t-new"), "rule_a", created=True)
        ws.put_task(make_task("t-new", status=TaskStatus.DONE), "rule_b")
        commands = ws.commands()
        assert len(commands) == 1
        assert commands[0].op == CommandOp.CREATE_TASK
        assert commands[0].entity.status == TaskStatus.DONE
        assert commands[0].origin == "rule_a+rule_b"

    def test_create_then_delete_cancels(self, make_task):
        ws = WorkingSet({})
        ws.put_task(make_task("t-new"), "rule_a", created=True)
        assert ws.delete_task("t-new", "rule_b") is True
        assert ws.commands() == []

    def test_delete_missing_is_noop(self):
        ws = WorkingSet({})
        assert ws.delete_task("t-404", "rule") is False
        assert ws.commands() == []

    def test_untouched_tasks_produce_no_commands(self, make_task):
        ws = WorkingSet({"t-1": make_task()})
        assert ws.task("t-1") is not None
        assert ws.commands() == []


class TestAutoComplete:
    """规则 1：库存驱动的自动完成"""

    def _linked(self, make_task, task_type=TaskType.AUGMENTING, **overrides):
        return make_task(
            "t-aug",
            type=task_type,
            status=TaskStatus.IN_PROGRESS,
            inventory_file_id="f-1",
            inventory_item_ids={"r1", "r2"},
            **overrides,
        )

    def test_all_items_augmented_completes_task(
        self, make_collections, make_task, make_inventory, settings, now
    ):
        inventory = make_inventory(
            "f-1",
            {
                "r1": InventoryStatus.AUGMENTED,
                "r2": InventoryStatus.QA_COMPLETE,
                "r3": InventoryStatus.PENDING,
            },
        )
        collections = make_collections(tasks=[self._linked(make_task)], inventories=[inventory])
        commands = run_rules(collections, collections, settings, now)

        assert len(commands) == 1
        command = commands[0]
        assert command.op == CommandOp.UPDATE_TASK
        assert command.entity.status == TaskStatus.DONE
        assert command.entity.completed_at == now
        assert command.origin == "auto_complete"

    def test_partial_progress_does_nothing(
        self, make_collections, make_task, make_inventory, settings, now
    ):
        inventory = make_inventory(
            "f-1", {"r1": InventoryStatus.AUGMENTED, "r2": InventoryStatus.ASSIGNED_AUGMENTATION}
        )
        collections = make_collections(tasks=[self._linked(make_task)], inventories=[inventory])
        assert run_rules(collections, collections, settings, now) == []

    def test_qa_requires_qa_complete(
        self, make_collections, make_task, make_inventory, settings, now
    ):
        task = self._linked(make_task, TaskType.QA)
        augmented = make_inventory(
            "f-1", {"r1": InventoryStatus.AUGMENTED, "r2": InventoryStatus.AUGMENTED}
        )
        collections = make_collections(tasks=[task], inventories=[augmented])
        assert run_rules(collections, collections, settings, now) == []

        checked = make_inventory(
            "f-1", {"r1": InventoryStatus.QA_COMPLETE, "r2": InventoryStatus.QA_COMPLETE}
        )
        collections = make_collections(tasks=[task], inventories=[checked])
        commands = run_rules(collections, collections, settings, now)
        assert [c.entity.status for c in commands] == [TaskStatus.DONE]

    def test_active_escalation_blocks_completion(
        self, make_collections, make_task, make_inventory, make_escalation, settings, now
    ):
        inventory = make_inventory(
            "f-1", {"r1": InventoryStatus.AUGMENTED, "r2": InventoryStatus.AUGMENTED}
        )
        collections = make_collections(
            tasks=[self._linked(make_task, is_escalated=True)],
            inventories=[inventory],
            escalations=[make_escalation(task_id="t-aug")],
        )
        assert run_rules(collections, collections, settings, now) == []

    def test_missing_inventory_file_is_deferred(self, make_collections, make_task, settings, now):
        collections = make_collections(tasks=[self._linked(make_task)])
        assert run_rules(collections, collections, settings, now) == []

    def test_done_task_is_left_alone(
        self, make_collections, make_task, make_inventory, settings, now
    ):
        inventory = make_inventory(
            "f-1", {"r1": InventoryStatus.AUGMENTED, "r2": InventoryStatus.AUGMENTED}
        )
        task = self._linked(make_task).model_copy(update={"status": TaskStatus.DONE})
        collections = make_collections(tasks=[task], inventories=[inventory])
        assert run_rules(collections, collections, settings, now) == []


class TestInvoiceCompanion:
    """规则 2 / 3：companion 任务的创建与同步"""

    def test_new_invoice_creates_companion(self, make_collections, make_invoice, settings, now):
        previous = make_collections()
        current = make_collections(invoices=[make_invoice("inv-1")])
        commands = run_rules(previous, current, settings, now)

        assert len(commands) == 1
        command = commands[0]
        assert command.op == CommandOp.CREATE_TASK
        companion = command.entity
        assert companion.task_id == "task-inv-1"
        assert companion.title == "Process Invoice: Studio inv-1"
        assert companion.type == TaskType.INVOICE_PROCESSING
        assert companion.priority == TaskPriority.MEDIUM
        assert companion.status == TaskStatus.TODO
        assert companion.due_date == now + timedelta(days=settings.companion_due_days)

    def test_companion_uses_invoice_assignment(self, make_collections, make_invoice, settings, now):
        due = now + timedelta(days=5)
        invoice = make_invoice(
            status=InvoiceStatus.ASSIGNED, assignee_id="u-agent", due_date=due
        )
        commands = run_rules(
            make_collections(), make_collections(invoices=[invoice]), settings, now
        )
        companion = commands[0].entity
        assert companion.assignee_id == "u-agent"
        assert companion.due_date == due

    def test_baseline_does_not_create_companions(
        self, make_collections, make_invoice, settings, now
    ):
        current = make_collections(invoices=[make_invoice("inv-1")])
        assert run_rules(make_collections(), current, settings, now, baseline=True) == []

    def test_existing_companion_not_duplicated(
        self, make_collections, make_invoice, make_task, settings, now
    ):
        current = make_collections(
            invoices=[make_invoice("inv-1")],
            tasks=[make_task("task-inv-1", type=TaskType.INVOICE_PROCESSING)],
        )
        previous = make_collections(tasks=[make_task("task-inv-1", type=TaskType.INVOICE_PROCESSING)])
        assert run_rules(previous, current, settings, now) == []

    def test_assignment_syncs_to_companion(
        self, make_collections, make_invoice, make_task, settings, now
    ):
        due = now + timedelta(days=2)
        companion = make_task("task-inv-1", assignee_id="", type=TaskType.INVOICE_PROCESSING)
        previous = make_collections(invoices=[make_invoice("inv-1")], tasks=[companion])
        current = make_collections(
            invoices=[
                make_invoice(
                    "inv-1", status=InvoiceStatus.ASSIGNED, assignee_id="u-agent", due_date=due
                )
            ],
            tasks=[companion],
        )
        commands = run_rules(previous, current, settings, now)

        assert len(commands) == 1
        synced = commands[0].entity
        assert commands[0].op == CommandOp.UPDATE_TASK
        assert synced.assignee_id == "u-agent"
        assert synced.due_date == due
        assert synced.status == TaskStatus.TODO


class TestManagerReview:
    """规则 4 / 5：COMPLETED 边沿与上传确认"""

    def _completed_edge(self, make_collections, make_invoice, make_task, users=None):
        assigned = make_invoice(
            "inv-1", status=InvoiceStatus.ASSIGNED, assignee_id="u-agent"
        )
        completed = assigned.model_copy(
            update={
                "status": InvoiceStatus.COMPLETED,
                "final_csv_file": InvoiceFileMeta(name="final.csv", type="csv"),
            }
        )
        companion = make_task("task-inv-1", type=TaskType.INVOICE_PROCESSING)
        previous = make_collections(invoices=[assigned], tasks=[companion], users=users)
        current = make_collections(invoices=[completed], tasks=[companion], users=users)
        return previous, current

    def test_completed_edge_creates_review_and_completes_companion(
        self, make_collections, make_invoice, make_task, settings, now
    ):
        previous, current = self._completed_edge(make_collections, make_invoice, make_task)
        commands = by_id(run_rules(previous, current, settings, now))

        assert set(commands) == {"task-inv-1", "task-mgr-inv-1"}
        assert commands["task-inv-1"].op == CommandOp.UPDATE_TASK
        assert commands["task-inv-1"].entity.status == TaskStatus.DONE

        review = commands["task-mgr-inv-1"]
        assert review.op == CommandOp.CREATE_TASK
        assert review.entity.assignee_id == "u-mgr"
        assert review.entity.priority == TaskPriority.HIGH
        assert review.entity.due_date == now + timedelta(hours=24)
        assert review.entity.title == "Upload Final Deliverable: Studio inv-1"
        assert [a.name for a in review.entity.attachments] == ["final.csv"]

    def test_configured_manager_wins(
        self, make_collections, make_invoice, make_task, now
    ):
        previous, current = self._completed_edge(make_collections, make_invoice, make_task)
        settings = EngineSettings(manager_id="u-boss", manager_review_due_hours=48)
        review = by_id(run_rules(previous, current, settings, now))["task-mgr-inv-1"]
        assert review.entity.assignee_id == "u-boss"
        assert review.entity.due_date == now + timedelta(hours=48)

    def test_no_manager_defers_review(
        self, make_collections, make_invoice, make_task, settings, now
    ):
        users = [User(user_id="u-agent", role=UserRole.AGENT)]
        previous, current = self._completed_edge(
            make_collections, make_invoice, make_task, users=users
        )
        commands = by_id(run_rules(previous, current, settings, now))
        assert "task-mgr-inv-1" not in commands
        # companion 同步不受影响
        assert commands["task-inv-1"].entity.status == TaskStatus.DONE

    def test_existing_review_not_duplicated(
        self, make_collections, make_invoice, make_task, settings, now
    ):
        previous, current = self._completed_edge(make_collections, make_invoice, make_task)
        review = make_task("task-mgr-inv-1", assignee_id="u-mgr", type=TaskType.INVOICE_PROCESSING)
        current = current.model_copy(update={"tasks": [*current.tasks, review]})
        commands = by_id(run_rules(previous, current, settings, now))
        assert "task-mgr-inv-1" not in commands

    def test_completed_invoice_at_baseline_creates_nothing(
        self, make_collections, make_invoice, settings, now
    ):
        invoice = make_invoice(
            "inv-1", status=InvoiceStatus.COMPLETED, assignee_id="u-agent"
        )
        current = make_collections(invoices=[invoice])
        assert run_rules(make_collections(), current, settings, now, baseline=True) == []

    def test_upload_completes_review_task(
        self, make_collections, make_invoice, make_task, settings, now
    ):
        completed = make_invoice(
            "inv-1", status=InvoiceStatus.COMPLETED, assignee_id="u-agent"
        )
        uploaded = completed.model_copy(update={"status": InvoiceStatus.UPLOADED})
        tasks = [
            make_task("task-inv-1", type=TaskType.INVOICE_PROCESSING, status=TaskStatus.DONE),
            make_task("task-mgr-inv-1", assignee_id="u-mgr", type=TaskType.INVOICE_PROCESSING),
        ]
        previous = make_collections(invoices=[completed], tasks=tasks)
        current = make_collections(invoices=[uploaded], tasks=tasks)
        commands = run_rules(previous, current, settings, now)

        assert [c.entity_id for c in commands] == ["task-mgr-inv-1"]
        assert commands[0].entity.status == TaskStatus.DONE
        assert commands[0].origin == "upload_confirmation"


class TestCascadeDelete:
    """规则 6：删除 Invoice 时删除派生任务"""

    def test_deletes_both_derived_tasks(
        self, make_collections, make_invoice, make_task, settings, now
    ):
        tasks = [
            make_task("task-inv-1", type=TaskType.INVOICE_PROCESSING),
            make_task("task-mgr-inv-1", type=TaskType.INVOICE_PROCESSING),
            make_task("t-other"),
        ]
        previous = make_collections(invoices=[make_invoice("inv-1")], tasks=tasks)
        current = make_collections(tasks=tasks)
        commands = run_rules(previous, current, settings, now)

        assert {c.entity_id for c in commands} == {"task-inv-1", "task-mgr-inv-1"}
        assert all(c.op == CommandOp.DELETE_TASK for c in commands)

    def test_missing_derived_tasks_are_noop(self, make_collections, make_invoice, settings, now):
        previous = make_collections(invoices=[make_invoice("inv-1")])
        assert run_rules(previous, make_collections(), settings, now) == []


class TestEscalationFlag:
    """规则 7：is_escalated 与未关闭 Escalation 一致"""

    def test_flag_raised_for_active_escalation(
        self, make_collections, make_task, make_escalation, settings, now
    ):
        collections = make_collections(tasks=[make_task()], escalations=[make_escalation()])
        commands = run_rules(collections, collections, settings, now)
        assert len(commands) == 1
        assert commands[0].entity.is_escalated is True

    def test_flag_cleared_when_all_closed(
        self, make_collections, make_task, make_escalation, settings, now
    ):
        closed = make_escalation(replies=1, status=EscalationStatus.CLOSED)
        collections = make_collections(
            tasks=[make_task(is_escalated=True)], escalations=[closed]
        )
        commands = run_rules(collections, collections, settings, now)
        assert len(commands) == 1
        assert commands[0].entity.is_escalated is False

    def test_consistent_flag_produces_nothing(
        self, make_collections, make_task, make_escalation, settings, now
    ):
        collections = make_collections(
            tasks=[make_task(is_escalated=True)], escalations=[make_escalation()]
        )
        assert run_rules(collections, collections, settings, now) == []
