"""End-to-end authorization through the HTTP routes."""

from decimal import Decimal

import pytest
from sqlalchemy import select

from app.models import Client, ClientHistory, Payment, Task, User
from tests.conftest import make_auth_header


def _codes(resp) -> str | None:
    detail = resp.json().get("detail")
    return detail.get("code") if isinstance(detail, dict) else None


# ── Employees ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestEmployeeRoutes:
    async def test_team_leader_reads_own_department(self, client, org):
        resp = await client.get(f"/api/employees/{org.emp_employee5.id}", headers=make_auth_header(org.leader5))
        assert resp.status_code == 200
        assert resp.json()["department_id"] == 5

    async def test_team_leader_other_department(self, client, org):
        resp = await client.get(f"/api/employees/{org.emp_employee7.id}", headers=make_auth_header(org.leader5))
        assert resp.status_code == 403
        assert _codes(resp) == "DEPARTMENT_ACCESS_DENIED"

    async def test_employee_self_only(self, client, org):
        own = await client.get(f"/api/employees/{org.emp_employee5.id}", headers=make_auth_header(org.employee5))
        other = await client.get(f"/api/employees/{org.emp_employee5b.id}", headers=make_auth_header(org.employee5))
        assert own.status_code == 200
        assert other.status_code == 403
        assert _codes(other) == "SELF_ACCESS_ONLY"

    async def test_missing_employee_is_404(self, client, org):
        resp = await client.get("/api/employees/9999", headers=make_auth_header(org.employee5))
        assert resp.status_code == 404
        assert _codes(resp) == "EMPLOYEE_NOT_FOUND"

    async def test_list_scoped_for_team_leader(self, client, org):
        resp = await client.get("/api/employees", headers=make_auth_header(org.leader5))
        assert resp.status_code == 200
        ids = {e["id"] for e in resp.json()["items"]}
        assert ids == {org.emp_leader5.id, org.emp_employee5.id, org.emp_employee5b.id}

    async def test_list_scoped_for_employee(self, client, org):
        resp = await client.get("/api/employees", headers=make_auth_header(org.employee7))
        assert [e["id"] for e in resp.json()["items"]] == [org.emp_employee7.id]

    async def test_list_empty_without_profile(self, client, org):
        resp = await client.get("/api/employees", headers=make_auth_header(org.orphan_leader))
        assert resp.status_code == 200
        assert resp.json()["total"] == 0

    async def test_list_empty_for_accountant(self, client, org):
        resp = await client.get("/api/employees", headers=make_auth_header(org.accountant))
        assert resp.json()["items"] == []

    async def test_manager_sees_everyone(self, client, org):
        resp = await client.get("/api/employees", headers=make_auth_header(org.manager))
        assert resp.json()["total"] == 6

    async def test_create_requires_level_two(self, client, org):
        body = {"employee_number": "E-NEW", "full_name_ar": "جديد", "department_id": 5}
        denied = await client.post("/api/employees", json=body, headers=make_auth_header(org.leader5))
        assert denied.status_code == 403
        assert _codes(denied) == "INSUFFICIENT_PERMISSIONS"

        created = await client.post("/api/employees", json=body, headers=make_auth_header(org.manager))
        assert created.status_code == 201
        assert created.json()["department_name"] == "Marketing"

    async def test_specialization_must_match_department(self, client, org):
        resp = await client.post("/api/employees", headers=make_auth_header(org.manager), json={
            "employee_number": "E-BAD", "full_name_ar": "خطأ",
            "department_id": 5, "specialization_id": org.spec7.id,
        })
        assert resp.status_code == 400
        assert _codes(resp) == "INVALID_SPECIALIZATION"

    async def test_update_returns_fresh_profile(self, client, org):
        resp = await client.put(
            f"/api/employees/{org.emp_employee5.id}",
            json={"job_title": "Designer"},
            headers=make_auth_header(org.owner),
        )
        assert resp.status_code == 200
        assert resp.json()["id"] == org.emp_employee5.id
        assert resp.json()["job_title"] == "Designer"

        reread = await client.get(f"/api/employees/{org.emp_employee5.id}", headers=make_auth_header(org.owner))
        assert reread.json()["job_title"] == "Designer"

    async def test_update_rejects_null_name(self, client, org):
        resp = await client.put(
            f"/api/employees/{org.emp_employee5.id}",
            json={"full_name_ar": None},
            headers=make_auth_header(org.manager),
        )
        assert resp.status_code == 422


# ── Clients ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestClientRoutes:
    async def test_team_leader_department_client(self, client, org):
        ok = await client.get(f"/api/clients/{org.client5.id}", headers=make_auth_header(org.leader5))
        denied = await client.get(f"/api/clients/{org.client7.id}", headers=make_auth_header(org.leader5))
        assert ok.status_code == 200
        assert denied.status_code == 403
        assert _codes(denied) == "CLIENT_ACCESS_DENIED"

    async def test_assigned_employee(self, client, org):
        ok = await client.get(f"/api/clients/{org.client5.id}", headers=make_auth_header(org.employee5))
        denied = await client.get(f"/api/clients/{org.client5.id}", headers=make_auth_header(org.employee5b))
        assert ok.status_code == 200
        assert denied.status_code == 403

    async def test_missing_client(self, client, org):
        resp = await client.get("/api/clients/9999", headers=make_auth_header(org.leader5))
        assert resp.status_code == 404
        assert _codes(resp) == "CLIENT_NOT_FOUND"

    async def test_list_scoping(self, client, org):
        leader = await client.get("/api/clients", headers=make_auth_header(org.leader7))
        employee = await client.get("/api/clients", headers=make_auth_header(org.employee5b))
        manager = await client.get("/api/clients", headers=make_auth_header(org.manager))
        assert [c["id"] for c in leader.json()["items"]] == [org.client7.id]
        assert employee.json()["items"] == []
        assert manager.json()["total"] == 2

    async def test_create_needs_permission(self, client, org):
        body = {"full_name_ar": "عميل", "primary_phone": "0511111111", "primary_email": "new@example.com"}
        denied = await client.post("/api/clients", json=body, headers=make_auth_header(org.employee5))
        assert denied.status_code == 403
        assert _codes(denied) == "PERMISSION_DENIED"

        created = await client.post("/api/clients", json=body, headers=make_auth_header(org.leader5))
        assert created.status_code == 201
        assert created.json()["contract_number"].startswith("CNT")

    async def test_update_writes_history(self, client, org, session_factory):
        resp = await client.put(
            f"/api/clients/{org.client5.id}",
            json={"company_name": "Acme Marketing"},
            headers=make_auth_header(org.leader5),
        )
        assert resp.status_code == 200
        assert resp.json()["company_name"] == "Acme Marketing"

        async with session_factory() as db:
            history = (await db.execute(
                select(ClientHistory).where(ClientHistory.client_id == org.client5.id)
            )).scalars().all()
        assert [h.action_type for h in history] == ["UPDATE"]

    async def test_assigned_employee_cannot_edit(self, client, org, session_factory):
        resp = await client.put(
            f"/api/clients/{org.client5.id}",
            json={"assigned_employee_id": org.emp_employee5b.id},
            headers=make_auth_header(org.employee5),
        )
        assert resp.status_code == 403
        assert _codes(resp) == "PERMISSION_DENIED"

        async with session_factory() as db:
            stored = await db.get(Client, org.client5.id)
        assert stored.assigned_employee_id == org.emp_employee5.id

    @pytest.mark.parametrize("field", ["full_name_ar", "primary_email", "status"])
    async def test_update_rejects_null_required_field(self, client, org, field):
        resp = await client.put(
            f"/api/clients/{org.client5.id}", json={field: None}, headers=make_auth_header(org.manager),
        )
        assert resp.status_code == 422

    async def test_delete_requires_permission(self, client, org):
        resp = await client.delete(f"/api/clients/{org.client5.id}", headers=make_auth_header(org.leader5))
        assert resp.status_code == 403
        assert _codes(resp) == "PERMISSION_DENIED"

    async def test_permanent_delete_owner_only(self, client, org):
        resp = await client.delete(
            f"/api/clients/{org.client5.id}?permanent=true", headers=make_auth_header(org.manager),
        )
        assert resp.status_code == 403
        assert _codes(resp) == "PERMANENT_DELETE_DENIED"

    async def test_outstanding_payments_block_delete(self, client, org, session_factory):
        async with session_factory() as db:
            db.add(Payment(client_id=org.client7.id, amount=Decimal("100.00"), recorded_by=org.accountant.id))
            await db.commit()
        resp = await client.delete(f"/api/clients/{org.client7.id}", headers=make_auth_header(org.manager))
        assert resp.status_code == 400
        assert _codes(resp) == "OUTSTANDING_PAYMENTS_EXIST"

    async def test_permanent_delete_ignores_unpaid_payments(self, client, org, session_factory):
        async with session_factory() as db:
            db.add(Payment(client_id=org.client7.id, amount=Decimal("100.00"), recorded_by=org.accountant.id))
            await db.commit()

        resp = await client.delete(
            f"/api/clients/{org.client7.id}?permanent=true", headers=make_auth_header(org.owner),
        )
        assert resp.status_code == 200
        async with session_factory() as db:
            assert await db.get(Client, org.client7.id) is None
            remaining = (await db.execute(
                select(Payment).where(Payment.client_id == org.client7.id)
            )).scalars().all()
        assert remaining == []

    async def test_soft_delete_hides_client(self, client, org):
        resp = await client.delete(f"/api/clients/{org.client5.id}", headers=make_auth_header(org.manager))
        assert resp.status_code == 200
        gone = await client.get(f"/api/clients/{org.client5.id}", headers=make_auth_header(org.employee5))
        assert gone.status_code == 404

    async def test_owner_permanent_delete(self, client, org, session_factory):
        resp = await client.delete(
            f"/api/clients/{org.client7.id}?permanent=true", headers=make_auth_header(org.owner),
        )
        assert resp.status_code == 200
        async with session_factory() as db:
            assert await db.get(Client, org.client7.id) is None
            task = await db.get(Task, org.task7.id)
            assert task.client_id is None


# ── Tasks ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestTaskRoutes:
    async def test_owner_reads_foreign_task(self, client, org):
        resp = await client.get(f"/api/tasks/{org.task7.id}", headers=make_auth_header(org.owner))
        assert resp.status_code == 200

    async def test_team_leader_department_scenarios(self, client, org):
        same = await client.get(f"/api/tasks/{org.task5.id}", headers=make_auth_header(org.leader5))
        other = await client.get(f"/api/tasks/{org.task7.id}", headers=make_auth_header(org.leader5))
        unassigned = await client.get(f"/api/tasks/{org.unassigned_task.id}", headers=make_auth_header(org.leader5))
        assert same.status_code == 200
        assert other.status_code == 403
        assert _codes(other) == "TASK_ACCESS_DENIED"
        assert unassigned.status_code == 403

    async def test_team_leader_without_profile(self, client, org):
        resp = await client.get(f"/api/tasks/{org.task5.id}", headers=make_auth_header(org.orphan_leader))
        assert resp.status_code == 403
        assert _codes(resp) == "TASK_ACCESS_DENIED"

    async def test_missing_task(self, client, org):
        resp = await client.get("/api/tasks/9999", headers=make_auth_header(org.employee5))
        assert resp.status_code == 404
        assert _codes(resp) == "TASK_NOT_FOUND"

    async def test_list_scoping_for_employee(self, client, org):
        resp = await client.get("/api/tasks", headers=make_auth_header(org.employee5))
        assert [t["id"] for t in resp.json()["items"]] == [org.task5.id]

    async def test_accountant_sees_only_own_tasks(self, client, org, session_factory):
        headers = make_auth_header(org.accountant)
        before = await client.get("/api/tasks", headers=headers)
        assert before.json()["total"] == 0

        async with session_factory() as db:
            assigned = Task(title="Reconcile invoices", assigned_to=org.emp_accountant.id, created_by=org.manager.id)
            created = Task(title="Chase payment", assigned_to=org.emp_employee7.id, created_by=org.accountant.id)
            db.add_all([assigned, created])
            await db.commit()

        after = await client.get("/api/tasks", headers=headers)
        assert {t["id"] for t in after.json()["items"]} == {assigned.id, created.id}
        for task_id in (assigned.id, created.id):
            detail = await client.get(f"/api/tasks/{task_id}", headers=headers)
            assert detail.status_code == 200

    async def test_list_sort_whitelist(self, client, org):
        resp = await client.get("/api/tasks?sort=title:asc", headers=make_auth_header(org.manager))
        titles = [t["title"] for t in resp.json()["items"]]
        assert titles == sorted(titles)
        bogus = await client.get("/api/tasks?sort=password_hash:asc", headers=make_auth_header(org.manager))
        assert bogus.status_code == 200

    async def test_my_tasks_requires_profile(self, client, org):
        resp = await client.get("/api/tasks/my-tasks", headers=make_auth_header(org.orphan_leader))
        assert resp.status_code == 404
        mine = await client.get("/api/tasks/my-tasks", headers=make_auth_header(org.employee7))
        assert [t["id"] for t in mine.json()] == [org.task7.id]

    async def test_create_notifies_assignee(self, client, org):
        resp = await client.post("/api/tasks", headers=make_auth_header(org.leader5), json={
            "title": "Write copy", "assigned_to": org.emp_employee5b.id, "due_date": "2020-01-01",
        })
        assert resp.status_code == 201
        assert resp.json()["is_overdue"] is True

        inbox = await client.get("/api/notifications", headers=make_auth_header(org.employee5b))
        assert inbox.json()["unread_count"] == 1
        assert inbox.json()["items"][0]["data"]["task_id"] == resp.json()["id"]

    async def test_create_needs_permission(self, client, org):
        resp = await client.post("/api/tasks", headers=make_auth_header(org.employee5), json={"title": "Nope"})
        assert resp.status_code == 403
        assert _codes(resp) == "PERMISSION_DENIED"

    async def test_status_transition(self, client, org):
        done = await client.put(
            f"/api/tasks/{org.task5.id}/status", json={"status": "completed"},
            headers=make_auth_header(org.employee5),
        )
        assert done.status_code == 200
        assert done.json()["completed_at"] is not None
        assert done.json()["is_overdue"] is False

        reopened = await client.put(
            f"/api/tasks/{org.task5.id}/status", json={"status": "in_progress"},
            headers=make_auth_header(org.employee5),
        )
        assert reopened.json()["completed_at"] is None

    async def test_invalid_status(self, client, org):
        resp = await client.put(
            f"/api/tasks/{org.task5.id}/status", json={"status": "archived"},
            headers=make_auth_header(org.employee5),
        )
        assert resp.status_code == 422

    async def test_comment_requires_access(self, client, org):
        ok = await client.post(
            f"/api/tasks/{org.task5.id}/comments", json={"content": "On it"},
            headers=make_auth_header(org.employee5),
        )
        denied = await client.post(
            f"/api/tasks/{org.task5.id}/comments", json={"content": "Me too"},
            headers=make_auth_header(org.employee7),
        )
        assert ok.status_code == 201
        assert denied.status_code == 403

    @pytest.mark.parametrize("status", ["on_hold", "under_review", "delayed", "cancelled"])
    async def test_extended_statuses(self, client, org, status):
        resp = await client.put(
            f"/api/tasks/{org.task5.id}/status", json={"status": status},
            headers=make_auth_header(org.employee5),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == status

    async def test_status_change_sets_progress_and_history(self, client, org):
        headers = make_auth_header(org.employee5)
        resp = await client.put(
            f"/api/tasks/{org.task5.id}/status",
            json={"status": "in_progress", "progress_percentage": 40, "note": "Drafts ready"},
            headers=headers,
        )
        assert resp.status_code == 200
        assert resp.json()["progress_percentage"] == 40

        detail = (await client.get(f"/api/tasks/{org.task5.id}", headers=headers)).json()
        entry = detail["history"][0]
        assert entry["action_type"] == "STATUS_CHANGE"
        assert entry["performed_by"] == org.employee5.id
        assert entry["old_values"] == {"status": "new"}
        assert entry["new_values"]["progress_percentage"] == 40

    async def test_progress_out_of_range(self, client, org):
        resp = await client.put(
            f"/api/tasks/{org.task5.id}/status", json={"status": "in_progress", "progress_percentage": 120},
            headers=make_auth_header(org.employee5),
        )
        assert resp.status_code == 422

    async def test_create_defaults_and_history(self, client, org):
        headers = make_auth_header(org.leader5)
        resp = await client.post("/api/tasks", headers=headers, json={
            "title": "Design banners",
            "category_id": org.task_cat5.id,
            "assigned_to": org.emp_employee5.id,
            "start_date": "2030-01-02",
            "expected_duration": 6,
        })
        assert resp.status_code == 201
        task = resp.json()
        assert task["status"] == "new"
        assert task["progress_percentage"] == 0
        assert task["category_name"] == "Design"
        assert task["start_date"] == "2030-01-02"
        assert task["expected_duration"] == 6

        detail = (await client.get(f"/api/tasks/{task['id']}", headers=headers)).json()
        assert [h["action_type"] for h in detail["history"]] == ["CREATE"]

    async def test_create_rejects_inactive_category(self, client, org):
        resp = await client.post("/api/tasks", headers=make_auth_header(org.leader5), json={
            "title": "Old work", "category_id": org.retired_cat.id,
        })
        assert resp.status_code == 400
        assert _codes(resp) == "INVALID_CATEGORY"

    async def test_update_records_old_and_new_values(self, client, org):
        headers = make_auth_header(org.leader5)
        resp = await client.put(
            f"/api/tasks/{org.task5.id}", json={"title": "Relaunch campaign", "due_date": "2030-05-01"},
            headers=headers,
        )
        assert resp.status_code == 200
        assert resp.json()["title"] == "Relaunch campaign"

        entry = (await client.get(f"/api/tasks/{org.task5.id}", headers=headers)).json()["history"][0]
        assert entry["action_type"] == "UPDATE"
        assert entry["old_values"] == {"title": "Launch campaign", "due_date": None}
        assert entry["new_values"] == {"title": "Relaunch campaign", "due_date": "2030-05-01"}

    async def test_update_rejects_null_title(self, client, org):
        resp = await client.put(
            f"/api/tasks/{org.task5.id}", json={"title": None}, headers=make_auth_header(org.leader5),
        )
        assert resp.status_code == 422

    async def test_employee_cannot_assign_upwards(self, client, org):
        headers = make_auth_header(org.employee5)
        upward = await client.put(
            f"/api/tasks/{org.task5.id}", json={"assigned_to": org.emp_leader5.id}, headers=headers,
        )
        assert upward.status_code == 403
        assert _codes(upward) == "ASSIGNMENT_NOT_ALLOWED"

        sideways = await client.put(
            f"/api/tasks/{org.task5.id}", json={"assigned_to": org.emp_employee5b.id}, headers=headers,
        )
        assert sideways.status_code == 200
        assert sideways.json()["assigned_to"] == org.emp_employee5b.id

    async def test_team_leader_may_assign_to_leader(self, client, org):
        resp = await client.put(
            f"/api/tasks/{org.task5.id}", json={"assigned_to": org.emp_leader5.id},
            headers=make_auth_header(org.leader5),
        )
        assert resp.status_code == 200

    async def test_categories_listing(self, client, org):
        resp = await client.get("/api/tasks/categories/all", headers=make_auth_header(org.employee7))
        assert resp.status_code == 200
        categories = resp.json()
        assert [c["name_en"] for c in categories] == ["Design"]
        assert categories[0]["specialization_name_en"] == "Digital Marketing"

    async def test_create_category_requires_manager(self, client, org):
        body = {"name_ar": "برمجة", "name_en": "Coding", "specialization_id": org.spec7.id}
        denied = await client.post("/api/tasks/categories", json=body, headers=make_auth_header(org.leader7))
        assert denied.status_code == 403

        created = await client.post("/api/tasks/categories", json=body, headers=make_auth_header(org.manager))
        assert created.status_code == 201
        assert created.json()["specialization_name_en"] == "Web Development"

    async def test_list_filters_by_category(self, client, org):
        headers = make_auth_header(org.manager)
        made = await client.post("/api/tasks", headers=headers, json={
            "title": "Logo refresh", "category_id": org.task_cat5.id,
        })
        resp = await client.get(f"/api/tasks?category_id={org.task_cat5.id}", headers=headers)
        assert [t["id"] for t in resp.json()["items"]] == [made.json()["id"]]


# ── Financial ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestFinancialRoutes:
    @pytest.mark.parametrize("who", ["leader5", "employee5"])
    async def test_denied_roles(self, client, org, who):
        resp = await client.get("/api/financial/payments", headers=make_auth_header(getattr(org, who)))
        assert resp.status_code == 403
        assert _codes(resp) == "FINANCIAL_ACCESS_DENIED"

    @pytest.mark.parametrize("who", ["owner", "manager", "accountant"])
    async def test_allowed_roles(self, client, org, who):
        resp = await client.get("/api/financial/payments", headers=make_auth_header(getattr(org, who)))
        assert resp.status_code == 200

    async def test_record_and_settle(self, client, org):
        headers = make_auth_header(org.accountant)
        created = await client.post("/api/financial/payments", headers=headers, json={
            "client_id": org.client5.id, "amount": "250.50",
        })
        assert created.status_code == 201
        payment = created.json()
        assert payment["status"] == "pending"
        assert payment["amount"] == 250.5

        paid = await client.put(f"/api/financial/payments/{payment['id']}/paid", headers=headers)
        assert paid.status_code == 200
        assert paid.json()["status"] == "paid"

        again = await client.put(f"/api/financial/payments/{payment['id']}/paid", headers=headers)
        assert again.status_code == 409


# ── Users ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestUserRoutes:
    async def test_list_requires_level_two(self, client, org):
        denied = await client.get("/api/users", headers=make_auth_header(org.leader5))
        assert denied.status_code == 403
        ok = await client.get("/api/users", headers=make_auth_header(org.manager))
        assert ok.status_code == 200
        assert ok.json()["total"] == 9

    async def test_get_user_uses_employee_check(self, client, org):
        same = await client.get(f"/api/users/{org.employee5.id}", headers=make_auth_header(org.leader5))
        other = await client.get(f"/api/users/{org.employee7.id}", headers=make_auth_header(org.leader5))
        no_profile = await client.get(f"/api/users/{org.owner.id}", headers=make_auth_header(org.leader5))
        assert same.status_code == 200
        assert other.status_code == 403
        assert _codes(other) == "DEPARTMENT_ACCESS_DENIED"
        assert no_profile.status_code == 403

    async def test_create_with_profile(self, client, org):
        resp = await client.post("/api/users", headers=make_auth_header(org.manager), json={
            "email": "newhire@acme.com",
            "role_level": 4,
            "employee": {"employee_number": "E-005-9", "full_name_ar": "موظف جديد", "department_id": 5},
        })
        assert resp.status_code == 201
        data = resp.json()
        assert "temp_password" in data
        assert data["employee"]["department_id"] == 5

    async def test_duplicate_email(self, client, org):
        resp = await client.post("/api/users", headers=make_auth_header(org.manager), json={
            "email": "employee5@acme.com", "password": "whatever1",
        })
        assert resp.status_code == 409

    async def test_owner_cannot_be_deleted(self, client, org):
        resp = await client.delete(f"/api/users/{org.owner.id}", headers=make_auth_header(org.owner))
        assert resp.status_code == 400
        assert _codes(resp) == "CANNOT_DELETE_OWNER"

    async def test_delete_needs_users_delete(self, client, org, session_factory):
        denied = await client.delete(f"/api/users/{org.employee7.id}", headers=make_auth_header(org.manager))
        assert denied.status_code == 403
        assert _codes(denied) == "PERMISSION_DENIED"

        ok = await client.delete(f"/api/users/{org.employee7.id}", headers=make_auth_header(org.owner))
        assert ok.status_code == 200
        async with session_factory() as db:
            user = await db.get(User, org.employee7.id)
            assert user.deleted_at is not None and user.is_active is False


# ── Misc ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestMisc:
    async def test_roles_listing(self, client, org):
        resp = await client.get("/api/roles", headers=make_auth_header(org.employee5))
        assert resp.status_code == 200
        roles = {r["level"]: r for r in resp.json()}
        assert roles[5]["financial_access"] is True
        assert roles[3]["financial_access"] is False
        assert roles[2]["permissions"]["users"]["delete"] is False

    async def test_departments_listing(self, client, org):
        resp = await client.get("/api/departments", headers=make_auth_header(org.employee5))
        assert [d["id"] for d in resp.json()] == [5, 7]
        assert resp.json()[0]["specializations"][0]["name_en"] == "Digital Marketing"

    async def test_audit_is_owner_only(self, client, org):
        denied = await client.get("/api/audit", headers=make_auth_header(org.manager))
        assert denied.status_code == 403
        ok = await client.get("/api/audit", headers=make_auth_header(org.owner))
        assert ok.status_code == 200

    async def test_request_id_header(self, client, org):
        resp = await client.get("/api/roles", headers=make_auth_header(org.owner))
        assert resp.headers.get("X-Request-ID")
        assert resp.headers.get("X-Content-Type-Options") == "nosniff"
