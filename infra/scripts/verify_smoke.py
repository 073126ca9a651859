from __future__ import annotations

import asyncio
import os
import time
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import httpx


def _assert_status(response: httpx.Response, expected: int | tuple[int, ...]) -> None:
    expected_codes = (expected,) if isinstance(expected, int) else expected
    if response.status_code not in expected_codes:
        raise RuntimeError(
            f"{response.request.method} {response.request.url} expected {expected_codes}, "
            f"got {response.status_code}: {response.text}"
        )


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def _wait_ok(client: httpx.AsyncClient, path: str, timeout_seconds: float = 60.0) -> None:
    deadline = time.monotonic() + timeout_seconds
    last_status = "n/a"
    last_body = ""
    while time.monotonic() < deadline:
        try:
            response = await client.get(path)
            if response.status_code == 200:
                return
            last_status = str(response.status_code)
            last_body = response.text
        except httpx.HTTPError as exc:
            last_status = "http_error"
            last_body = str(exc)
        await asyncio.sleep(1.0)
    raise RuntimeError(f"timeout waiting for {path}, last_status={last_status}, detail={last_body}")


async def _employee_token(client: httpx.AsyncClient, employee_id: str, password: str) -> str:
    response = await client.post(
        "/api/identity/employee-login",
        json={"employee_id": employee_id, "password": password},
    )
    _assert_status(response, 200)
    return response.json()["access_token"]


async def _run() -> None:
    base_url = os.getenv("APP_BASE_URL", "http://app:8000").rstrip("/")
    username = os.getenv("SMOKE_ADMIN_USERNAME", "smoke-admin")
    password = os.getenv("SMOKE_ADMIN_PASSWORD", "smoke-pass")
    run_id = uuid4().int % 10**8
    department_id = 900_000 + run_id % 100_000
    sender = f"smoke-a-{run_id}"
    receiver = f"smoke-b-{run_id}"
    phone_number = f"139{run_id:08d}"

    timeout = httpx.Timeout(20.0)
    async with httpx.AsyncClient(base_url=base_url, timeout=timeout) as client:
        await _wait_ok(client, "/healthz")
        await _wait_ok(client, "/readyz")

        bootstrap_resp = await client.post(
            "/api/identity/bootstrap-admin",
            json={"username": username, "password": password},
        )
        _assert_status(bootstrap_resp, (201, 409))

        login_resp = await client.post("/api/identity/login", json={"username": username, "password": password})
        _assert_status(login_resp, 200)
        admin = _auth_headers(login_resp.json()["access_token"])

        dept_resp = await client.put(
            "/api/directory/departments",
            json={"id": department_id, "name": f"smoke-{run_id}"},
            headers=admin,
        )
        _assert_status(dept_resp, 200)
        for employee_id in (sender, receiver):
            emp_resp = await client.put(
                "/api/directory/employees",
                json={"id": employee_id, "name": employee_id, "department_id": department_id, "password": "pw"},
                headers=admin,
            )
            _assert_status(emp_resp, 200)

        today = datetime.now(UTC).date().isoformat()
        register_resp = await client.post(
            "/api/phones",
            json={
                "phone_number": phone_number,
                "applicant_employee_id": sender,
                "application_date": today,
                "vendor": "smoke-vendor",
            },
            headers=admin,
        )
        _assert_status(register_resp, 201)
        assign_resp = await client.post(
            f"/api/phones/{phone_number}/assign",
            json={"employee_id": sender, "purpose": "smoke", "assignment_date": today},
            headers=admin,
        )
        _assert_status(assign_resp, 200)

        sender_auth = _auth_headers(await _employee_token(client, sender, "pw"))
        receiver_auth = _auth_headers(await _employee_token(client, receiver, "pw"))
        transfer_resp = await client.post(
            f"/api/transfers/phones/{phone_number}",
            json={"to_employee_id": receiver},
            headers=sender_auth,
        )
        _assert_status(transfer_resp, 201)
        accept_resp = await client.post(
            f"/api/transfers/{transfer_resp.json()['id']}/accept",
            headers=receiver_auth,
        )
        _assert_status(accept_resp, 200)

        due_at = (datetime.now(UTC) + timedelta(days=7)).isoformat()
        task_resp = await client.post(
            "/api/inventory/tasks",
            json={
                "name": f"smoke-{run_id}",
                "due_at": due_at,
                "scope_type": "department_ids",
                "scope_values": [str(department_id)],
            },
            headers=admin,
        )
        _assert_status(task_resp, 201)
        task_id = task_resp.json()["id"]
        items_resp = await client.get(f"/api/employee/inventory/tasks/{task_id}/items", headers=receiver_auth)
        _assert_status(items_resp, 200)
        for item in items_resp.json():
            action_resp = await client.post(
                f"/api/employee/inventory/tasks/{task_id}/items/{item['id']}/action",
                json={"action": "confirm"},
                headers=receiver_auth,
            )
            _assert_status(action_resp, 200)
        submit_resp = await client.post(f"/api/employee/inventory/tasks/{task_id}/submit", headers=receiver_auth)
        _assert_status(submit_resp, 200)

        final_resp = await client.get(f"/api/inventory/tasks/{task_id}", headers=admin)
        _assert_status(final_resp, 200)
        if final_resp.json()["status"] != "completed":
            raise RuntimeError(f"task not completed: {final_resp.text}")

    print(f"smoke ok: phone={phone_number} task={task_id}")


def main() -> None:
    asyncio.run(_run())


if __name__ == "__main__":
    main()
