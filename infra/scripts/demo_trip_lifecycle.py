from __future__ import annotations

import asyncio
import os
import time
from typing import Any
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


async def _token(client: httpx.AsyncClient, user_id: str) -> str:
    response = await client.post("/api/auth/dev-token", json={"user_id": user_id})
    _assert_status(response, 200)
    return response.json()["access_token"]


async def _post(client: httpx.AsyncClient, path: str, token: str, body: dict[str, Any], expected: int) -> dict[str, Any]:
    response = await client.post(path, json=body, headers=_auth_headers(token))
    _assert_status(response, expected)
    return response.json()


async def _run() -> None:
    base_url = os.getenv("APP_BASE_URL", "http://app:8000").rstrip("/")
    superadmin_id = os.getenv("SUPERADMIN_USER_ID")
    if not superadmin_id:
        raise RuntimeError("SUPERADMIN_USER_ID is required; run python -m ambulink.infra.bootstrap first")
    run_id = uuid4().hex[:6].upper()

    async with httpx.AsyncClient(base_url=base_url, timeout=httpx.Timeout(20.0)) as client:
        await _wait_ok(client, "/healthz")
        await _wait_ok(client, "/readyz")
        root = await _token(client, superadmin_id)

        hospital = await _post(
            client,
            "/api/organizations",
            root,
            {"name": f"Demo Hospital {run_id}", "code": f"HOSP-{run_id}", "type": "hospital"},
            201,
        )
        fleet = await _post(
            client,
            "/api/organizations",
            root,
            {"name": f"Demo Fleet {run_id}", "code": f"FLEET-{run_id}", "type": "fleet"},
            201,
        )

        async def staff(organization: dict[str, Any], role: str) -> str:
            user = await _post(
                client,
                "/api/users",
                root,
                {
                    "organization_id": organization["id"],
                    "email": f"{role}-{run_id}@demo.test".lower(),
                    "first_name": role.split("_")[-1].title(),
                    "last_name": run_id,
                    "role": role,
                },
                201,
            )
            return await _token(client, user["id"])

        hospital_admin = await staff(hospital, "hospital_admin")
        doctor = await staff(hospital, "hospital_doctor")
        fleet_admin = await staff(fleet, "fleet_admin")

        vehicle = await _post(
            client,
            "/api/vehicles",
            fleet_admin,
            {"code": f"AMB-{run_id}", "registration_number": f"REG-{run_id}", "vehicle_type": "als"},
            201,
        )
        await _post(client, f"/api/vehicles/{vehicle['id']}/approve", root, {}, 200)

        request = await _post(
            client,
            "/api/partnerships/requests",
            hospital_admin,
            {"fleet_id": fleet["id"], "message": "demo partnership"},
            201,
        )
        await _post(client, f"/api/partnerships/requests/{request['id']}/accept", fleet_admin, {}, 200)

        patient = await _post(
            client,
            "/api/patients",
            doctor,
            {"code": f"PAT-{run_id}", "first_name": "Demo", "last_name": "Patient", "age": 40},
            201,
        )
        trip = await _post(
            client,
            "/api/trips",
            doctor,
            {
                "patient_id": patient["id"],
                "vehicle_id": vehicle["id"],
                "destination_organization_id": hospital["id"],
                "pickup_location": "demo pickup",
                "chief_complaint": "demo",
            },
            201,
        )
        await _post(client, f"/api/trips/{trip['id']}/transit", doctor, {}, 200)
        await _post(
            client,
            f"/api/trips/{trip['id']}/data",
            doctor,
            {"data_type": "note", "content": {"text": "vitals stable"}},
            201,
        )
        finished = await _post(client, f"/api/trips/{trip['id']}/offboard", doctor, {"treatment_notes": "ok"}, 200)

    snapshot = finished["offboard_snapshot"]
    print(f"trip {finished['code']} {finished['status']} in {snapshot['duration_seconds']}s")
    print(f"entries captured: {len(snapshot['data_entries'])}")


def main() -> None:
    asyncio.run(_run())


if __name__ == "__main__":
    main()
