import uuid

from conftest import make_clinic

MONDAY = "2030-01-07"


def tenant_url(clinic, path=""):
    return f"/api/v1/tenants/{clinic.tenant.id}{path}"


def booking_payload(clinic, start="2030-01-07T10:00:00", **extra):
    payload = {
        "service_id": str(clinic.service.id),
        "professional_id": str(clinic.professional.id),
        "client_id": str(clinic.client.id),
        "start": start,
    }
    payload.update(extra)
    return payload


def test_lists_services(api_client, clinic):
    response = api_client.get(tenant_url(clinic, "/services"))

    assert response.status_code == 200
    services = response.json()["services"]
    assert [item["name"] for item in services] == ["Consulta"]
    assert services[0]["professional_ids"] == [str(clinic.professional.id)]


def test_availability_endpoint(api_client, clinic):
    response = api_client.get(
        tenant_url(clinic, "/availability"),
        params={"service_id": str(clinic.service.id), "date": MONDAY},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["timezone"] == "America/Sao_Paulo"
    assert body["reason"] is None
    assert len(body["results"]) == 16
    assert body["results"][0]["start"] == "2030-01-07T09:00:00-03:00"
    assert all(slot["available"] for slot in body["results"])


def test_availability_for_unknown_tenant(api_client):
    response = api_client.get(
        f"/api/v1/tenants/{uuid.uuid4()}/availability",
        params={"service_id": str(uuid.uuid4()), "date": MONDAY},
    )

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_book_then_slot_is_taken(api_client, clinic):
    created = api_client.post(tenant_url(clinic, "/appointments"), json=booking_payload(clinic))
    again = api_client.post(tenant_url(clinic, "/appointments"), json=booking_payload(clinic))

    assert created.status_code == 201
    appointment = created.json()["appointment"]
    assert appointment["status"] == "SCHEDULED"
    assert appointment["start_local"] == "2030-01-07T10:00:00-03:00"
    assert again.status_code == 409
    assert again.json()["code"] == "slot_taken"


def test_booking_off_grid_start_is_bad_request(api_client, clinic):
    response = api_client.post(
        tenant_url(clinic, "/appointments"),
        json=booking_payload(clinic, start="2030-01-07T10:10:00"),
    )

    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"


def test_recurring_booking_reports_partial_outcome(api_client, clinic):
    api_client.post(
        tenant_url(clinic, "/appointments"),
        json=booking_payload(clinic, start="2030-01-14T10:00:00"),
    )

    response = api_client.post(
        tenant_url(clinic, "/appointments"),
        json=booking_payload(
            clinic, recurrence={"frequency": "WEEKLY", "count": 3, "policy": "BEST_EFFORT"}
        ),
    )

    assert response.status_code == 207
    recurrence = response.json()["recurrence"]
    assert recurrence["booked"] == 2
    assert [item["status"] for item in recurrence["occurrences"]] == [
        "booked",
        "failed",
        "booked",
    ]
    assert recurrence["occurrences"][1]["error"]["code"] == "slot_taken"


def test_recurring_all_or_nothing_conflict(api_client, clinic):
    api_client.post(
        tenant_url(clinic, "/appointments"),
        json=booking_payload(clinic, start="2030-01-14T10:00:00"),
    )

    response = api_client.post(
        tenant_url(clinic, "/appointments"),
        json=booking_payload(
            clinic, recurrence={"frequency": "WEEKLY", "count": 3, "policy": "ALL_OR_NOTHING"}
        ),
    )
    listed = api_client.get(tenant_url(clinic, "/appointments"))

    assert response.status_code == 409
    assert response.json()["code"] == "partial_recurrence_failure"
    assert len(listed.json()["appointments"]) == 1


def test_recurrence_count_out_of_range(api_client, clinic):
    response = api_client.post(
        tenant_url(clinic, "/appointments"),
        json=booking_payload(clinic, recurrence={"frequency": "WEEKLY", "count": 60}),
    )

    assert response.status_code == 400


def test_recurrence_preview(api_client, clinic):
    response = api_client.post(
        tenant_url(clinic, "/recurrences/preview"),
        json={"start": "2030-01-31", "frequency": "MONTHLY", "count": 3},
    )

    assert response.status_code == 200
    assert response.json()["dates"] == ["2030-01-31", "2030-02-28", "2030-03-31"]
    assert response.json()["end_date"] == "2030-03-31"


def test_lifecycle_endpoints_and_activity(api_client, clinic):
    created = api_client.post(tenant_url(clinic, "/appointments"), json=booking_payload(clinic))
    appointment_id = created.json()["appointment"]["id"]
    base = tenant_url(clinic, f"/appointments/{appointment_id}")

    confirmed = api_client.post(f"{base}/confirm", json={"actor": "recepcao"})
    confirmed_twice = api_client.post(f"{base}/confirm")
    cancelled = api_client.post(f"{base}/cancel", json={"reason": "imprevisto"})
    activity = api_client.get(f"{base}/activity")

    assert confirmed.status_code == 200
    assert confirmed.json()["appointment"]["status"] == "CONFIRMED"
    assert confirmed_twice.status_code == 409
    assert confirmed_twice.json()["code"] == "invalid_transition"
    assert cancelled.json()["appointment"]["cancel_reason"] == "imprevisto"
    assert [entry["action"] for entry in activity.json()["activity"]] == [
        "created",
        "confirmed",
        "cancelled",
    ]


def test_appointments_are_listed_per_tenant(api_client, db, clinic):
    other = make_clinic(db, "Outra Clínica")
    api_client.post(tenant_url(clinic, "/appointments"), json=booking_payload(clinic))

    mine = api_client.get(tenant_url(clinic, "/appointments"), params={"date": MONDAY})
    theirs = api_client.get(tenant_url(other, "/appointments"))

    assert len(mine.json()["appointments"]) == 1
    assert theirs.json()["appointments"] == []


def test_unknown_action_is_rejected(api_client, clinic):
    response = api_client.post(tenant_url(clinic, f"/appointments/{uuid.uuid4()}/archive"))

    assert response.status_code == 422
