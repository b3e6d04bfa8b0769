"""API tests for commitment submission, reveal and listing."""

import pytest

pytestmark = pytest.mark.integration


def test_submit_commitment_returns_sequence_only(create_event, commit):
    create_event()

    response = commit("user_alice", "3", "0xa")

    assert response.status_code == 201
    body = response.json()
    assert set(body) == {"commitmentId", "sequenceNumber"}
    assert body["sequenceNumber"] == 1


def test_sequence_numbers_increase_per_event(create_event, commit):
    create_event()
    create_event(event_id="evt-other")

    assert commit("user_alice", "1", "0x1").json()["sequenceNumber"] == 1
    assert commit("user_bob", "1", "0x2").json()["sequenceNumber"] == 2
    assert commit("user_bob", "1", "0x3", event_id="evt-other").json()["sequenceNumber"] == 1


def test_unknown_event_is_404(api_client, commit):
    response = commit("user_alice", "3", "0xa", event_id="nope")

    assert response.status_code == 404
    assert response.json()["code"] == "unknown_event"


def test_duplicate_hash_is_409(create_event, commit):
    create_event()
    commit("user_alice", "3", "0xa")

    response = commit("user_bob", "4", "0xa")

    assert response.status_code == 409
    assert response.json()["code"] == "duplicate_commitment"


@pytest.mark.parametrize("amount", ["0", "-1", "abc"])
def test_bad_amount_is_422(create_event, commit, amount):
    create_event()

    response = commit("user_alice", amount, "0xa")

    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"


def test_rejected_proof_is_422_and_not_recorded(api_client, create_event, commit):
    create_event()
    api_client.app.state.proof_verifier.valid = False

    response = commit("user_alice", "3", "0xa")

    assert response.status_code == 422
    assert response.json()["code"] == "invalid_proof"
    assert api_client.get("/api/events/evt-api/totals").json()["commitmentCount"] == 0


def test_reveal_own_commitment(api_client, create_event, commit, auth_as):
    create_event()
    commitment_id = commit("user_alice", "3.25", "0xa").json()["commitmentId"]

    first = api_client.post(f"/api/commitments/{commitment_id}/reveal")
    second = api_client.post(f"/api/commitments/{commitment_id}/reveal")

    assert first.status_code == 200
    assert first.json() == {"commitmentId": commitment_id, "revealedAmount": "3.25"}
    assert second.json() == first.json()


def test_reveal_someone_elses_commitment_is_403(api_client, create_event, commit, auth_as):
    create_event()
    commitment_id = commit("user_alice", "3", "0xa").json()["commitmentId"]
    auth_as("user_bob")

    response = api_client.post(f"/api/commitments/{commitment_id}/reveal")

    assert response.status_code == 403
    assert response.json()["code"] == "not_owner"


def test_reveal_unknown_commitment_is_404(api_client):
    response = api_client.post("/api/commitments/not-a-uuid/reveal")

    assert response.status_code == 404


def test_list_mine_shows_only_own_commitments(api_client, create_event, commit, auth_as):
    create_event()
    commit("user_alice", "3", "0xa")
    commit("user_bob", "4", "0xb")
    auth_as("user_alice")

    response = api_client.get("/api/commitments/mine")

    assert response.status_code == 200
    [mine] = response.json()
    assert mine["commitmentHash"] == "0xa"
    assert mine["revealed"] is False
    assert mine["revealedAmount"] is None
    assert "amount" not in mine
    assert mine["recordedAt"].endswith(("Z", "+00:00"))
