"""DirectoryClient: batching, parsing, retry, circuit breaker. HTTP is mocked."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from pkm_portal.integrations.directory import (
    DependencyError,
    DirectoryClient,
    Missing,
    OrgUnitRecord,
    Resolved,
    StaffRecord,
    StudentRecord,
)


def _response(status=200, payload=None):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = payload if payload is not None else []
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"HTTP {status}", response=resp)
    else:
        resp.raise_for_status.return_value = None
    return resp


def _client(session, record_cls=StudentRecord, **kwargs):
    kwargs.setdefault("backoff", ())
    return DirectoryClient(
        "student", "https://dir.example/students/", record_cls,
        api_key="secret", session=session, **kwargs,
    )


class TestLookup:
    def test_one_batched_request(self):
        session = MagicMock()
        session.get.return_value = _response(payload=[
            {"nim": "2021001", "nama": "Ani", "id_prodi": 7},
            {"nim": "2021002", "nama": "Budi"},
        ])
        result = _client(session).lookup(["2021002", "2021001", "2021003"])

        assert session.get.call_count == 1
        args, kwargs = session.get.call_args
        assert args[0] == "https://dir.example/students"
        assert kwargs["params"] == {"ids": "2021001,2021002,2021003"}
        assert kwargs["headers"]["Authorization"] == "Bearer secret"
        assert kwargs["timeout"] == 5.0

        assert result.ok
        assert result.records["2021001"].name == "Ani"
        assert result.records["2021001"].org_unit_key == "7"
        assert result.missing == {"2021003"}
        assert isinstance(result.resolution("2021001"), Resolved)
        assert isinstance(result.resolution("2021003"), Missing)

    def test_data_envelope_and_unrequested_rows(self):
        session = MagicMock()
        session.get.return_value = _response(payload={"data": [
            {"id": "198001", "nama": "Dr. A", "nip": "1980"},
            {"id": "999999", "nama": "Neighbour"},
        ]})
        result = _client(session, StaffRecord).lookup({"198001"})
        assert set(result.records) == {"198001"}
        assert result.records["198001"].employee_number == "1980"

    def test_org_unit_payload(self):
        unit = OrgUnitRecord.from_payload({"code": "P01", "nama": "Informatika", "id_fakultas": 3})
        assert unit.key == "P01"
        assert unit.parent_key == "3"

    def test_empty_keys_make_no_call(self):
        session = MagicMock()
        result = _client(session).lookup([None, ""])
        assert result.ok
        assert result.records == {}
        session.get.assert_not_called()

    def test_unconfigured_url_is_an_error(self):
        client = DirectoryClient("staff", "", StaffRecord, session=MagicMock())
        result = client.lookup(["x"])
        assert not result.ok
        assert "not configured" in result.error
        assert result.missing == set()


class TestFailures:
    def test_timeout_is_retried_then_reported(self):
        session = MagicMock()
        session.get.side_effect = requests.Timeout("slow")
        result = _client(session, retry_max=1).lookup(["2021001"])
        assert session.get.call_count == 2
        assert not result.ok
        assert "Timeout" in result.error
        assert isinstance(result.resolution("2021001"), DependencyError)

    def test_server_error_then_success(self):
        session = MagicMock()
        session.get.side_effect = [_response(503), _response(payload=[{"nim": "2021001"}])]
        result = _client(session, retry_max=1).lookup(["2021001"])
        assert result.ok
        assert "2021001" in result.records

    def test_client_error_is_not_retried(self):
        session = MagicMock()
        session.get.return_value = _response(401)
        result = _client(session, retry_max=3).lookup(["2021001"])
        assert session.get.call_count == 1
        assert not result.ok

    def test_invalid_json_is_an_error(self):
        session = MagicMock()
        resp = _response()
        resp.json.side_effect = ValueError("not json")
        session.get.return_value = resp
        result = _client(session).lookup(["2021001"])
        assert not result.ok

    @pytest.mark.parametrize("payload", [{"data": 5}, 5, "2021001", {"data": {"nim": "2021001"}}])
    def test_unexpected_payload_shape_is_an_error(self, payload):
        session = MagicMock()
        session.get.return_value = _response(payload=payload)
        client = _client(session)
        result = client.lookup(["2021001"])
        assert not result.ok
        assert "unexpected payload shape" in result.error
        assert result.records == {}
        assert len(client._failures) == 1

    def test_null_data_envelope_means_no_records(self):
        session = MagicMock()
        session.get.return_value = _response(payload={"data": None})
        result = _client(session).lookup(["2021001"])
        assert result.ok
        assert result.missing == {"2021001"}

    def test_circuit_opens_after_repeated_failures(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("down")
        client = _client(session, retry_max=0)
        for _ in range(5):
            client.lookup(["2021001"])
        assert session.get.call_count == 5

        result = client.lookup(["2021001"])
        assert session.get.call_count == 5
        assert "circuit open" in result.error

    def test_backoff_between_attempts(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("down")
        client = _client(session, retry_max=2, backoff=(0.2, 0.5))
        with patch("pkm_portal.integrations.directory.time.sleep") as sleep:
            client.lookup(["2021001"])
        assert [c.args[0] for c in sleep.call_args_list] == [0.2, 0.5]


@pytest.mark.parametrize("payload, expected", [
    ({"nim": "1", "angkatan": 2021}, "2021"),
    ({"key": "1", "cohort": "2022"}, "2022"),
    ({"key": "1"}, None),
])
def test_student_cohort_parsing(payload, expected):
    assert StudentRecord.from_payload(payload).cohort == expected
