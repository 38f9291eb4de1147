import logging
import threading
import xml.etree.ElementTree as ET

import pytest

from crm_query import CrmQueryService, build_aggregate_fetchxml, limit_fetchxml
from errors import CrmApiError
from odata_client import CreatedEntity


class DummyODataClient:
    base_url = "https://org.crm.dynamics.com/api/data/v9.2"

    def __init__(self, replies=None, fail_when=None):
        self.replies = replies or {}
        self.fail_when = fail_when or (lambda body: False)
        self.calls = []
        self._lock = threading.Lock()

    def _record(self, *call):
        with self._lock:
            self.calls.append(call)

    def get(self, path, params=None):
        self._record("GET", path, params, None)
        return self.replies.get(path, {"value": []})

    def post(self, path, body=None, headers=None):
        self._record("POST", path, body, headers)
        if self.fail_when(body):
            raise CrmApiError("Duplicate record", 412)

    def patch(self, path, body, headers=None):
        self._record("PATCH", path, body, headers)
        if self.fail_when(body):
            raise CrmApiError("Record not found", 404)

    def delete(self, path):
        self._record("DELETE", path, None, None)
        if self.fail_when(path):
            raise CrmApiError("Record not found", 404)

    def create_entity(self, path, body):
        self._record("CREATE", path, body, None)
        if self.fail_when(body):
            raise CrmApiError("boom", 400)
        return CreatedEntity(f"id-{body['name']}", None)

    def entity_url(self, entity_set, record_id):
        return f"{self.base_url}/{entity_set}({record_id})"


def five_records():
    return [{"name": str(i)} for i in range(5)]


def test_batch_create_continue_on_error():
    odata = DummyODataClient(fail_when=lambda body: body["name"] == "2")
    service = CrmQueryService(odata, max_workers=3)

    result = service.batch_create("account", five_records(), continue_on_error=True)

    assert result == {
        "succeeded": 4,
        "failed": 1,
        "errors": [{"index": 2, "message": "boom"}],
        "createdIds": ["id-0", "id-1", "id-3", "id-4"],
    }
    assert {c[1] for c in odata.calls} == {"/accounts"}


def test_batch_create_stops_counting_at_first_failure():
    odata = DummyODataClient(fail_when=lambda body: body["name"] == "2")
    service = CrmQueryService(odata, max_workers=5)

    result = service.batch_create("account", five_records())

    assert result["succeeded"] == 2
    assert result["failed"] == 1
    assert result["createdIds"] == ["id-0", "id-1"]
    assert result["errors"] == [{"index": 2, "message": "boom"}]
    # every request was still dispatched
    assert len(odata.calls) == 5


def test_batch_create_logs_failures(caplog):
    odata = DummyODataClient(fail_when=lambda body: True)
    service = CrmQueryService(odata, max_workers=2)
    with caplog.at_level(logging.WARNING):
        service.batch_create("contact", [{"name": "a"}], continue_on_error=True)
    assert "Batch item 0 failed" in caplog.text


def test_batch_update_and_delete_paths():
    odata = DummyODataClient(fail_when=lambda value: value == "/contacts(bad)")
    service = CrmQueryService(odata, max_workers=2)

    updated = service.batch_update("contact", [{"id": "c-1", "data": {"jobtitle": "CTO"}}])
    deleted = service.batch_delete("contact", ["c-1", "bad"], continue_on_error=True)

    assert ("PATCH", "/contacts(c-1)", {"jobtitle": "CTO"}, None) in odata.calls
    assert updated == {"succeeded": 1, "failed": 0, "errors": []}
    assert deleted == {"succeeded": 1, "failed": 1, "errors": [{"index": 1, "message": "Record not found"}]}


def test_empty_batch():
    service = CrmQueryService(DummyODataClient())
    assert service.batch_delete("contact", []) == {"succeeded": 0, "failed": 0, "errors": []}


def test_batch_upsert_urls_and_counts():
    odata = DummyODataClient()
    service = CrmQueryService(odata)

    result = service.batch_upsert(
        "account",
        [
            {"id": "a-1", "data": {"name": "One"}},
            {"alternateKey": {"accountnumber": "A-2"}, "data": {"name": "Two"}},
            {"data": {"name": "Three"}},
        ],
    )

    assert odata.calls == [
        ("PATCH", "/accounts(a-1)", {"name": "One"}, {"If-Match": "*"}),
        ("PATCH", "/accounts(accountnumber='A-2')", {"name": "Two"}, {"If-Match": "*"}),
        ("POST", "/accounts", {"name": "Three"}, None),
    ]
    assert result == {"succeeded": 3, "failed": 0, "created": 1, "updated": 2, "errors": []}


def test_batch_upsert_stops_without_continue():
    odata = DummyODataClient(fail_when=lambda body: body.get("name") == "bad")
    service = CrmQueryService(odata)
    records = [{"data": {"name": "bad"}}, {"data": {"name": "ok"}}]

    stopped = service.batch_upsert("account", records)
    assert stopped["failed"] == 1 and stopped["succeeded"] == 0
    assert len(odata.calls) == 1

    carried_on = service.batch_upsert("account", records, continue_on_error=True)
    assert carried_on["succeeded"] == 1 and carried_on["created"] == 1
    assert carried_on["errors"] == [{"index": 0, "message": "Duplicate record"}]


def test_count_aggregate_fetchxml():
    root = ET.fromstring(build_aggregate_fetchxml("account", "count"))
    assert root.tag == "fetch"
    assert root.get("aggregate") == "true"
    entity = root.find("entity")
    assert entity.get("name") == "account"
    attribute = entity.find("attribute")
    assert attribute.attrib == {"name": "accountid", "aggregate": "count", "alias": "count"}
    assert entity.find("filter") is None


def test_sum_aggregate_with_filter_and_group_by():
    root = ET.fromstring(
        build_aggregate_fetchxml("opportunity", "sum", "estimatedvalue", filter="anything", group_by="ownerid")
    )
    entity = root.find("entity")
    attributes = entity.findall("attribute")
    assert attributes[0].attrib == {"name": "estimatedvalue", "aggregate": "sum", "alias": "result"}
    assert attributes[1].attrib == {"name": "ownerid", "groupby": "true", "alias": "groupby"}
    condition = entity.find("filter/condition")
    assert condition.attrib == {"attribute": "statecode", "operator": "eq", "value": "0"}


def test_aggregate_argument_errors():
    with pytest.raises(ValueError):
        build_aggregate_fetchxml("account", "median", "revenue")
    with pytest.raises(ValueError):
        build_aggregate_fetchxml("account", "avg")


def test_limit_fetchxml():
    limited = ET.fromstring(limit_fetchxml('<fetch><entity name="account"/></fetch>', 10))
    assert limited.get("count") == "10"

    already = '<fetch top="5"><entity name="account"/></fetch>'
    assert limit_fetchxml(already, 10) == already


def test_limit_fetchxml_leaves_unparsable_documents(caplog):
    with caplog.at_level(logging.WARNING):
        assert limit_fetchxml("<fetch", 10) == "<fetch"
    assert "could not be parsed" in caplog.text


def test_execute_query_params_and_result():
    odata = DummyODataClient(
        replies={"/accounts": {"value": [{"name": "A"}], "@odata.count": 12, "@odata.nextLink": "https://n"}}
    )
    service = CrmQueryService(odata)

    result = service.execute_query("account", select="name", filter="revenue gt 5", top=1, count=True)

    assert odata.calls[0][2] == {"$select": "name", "$filter": "revenue gt 5", "$top": 1, "$count": "true"}
    assert result == {"records": [{"name": "A"}], "hasMore": True, "totalCount": 12}


def test_get_record_count():
    odata = DummyODataClient(replies={"/leads": {"value": [], "@odata.count": 42}})
    service = CrmQueryService(odata)
    assert service.get_record_count("lead", "statecode eq 0") == 42
    assert odata.calls[0][2] == {"$count": "true", "$top": 0, "$filter": "statecode eq 0"}


def test_saved_query_applies_row_limit():
    odata = DummyODataClient(
        replies={"/savedqueries(sq-1)": {"fetchxml": '<fetch><entity name="contact"/></fetch>'}}
    )
    CrmQueryService(odata).execute_saved_query("sq-1", "contact", top=25)

    _, path, params, _ = odata.calls[1]
    assert path == "/contacts"
    assert ET.fromstring(params["fetchXml"]).get("count") == "25"


def test_option_set_values():
    payload = {
        "OptionSet": {
            "Options": [
                {"Value": 1, "Label": {"UserLocalizedLabel": {"Label": "Hot"}}},
                {"Value": 2, "Label": {"UserLocalizedLabel": None}},
            ]
        }
    }
    path = (
        "/EntityDefinitions(LogicalName='lead')/Attributes(LogicalName='leadqualitycode')"
        "/Microsoft.Dynamics.CRM.PicklistAttributeMetadata"
    )
    service = CrmQueryService(DummyODataClient(replies={path: payload}))
    assert service.get_option_set_values("lead", "leadqualitycode") == [
        {"value": 1, "label": "Hot"},
        {"value": 2, "label": "2"},
    ]


def test_entity_metadata_filters():
    odata = DummyODataClient()
    CrmQueryService(odata).list_entity_metadata("acc", include_custom=False)
    params = odata.calls[0][2]
    assert params["$filter"] == "contains(LogicalName,'acc') and IsCustomEntity eq false"


def test_associate_and_disassociate():
    odata = DummyODataClient()
    service = CrmQueryService(odata)
    service.associate("team", "t-1", "systemuser", "u-1", "teammembership_association")
    service.disassociate("team", "t-1", "systemuser", "u-1", "teammembership_association")
    assert odata.calls == [
        (
            "POST",
            "/teams(t-1)/teammembership_association/$ref",
            {"@odata.id": "https://org.crm.dynamics.com/api/data/v9.2/systemusers(u-1)"},
            None,
        ),
        ("DELETE", "/teams(t-1)/teammembership_association(u-1)/$ref", None, None),
    ]
