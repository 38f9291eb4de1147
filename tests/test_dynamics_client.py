import pytest

from dynamics_client import DynamicsClient, build_search_filter, odata_literal
from odata_client import CreatedEntity


class DummyODataClient:
    """Records every call; GET answers come from ``replies`` keyed by path."""

    base_url = "https://org.crm.dynamics.com/api/data/v9.2"

    def __init__(self, replies=None, post_reply=None, created_id="new-id"):
        self.replies = replies or {}
        self.post_reply = post_reply
        self.created_id = created_id
        self.calls = []

    def get(self, path, params=None):
        self.calls.append(("GET", path, params))
        return self.replies.get(path, {"value": []})

    def post(self, path, body=None, headers=None):
        self.calls.append(("POST", path, body))
        return self.post_reply

    def patch(self, path, body, headers=None):
        self.calls.append(("PATCH", path, body))

    def delete(self, path):
        self.calls.append(("DELETE", path, None))

    def create_entity(self, path, body):
        self.calls.append(("CREATE", path, body))
        return CreatedEntity(self.created_id, None)

    def entity_url(self, entity_set, record_id):
        return f"{self.base_url}/{entity_set}({record_id})"


def make_client(**kwargs):
    odata = DummyODataClient(**kwargs)
    return DynamicsClient(odata), odata


def test_create_contact_posts_mapped_body_and_refetches():
    client, odata = make_client(
        replies={
            "/contacts(new-id)": {
                "contactid": "new-id",
                "firstname": "Ada",
                "lastname": "Lovelace",
                "_parentcustomerid_value": "acc-1",
                "statecode": 0,
            }
        }
    )
    contact = client.create_contact({"firstName": "Ada", "lastName": "Lovelace", "companyId": "acc-1"})

    assert odata.calls[0] == (
        "CREATE",
        "/contacts",
        {
            "firstname": "Ada",
            "lastname": "Lovelace",
            "parentcustomerid_account@odata.bind": "/accounts(acc-1)",
        },
    )
    method, path, params = odata.calls[1]
    assert (method, path) == ("GET", "/contacts(new-id)")
    assert params["$select"].startswith("contactid,")
    assert contact == {
        "id": "new-id",
        "firstName": "Ada",
        "lastName": "Lovelace",
        "companyId": "acc-1",
        "status": "active",
    }


def test_update_contact_sends_only_given_fields():
    client, odata = make_client()
    client.update_contact("c-1", {"title": "CTO"})
    assert odata.calls[0] == ("PATCH", "/contacts(c-1)", {"jobtitle": "CTO"})
    assert odata.calls[1][1] == "/contacts(c-1)"


def test_list_uses_offset_paging():
    client, odata = make_client(
        replies={"/accounts": {"value": [{"accountid": "a-1", "name": "Contoso"}], "@odata.nextLink": "https://next"}}
    )
    page = client.list_companies(limit=10, offset=20)

    _, path, params = odata.calls[0]
    assert path == "/accounts"
    assert params["$top"] == 10
    assert params["$skip"] == 20
    assert params["$orderby"] == "modifiedon desc"
    assert page["count"] == 1
    assert page["hasMore"] is True
    assert page["nextCursor"] == "https://next"
    assert page["items"][0]["name"] == "Contoso"


def test_cursor_is_followed_verbatim():
    cursor = "https://org.crm.dynamics.com/api/data/v9.2/contacts?$skiptoken=abc"
    client, odata = make_client(replies={cursor: {"value": []}})
    page = client.list_contacts(limit=5, offset=50, cursor=cursor)
    assert odata.calls == [("GET", cursor, None)]
    assert page == {"items": [], "count": 0, "hasMore": False}


def test_search_contacts_builds_filter_and_sort():
    client, odata = make_client()
    client.search_contacts(
        "ann",
        filters=[{"field": "jobtitle", "operator": "eq", "value": "CTO"}],
        sort_by="lastname",
        sort_order="desc",
        limit=5,
    )
    params = odata.calls[0][2]
    assert params["$filter"] == "(contains(fullname,'ann') or contains(emailaddress1,'ann')) and jobtitle eq 'CTO'"
    assert params["$orderby"] == "lastname desc"
    assert params["$top"] == 5


def test_build_search_filter_operators():
    text = build_search_filter(
        None,
        ("name",),
        [
            {"field": "revenue", "operator": "eq", "value": 10},
            {"field": "name", "operator": "starts_with", "value": "Con"},
            {"field": "websiteurl", "operator": "contains", "value": "example"},
            {"field": "donotemail", "value": True},
            {"field": "ignored", "operator": "gt", "value": 1},
        ],
    )
    assert text == (
        "revenue eq 10 and startswith(name,'Con') and contains(websiteurl,'example') and donotemail eq true"
    )
    assert build_search_filter(None, ("name",), None) == ""


def test_odata_literal_does_not_escape():
    assert odata_literal("O'Brien") == "'O'Brien'"
    assert odata_literal(False) == "false"
    assert odata_literal(2.5) == "2.5"


def test_deal_status_and_stage():
    client, odata = make_client()
    client.update_deal("o-1", {"status": "won"})
    client.move_deal_stage("o-1", "Propose")
    assert odata.calls[0] == ("PATCH", "/opportunities(o-1)", {"statecode": 1, "statuscode": 3})
    assert odata.calls[2] == ("PATCH", "/opportunities(o-1)", {"stepname": "Propose"})


def test_create_activity_regarding_first_contact():
    client, odata = make_client()
    client.create_activity({"subject": "Call back", "contactIds": ["c-1", "c-2"], "companyId": "a-1"})
    method, path, body = odata.calls[0]
    assert (method, path) == ("CREATE", "/tasks")
    assert body["subject"] == "Call back"
    assert body["regardingobjectid_contact@odata.bind"] == "/contacts(c-1)"
    assert "regardingobjectid_account@odata.bind" not in body


def test_qualify_lead_reports_created_ids():
    client, odata = make_client(
        post_reply={
            "CreatedEntities": [
                {"@odata.type": "#Microsoft.Dynamics.CRM.account", "accountid": "a-1"},
                {"@odata.type": "#Microsoft.Dynamics.CRM.contact", "contactid": "c-1"},
                {"@odata.type": "#Microsoft.Dynamics.CRM.opportunity", "opportunityid": "o-1"},
            ]
        }
    )
    result = client.qualify_lead("l-1", create_opportunity=True, opportunity_customer_id="a-9")

    _, path, body = odata.calls[0]
    assert path == "/leads(l-1)/Microsoft.Dynamics.CRM.QualifyLead"
    assert body["Status"] == 3
    assert body["OpportunityCustomerId"] == {"@odata.type": "Microsoft.Dynamics.CRM.account", "accountid": "a-9"}
    assert result == {"success": True, "accountId": "a-1", "contactId": "c-1", "opportunityId": "o-1"}


def test_qualify_lead_without_created_entities():
    client, _ = make_client(post_reply=None)
    assert client.qualify_lead("l-1", False, False, False) == {"success": True}


def test_close_quote_status_codes():
    client, odata = make_client()
    client.close_quote("q-1", "lost")
    assert odata.calls[0] == ("POST", "/quotes(q-1)/Microsoft.Dynamics.CRM.CloseQuote", {"Status": 5})

    with pytest.raises(ValueError):
        client.close_quote("q-1", "maybe")


def test_convert_quote_to_order():
    client, odata = make_client(post_reply={"salesorderid": "so-1", "name": "Order"})
    assert client.convert_quote_to_order("q-1") == {"salesOrderId": "so-1"}
    assert odata.calls[0][2] == {"ColumnSet": {"AllColumns": True}}


def test_resolve_case_sends_incident_resolution():
    client, odata = make_client()
    client.resolve_case("i-1", "Fixed", time_spent=30)
    assert odata.calls[0] == (
        "POST",
        "/incidents(i-1)/Microsoft.Dynamics.CRM.CloseIncident",
        {
            "IncidentResolution": {"subject": "Fixed", "incidentid@odata.bind": "/incidents(i-1)", "timespent": 30},
            "Status": -1,
        },
    )


def test_state_changes():
    client, odata = make_client()
    client.cancel_case("i-1")
    client.complete_activity("t-1", "task")
    client.cancel_invoice("inv-1")
    assert odata.calls == [
        ("PATCH", "/incidents(i-1)", {"statecode": 2, "statuscode": 6}),
        ("PATCH", "/tasks(t-1)", {"statecode": 1, "statuscode": 2}),
        ("PATCH", "/invoices(inv-1)", {"statecode": 4, "statuscode": 100003}),
    ]


def test_campaign_member_navigation():
    client, odata = make_client()
    client.add_campaign_member("cmp-1", "lead", "l-1")
    assert odata.calls[0] == (
        "POST",
        "/campaigns(cmp-1)/Campaign_leads/$ref",
        {"@odata.id": "https://org.crm.dynamics.com/api/data/v9.2/leads(l-1)"},
    )

    with pytest.raises(ValueError):
        client.add_campaign_member("cmp-1", "team", "x")


def test_competitor_association():
    client, odata = make_client()
    client.associate_competitor("comp-1", "opp-1")
    client.disassociate_competitor("comp-1", "opp-1")
    assert odata.calls[0][1] == "/opportunities(opp-1)/opportunitycompetitors_association/$ref"
    assert odata.calls[0][2] == {"@odata.id": "https://org.crm.dynamics.com/api/data/v9.2/competitors(comp-1)"}
    assert odata.calls[1] == (
        "DELETE",
        "/opportunities(opp-1)/opportunitycompetitors_association(comp-1)/$ref",
        None,
    )


def test_create_note_binds_regarding_record():
    client, odata = make_client()
    client.create_note(
        {"regardingEntityType": "account", "regardingId": "a-1", "subject": "Proposal", "fileName": "proposal.pdf"}
    )
    _, path, body = odata.calls[0]
    assert path == "/annotations"
    assert body["objectid_account@odata.bind"] == "/accounts(a-1)"
    assert body["isdocument"] is True
    assert body["filename"] == "proposal.pdf"


def test_test_connection_reports_failure():
    class Failing(DummyODataClient):
        def get(self, path, params=None):
            raise RuntimeError("network down")

    client = DynamicsClient(Failing())
    assert client.test_connection() == {"connected": False, "message": "network down"}


def test_test_connection_success():
    client, _ = make_client(replies={"/WhoAmI": {"UserId": "u-1", "OrganizationId": "org-1"}})
    result = client.test_connection()
    assert result["connected"] is True
    assert "User ID: u-1" in result["message"]
