import random

import pytest

import entity_mappers as em


def test_contact_to_domain():
    record = {
        "contactid": "c-1",
        "firstname": "Ada",
        "lastname": "Lovelace",
        "fullname": "Ada Lovelace",
        "emailaddress1": "ada@example.com",
        "_parentcustomerid_value": "acc-1",
        "statecode": 1,
        "statuscode": 2,
        "@odata.etag": 'W/"123"',
        "_parentcustomerid_value@OData.Community.Display.V1.FormattedValue": "Contoso",
        "new_score": 42,
    }
    contact = em.CONTACT.to_domain(record)
    assert contact["id"] == "c-1"
    assert contact["fullName"] == "Ada Lovelace"
    assert contact["email"] == "ada@example.com"
    assert contact["companyId"] == "acc-1"
    assert contact["status"] == "inactive"
    assert contact["customFields"] == {"new_score": 42}


def test_unknown_or_missing_status_falls_back_to_default():
    assert em.CONTACT.to_domain({"contactid": "1", "statecode": 9})["status"] == "active"
    assert em.DEAL.to_domain({"opportunityid": "1"})["status"] == "open"
    assert em.CASE.to_domain({"incidentid": "1", "statecode": 1})["status"] == "resolved"


def test_partial_update_only_sends_given_keys():
    body = em.CONTACT.to_wire({"firstName": "Grace"}, partial=True)
    assert body == {"firstname": "Grace"}


def test_create_body_with_bind():
    body = em.CONTACT.to_wire({"firstName": "Ada", "lastName": "Lovelace", "companyId": "acc-1"})
    assert body == {
        "firstname": "Ada",
        "lastname": "Lovelace",
        "parentcustomerid_account@odata.bind": "/accounts(acc-1)",
    }


def test_empty_company_clears_contact_parent_on_update():
    body = em.CONTACT.to_wire({"companyId": ""}, partial=True)
    assert body == {"parentcustomerid_account@odata.bind": None}


def test_read_only_fields_are_never_sent():
    body = em.CONTACT.to_wire({"fullName": "X", "createdAt": "2024-01-01", "lastName": "Y"})
    assert body == {"lastname": "Y"}


def test_custom_fields_are_merged_last():
    body = em.CONTACT.to_wire({"firstName": "Ada", "customFields": {"firstname": "Override", "new_tier": 3}})
    assert body == {"firstname": "Override", "new_tier": 3}


def test_company_industry_and_address():
    body = em.COMPANY.to_wire(
        {"name": "Contoso", "industry": " 7 ", "address": {"city": "Oslo", "country": "NO"}}
    )
    assert body == {
        "name": "Contoso",
        "industrycode": 7,
        "address1_city": "Oslo",
        "address1_country": "NO",
    }

    assert "industrycode" not in em.COMPANY.to_wire({"industry": "Software"})

    company = em.COMPANY.to_domain({"accountid": "a", "industrycode": 7, "address1_city": "Oslo"})
    assert company["industry"] == "7"
    assert company["address"] == {"city": "Oslo"}


def test_deal_status_transition():
    assert em.DEAL.to_wire({"status": "won"}, partial=True) == {"statecode": 1, "statuscode": 3}
    assert em.DEAL.to_wire({"status": "lost"}, partial=True) == {"statecode": 2, "statuscode": 4}
    assert em.DEAL.to_wire({"status": "unheard-of"}, partial=True) == {}


def test_create_only_binds_skipped_on_update():
    create = em.QUOTE.to_wire({"name": "Q", "customerAccountId": "acc-1"})
    update = em.QUOTE.to_wire({"name": "Q", "customerAccountId": "acc-1"}, partial=True)
    assert create["customerid_account@odata.bind"] == "/accounts(acc-1)"
    assert update == {"name": "Q"}


def test_select_lists_id_and_status_columns():
    columns = em.CONTACT.select.split(",")
    assert columns[0] == "contactid"
    assert "statecode" in columns and "statuscode" in columns
    assert "documentbody" not in em.NOTE.select.split(",")


def test_round_trip_keeps_writable_fields():
    source = {"firstName": "Ada", "lastName": "Lovelace", "email": "ada@example.com", "title": "Countess"}
    record = {"contactid": "c-1", **em.CONTACT.to_wire(source)}
    contact = em.CONTACT.to_domain(record)
    for key, value in source.items():
        assert contact[key] == value


def test_activity_type_labels():
    assert em.activity_type("phonecall") == "call"
    assert em.activity_type("appointment") == "meeting"
    assert em.activity_type("letter") == "other"


def test_option_and_label_helpers():
    option = {"Value": 3, "Label": {"UserLocalizedLabel": {"Label": "Hot"}}}
    assert em.map_option(option) == {"value": 3, "label": "Hot"}
    assert em.map_option({"Value": 4, "Label": {}}) == {"value": 4, "label": "4"}
    assert em.label_of(None, "fallback") == "fallback"


def test_pipeline_stage_closing_category():
    stage = em.map_pipeline_stage({"processstageid": "s", "stagename": "Close", "stagecategory": 3}, 3)
    assert stage == {"id": "s", "name": "Close", "order": 3, "isClosed": True, "isWon": True}


MAPPERS = {name: value for name, value in vars(em).items() if isinstance(value, em.EntityMapper)}


def writable_fields(mapper, partial=False):
    return [f for f in mapper.fields if not f.read_only and not (partial and f.create_only)]


def sample_value(field):
    # industry codes only survive when numeric
    return "7" if field.to_wire is not None else f"{field.name}-value"


def fill(fields):
    data = {}
    for f in fields:
        target = data.setdefault(f.group, {}) if f.group else data
        target[f.name] = sample_value(f)
    return data


def test_every_mapper_is_collected():
    assert len(MAPPERS) == 23
    assert {"CONTACT", "QUOTE", "CASE", "GOAL", "TEAM", "PRODUCT", "NOTE"} <= set(MAPPERS)


@pytest.mark.parametrize("name", sorted(MAPPERS))
def test_round_trip_for_every_writable_field(name):
    mapper = MAPPERS[name]
    fields = writable_fields(mapper)
    record = {mapper.id_field: "rec-1", **mapper.to_wire(fill(fields))}

    entity = mapper.to_domain(record)

    assert entity["id"] == "rec-1"
    assert "customFields" not in entity
    for f in fields:
        holder = entity[f.group] if f.group else entity
        assert holder[f.name] == sample_value(f), f.name


@pytest.mark.parametrize("name", sorted(MAPPERS))
def test_partial_update_sends_only_given_fields(name):
    mapper = MAPPERS[name]
    fields = writable_fields(mapper, partial=True)
    rng = random.Random(name)
    chosen = rng.sample(fields, rng.randint(0, len(fields)))

    body = mapper.to_wire(fill(chosen), partial=True)

    assert set(body) == {f.wire for f in chosen}
