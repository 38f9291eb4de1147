"""
Entity operation sets on top of ODataClient.

Every entity family follows the same contract:

- list: ``$select`` + ``$top``/``$skip`` + ``$orderby``, or the opaque ``cursor``
  requested verbatim (the two modes never mix)
- get: not-found surfaces as CrmApiError(404) from the request engine
- create: input -> wire body -> POST -> re-fetch by the returned id
- update: only the keys present in the input -> PATCH -> re-fetch
- delete: DELETE, errors propagate

Lifecycle operations (close, fulfill, resolve, ...) are literal encodings of the
CRM's own state machine; the server decides whether a transition is legal.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

import entity_mappers as em
from config import TenantCredentials
from crm_query import CrmQueryService
from entity_mappers import EntityMapper
from odata_client import ODataClient, entity_set_name, page_from_response, values

logger = logging.getLogger(__name__)

SEARCH_OPERATORS = ("eq", "contains", "starts_with")

QUOTE_CLOSE_STATUS = {"won": 4, "lost": 5, "cancelled": 6}
CAMPAIGN_MEMBER_TYPES = ("contact", "lead", "account")


def odata_literal(value: Any) -> str:
    """Render a filter value; strings are quoted as is (no escaping)."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return f"'{value}'"


def build_search_filter(
    query: Optional[str],
    text_fields: Iterable[str],
    filters: Optional[List[Dict[str, Any]]] = None,
) -> str:
    """
    ``(contains(f1,'q') or contains(f2,'q'))`` plus one clause per structured filter,
    joined with ``and``. Unknown operators are ignored.
    """
    clauses: List[str] = []
    if query:
        clauses.append("(" + " or ".join(f"contains({f},'{query}')" for f in text_fields) + ")")
    for item in filters or []:
        field = item.get("field")
        operator = item.get("operator", "eq")
        literal = odata_literal(item.get("value"))
        if not field:
            continue
        if operator == "eq":
            clauses.append(f"{field} eq {literal}")
        elif operator == "contains":
            clauses.append(f"contains({field},{literal})")
        elif operator == "starts_with":
            clauses.append(f"startswith({field},{literal})")
        else:
            logger.debug(f"Ignoring unsupported filter operator {operator!r} on {field}")
    return " and ".join(clauses)


def _regarding_bind(regarding_type: Optional[str], regarding_id: Optional[str]) -> Dict[str, str]:
    if not (regarding_type and regarding_id):
        return {}
    return {
        f"regardingobjectid_{regarding_type}@odata.bind": f"/{entity_set_name(regarding_type)}({regarding_id})"
    }


class DynamicsClient:
    """
    All normalized CRM operations for one tenant.

    The instance owns its ODataClient (and through it the token cache); generic
    query, batch, metadata and relationship calls live on ``self.query``.
    """

    def __init__(self, odata: ODataClient, query: Optional[CrmQueryService] = None) -> None:
        self.odata = odata
        self.query = query or CrmQueryService(odata)

    @classmethod
    def from_credentials(cls, credentials: TenantCredentials) -> "DynamicsClient":
        return cls(ODataClient(credentials))

    def close(self) -> None:
        self.odata.close()

    # ------------------------------------------------------------------
    # Shared plumbing
    # ------------------------------------------------------------------

    def _list(
        self,
        mapper: EntityMapper,
        limit: int = 20,
        offset: int = 0,
        cursor: Optional[str] = None,
        filter: Optional[str] = None,
        order_by: Optional[str] = None,
        entity_set: Optional[str] = None,
    ) -> Dict[str, Any]:
        if cursor:
            payload = self.odata.get(cursor)
        else:
            params: Dict[str, Any] = {
                "$select": mapper.select,
                "$top": limit,
                "$skip": offset,
                "$orderby": order_by or mapper.order_by,
            }
            if filter:
                params["$filter"] = filter
            payload = self.odata.get(f"/{entity_set or mapper.entity_set}", params=params)
        return page_from_response(payload, mapper.to_domain)

    def _records(
        self,
        mapper: EntityMapper,
        filter: Optional[str] = None,
        limit: Optional[int] = None,
        order_by: Optional[str] = None,
        path: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Unpaginated list of mapped records (search helpers and sub-collections)."""
        params: Dict[str, Any] = {"$select": mapper.select}
        if filter:
            params["$filter"] = filter
        if limit:
            params["$top"] = limit
        if order_by:
            params["$orderby"] = order_by
        payload = self.odata.get(path or f"/{mapper.entity_set}", params=params)
        return [mapper.to_domain(r) for r in values(payload)]

    def _get(self, mapper: EntityMapper, record_id: str, entity_set: Optional[str] = None) -> Dict[str, Any]:
        record = self.odata.get(
            f"/{entity_set or mapper.entity_set}({record_id})", params={"$select": mapper.select}
        )
        return mapper.to_domain(record)

    @staticmethod
    def _body(
        mapper: EntityMapper,
        data: Dict[str, Any],
        extra: Optional[Dict[str, Any]] = None,
        partial: bool = False,
    ) -> Dict[str, Any]:
        """Mapped wire body plus operation-specific keys; customFields still win."""
        body = mapper.to_wire(data, partial=partial)
        if extra:
            body.update(extra)
            custom = (data or {}).get("customFields")
            if isinstance(custom, dict):
                body.update(custom)
        return body

    def _create(
        self,
        mapper: EntityMapper,
        data: Dict[str, Any],
        extra: Optional[Dict[str, Any]] = None,
        entity_set: Optional[str] = None,
    ) -> Dict[str, Any]:
        entity_set = entity_set or mapper.entity_set
        created = self.odata.create_entity(f"/{entity_set}", self._body(mapper, data, extra))
        return self._get(mapper, created.id, entity_set)

    def _update(
        self,
        mapper: EntityMapper,
        record_id: str,
        data: Dict[str, Any],
        extra: Optional[Dict[str, Any]] = None,
        entity_set: Optional[str] = None,
    ) -> Dict[str, Any]:
        entity_set = entity_set or mapper.entity_set
        body = self._body(mapper, data, extra, partial=True)
        self.odata.patch(f"/{entity_set}({record_id})", body)
        return self._get(mapper, record_id, entity_set)

    def _delete(self, mapper: EntityMapper, record_id: str, entity_set: Optional[str] = None) -> None:
        self.odata.delete(f"/{entity_set or mapper.entity_set}({record_id})")

    def _set_state(self, entity_set: str, record_id: str, statecode: int, statuscode: int) -> None:
        self.odata.patch(f"/{entity_set}({record_id})", {"statecode": statecode, "statuscode": statuscode})

    def _action(self, entity_set: str, record_id: str, action: str, body: Optional[Dict[str, Any]] = None) -> Any:
        return self.odata.post(f"/{entity_set}({record_id})/Microsoft.Dynamics.CRM.{action}", body or {})

    def _search(
        self,
        mapper: EntityMapper,
        text_fields: Iterable[str],
        query: Optional[str] = None,
        filters: Optional[List[Dict[str, Any]]] = None,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Dict[str, Any]:
        order_by = f"{sort_by} {sort_order or 'asc'}" if sort_by else None
        return self._list(
            mapper,
            limit=limit,
            offset=offset,
            filter=build_search_filter(query, text_fields, filters) or None,
            order_by=order_by,
        )

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def test_connection(self) -> Dict[str, Any]:
        """WhoAmI probe; failures are reported, never raised."""
        try:
            who = self.odata.get("/WhoAmI") or {}
        except Exception as exc:  # reported to the caller as connected=False
            logger.warning(f"Connection test failed: {exc}")
            return {"connected": False, "message": getattr(exc, "message", None) or str(exc) or "Connection failed"}
        return {
            "connected": True,
            "message": (
                "Successfully connected to Dynamics 365. "
                f"User ID: {who.get('UserId')}, Organization ID: {who.get('OrganizationId')}"
            ),
        }

    def get_current_user(self) -> Dict[str, Any]:
        who = self.odata.get("/WhoAmI") or {}
        return self.get_user(who.get("UserId"))

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    def list_contacts(self, limit: int = 20, offset: int = 0, cursor: Optional[str] = None) -> Dict[str, Any]:
        return self._list(em.CONTACT, limit, offset, cursor)

    def get_contact(self, contact_id: str) -> Dict[str, Any]:
        return self._get(em.CONTACT, contact_id)

    def create_contact(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._create(em.CONTACT, data)

    def update_contact(self, contact_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._update(em.CONTACT, contact_id, data)

    def delete_contact(self, contact_id: str) -> None:
        self._delete(em.CONTACT, contact_id)

    def search_contacts(self, query: Optional[str] = None, **options: Any) -> Dict[str, Any]:
        return self._search(em.CONTACT, ("fullname", "emailaddress1"), query, **options)

    # ------------------------------------------------------------------
    # Companies (accounts)
    # ------------------------------------------------------------------

    def list_companies(self, limit: int = 20, offset: int = 0, cursor: Optional[str] = None) -> Dict[str, Any]:
        return self._list(em.COMPANY, limit, offset, cursor)

    def get_company(self, company_id: str) -> Dict[str, Any]:
        return self._get(em.COMPANY, company_id)

    def create_company(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._create(em.COMPANY, data)

    def update_company(self, company_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._update(em.COMPANY, company_id, data)

    def delete_company(self, company_id: str) -> None:
        self._delete(em.COMPANY, company_id)

    def search_companies(self, query: Optional[str] = None, **options: Any) -> Dict[str, Any]:
        return self._search(em.COMPANY, ("name", "emailaddress1", "websiteurl"), query, **options)

    # ------------------------------------------------------------------
    # Deals (opportunities) and pipelines
    # ------------------------------------------------------------------

    def list_deals(self, limit: int = 20, offset: int = 0, cursor: Optional[str] = None) -> Dict[str, Any]:
        return self._list(em.DEAL, limit, offset, cursor)

    def get_deal(self, deal_id: str) -> Dict[str, Any]:
        return self._get(em.DEAL, deal_id)

    def create_deal(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._create(em.DEAL, data)

    def update_deal(self, deal_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._update(em.DEAL, deal_id, data)

    def delete_deal(self, deal_id: str) -> None:
        self._delete(em.DEAL, deal_id)

    def search_deals(self, query: Optional[str] = None, **options: Any) -> Dict[str, Any]:
        return self._search(em.DEAL, ("name",), query, **options)

    def move_deal_stage(self, deal_id: str, stage: str) -> Dict[str, Any]:
        return self._update(em.DEAL, deal_id, {"stage": stage})

    def list_pipelines(self) -> List[Dict[str, Any]]:
        """Business process flows (workflow category 4) with their ordered stages."""
        workflows = self.odata.get(
            "/workflows",
            params={"$filter": "category eq 4 and statecode eq 1", "$select": "workflowid,name"},
        )
        pipelines = []
        for workflow in values(workflows):
            stages = self.odata.get(
                "/processstages",
                params={
                    "$filter": f"_processid_value eq {workflow.get('workflowid')}",
                    "$select": "processstageid,stagename,stagecategory",
                    "$orderby": "stagecategory asc",
                },
            )
            pipelines.append(
                {
                    "id": workflow.get("workflowid"),
                    "name": workflow.get("name"),
                    "stages": [em.map_pipeline_stage(s, i) for i, s in enumerate(values(stages))],
                }
            )
        return pipelines

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------

    def list_activities(
        self,
        limit: int = 20,
        offset: int = 0,
        cursor: Optional[str] = None,
        record_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        flt = f"_regardingobjectid_value eq {record_id}" if record_id else None
        return self._list(em.ACTIVITY, limit, offset, cursor, filter=flt)

    def list_activities_by_type(
        self,
        activity_type: str,
        limit: int = 20,
        offset: int = 0,
        cursor: Optional[str] = None,
        regarding_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        flt = f"_regardingobjectid_value eq {regarding_id}" if regarding_id else None
        return self._list(
            em.ACTIVITY,
            limit,
            offset,
            cursor,
            filter=flt,
            order_by="createdon desc",
            entity_set=entity_set_name(activity_type),
        )

    def get_activity(self, activity_id: str, activity_type: Optional[str] = None) -> Dict[str, Any]:
        entity_set = entity_set_name(activity_type) if activity_type else em.ACTIVITY.entity_set
        return self._get(em.ACTIVITY, activity_id, entity_set)

    def create_activity(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a task. It is regarding the first contact in ``contactIds``, else
        ``companyId``, else ``dealId``.
        """
        extra: Dict[str, Any] = {}
        contact_ids = data.get("contactIds") or []
        if contact_ids:
            extra["regardingobjectid_contact@odata.bind"] = f"/contacts({contact_ids[0]})"
        elif data.get("companyId"):
            extra["regardingobjectid_account@odata.bind"] = f"/accounts({data['companyId']})"
        elif data.get("dealId"):
            extra["regardingobjectid_opportunity@odata.bind"] = f"/opportunities({data['dealId']})"
        return self._create(em.ACTIVITY, data, extra, entity_set="tasks")

    def update_activity(self, activity_id: str, activity_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._update(em.ACTIVITY, activity_id, data, entity_set=entity_set_name(activity_type))

    def delete_activity(self, activity_id: str, activity_type: str) -> None:
        self._delete(em.ACTIVITY, activity_id, entity_set_name(activity_type))

    def complete_activity(self, activity_id: str, activity_type: str) -> None:
        self._set_state(entity_set_name(activity_type), activity_id, 1, 2)

    def cancel_activity(self, activity_id: str, activity_type: str) -> None:
        self._set_state(entity_set_name(activity_type), activity_id, 2, 3)

    def log_call(
        self,
        contact_id: str,
        subject: str,
        notes: Optional[str] = None,
        duration_minutes: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Record a completed outgoing phone call to a contact."""
        body = {
            "subject": subject,
            "description": notes,
            "actualdurationminutes": duration_minutes or 0,
            "phonecall_activity_parties": [
                {"participationtypemask": 2, "partyid_contact@odata.bind": f"/contacts({contact_id})"}
            ],
            "statecode": 1,
            "statuscode": 2,
        }
        created = self.odata.create_entity("/phonecalls", body)
        return self.get_activity(created.id, "phonecall")

    def log_email(self, contact_id: str, subject: str, body: str, direction: str = "sent") -> Dict[str, Any]:
        sent = direction == "sent"
        # mask 1 = sender, 2 = recipient; status 2 = sent, 3 = received
        payload = {
            "subject": subject,
            "description": body,
            "directioncode": sent,
            "email_activity_parties": [
                {
                    "participationtypemask": 2 if sent else 1,
                    "partyid_contact@odata.bind": f"/contacts({contact_id})",
                }
            ],
            "statecode": 1,
            "statuscode": 2 if sent else 3,
        }
        created = self.odata.create_entity("/emails", payload)
        return self.get_activity(created.id, "email")

    def create_appointment(
        self,
        subject: str,
        scheduled_start: str,
        scheduled_end: str,
        description: Optional[str] = None,
        location: Optional[str] = None,
        regarding_id: Optional[str] = None,
        regarding_type: Optional[str] = None,
        required_attendees: Optional[List[str]] = None,
        optional_attendees: Optional[List[str]] = None,
        is_all_day_event: bool = False,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "subject": subject,
            "description": description,
            "location": location,
            "scheduledstart": scheduled_start,
            "scheduledend": scheduled_end,
            "isalldayevent": bool(is_all_day_event),
        }
        body.update(_regarding_bind(regarding_type, regarding_id))
        # mask 5 = required attendee, 6 = optional attendee
        parties = [
            {"participationtypemask": 5, "partyid_systemuser@odata.bind": f"/systemusers({user_id})"}
            for user_id in required_attendees or []
        ]
        parties += [
            {"participationtypemask": 6, "partyid_systemuser@odata.bind": f"/systemusers({user_id})"}
            for user_id in optional_attendees or []
        ]
        if parties:
            body["appointment_activity_parties"] = parties
        created = self.odata.create_entity("/appointments", body)
        return self.get_activity(created.id, "appointment")

    def create_letter(
        self,
        subject: str,
        description: Optional[str] = None,
        address: Optional[str] = None,
        regarding_id: Optional[str] = None,
        regarding_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        body = {"subject": subject, "description": description, "address": address}
        body.update(_regarding_bind(regarding_type, regarding_id))
        created = self.odata.create_entity("/letters", body)
        return self.get_activity(created.id, "letter")

    def create_fax(
        self,
        subject: str,
        description: Optional[str] = None,
        fax_number: Optional[str] = None,
        regarding_id: Optional[str] = None,
        regarding_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        body = {"subject": subject, "description": description, "faxnumber": fax_number}
        body.update(_regarding_bind(regarding_type, regarding_id))
        created = self.odata.create_entity("/faxes", body)
        return self.get_activity(created.id, "fax")

    def get_activity_parties(self, activity_id: str) -> List[Dict[str, Any]]:
        payload = self.odata.get(
            "/activityparties",
            params={
                "$filter": f"_activityid_value eq {activity_id}",
                "$select": "activitypartyid,participationtypemask,_partyid_value,addressused",
            },
        )
        return values(payload)

    # ------------------------------------------------------------------
    # Leads
    # ------------------------------------------------------------------

    def list_leads(self, limit: int = 20, offset: int = 0, cursor: Optional[str] = None) -> Dict[str, Any]:
        return self._list(em.LEAD, limit, offset, cursor)

    def get_lead(self, lead_id: str) -> Dict[str, Any]:
        return self._get(em.LEAD, lead_id)

    def create_lead(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._create(em.LEAD, data)

    def update_lead(self, lead_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._update(em.LEAD, lead_id, data)

    def delete_lead(self, lead_id: str) -> None:
        self._delete(em.LEAD, lead_id)

    def search_leads(self, query: Optional[str] = None, **options: Any) -> Dict[str, Any]:
        return self._search(em.LEAD, ("fullname", "emailaddress1", "companyname"), query, **options)

    def qualify_lead(
        self,
        lead_id: str,
        create_account: bool = True,
        create_contact: bool = True,
        create_opportunity: bool = True,
        status: int = 3,
        opportunity_currency_id: Optional[str] = None,
        opportunity_customer_id: Optional[str] = None,
        source_campaign_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Run the QualifyLead action and report the ids of the records it created.

        Created records are recognized by their ``@odata.type``.
        """
        body: Dict[str, Any] = {
            "CreateAccount": create_account,
            "CreateContact": create_contact,
            "CreateOpportunity": create_opportunity,
            "Status": status,
        }
        if opportunity_currency_id:
            body["OpportunityCurrencyId"] = {
                "@odata.type": "Microsoft.Dynamics.CRM.transactioncurrency",
                "transactioncurrencyid": opportunity_currency_id,
            }
        if opportunity_customer_id:
            body["OpportunityCustomerId"] = {
                "@odata.type": "Microsoft.Dynamics.CRM.account",
                "accountid": opportunity_customer_id,
            }
        if source_campaign_id:
            body["SourceCampaignId"] = {
                "@odata.type": "Microsoft.Dynamics.CRM.campaign",
                "campaignid": source_campaign_id,
            }

        response = self._action("leads", lead_id, "QualifyLead", body) or {}
        result: Dict[str, Any] = {"success": True}
        created = response.get("CreatedEntities") or response.get("value") or []
        for entity in created:
            odata_type = entity.get("@odata.type") or ""
            if "account" in odata_type:
                result["accountId"] = entity.get("accountid")
            elif "contact" in odata_type:
                result["contactId"] = entity.get("contactid")
            elif "opportunity" in odata_type:
                result["opportunityId"] = entity.get("opportunityid")
        return result

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------

    def list_quotes(self, limit: int = 20, offset: int = 0, cursor: Optional[str] = None) -> Dict[str, Any]:
        return self._list(em.QUOTE, limit, offset, cursor)

    def get_quote(self, quote_id: str) -> Dict[str, Any]:
        return self._get(em.QUOTE, quote_id)

    def create_quote(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._create(em.QUOTE, data)

    def update_quote(self, quote_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._update(em.QUOTE, quote_id, data)

    def delete_quote(self, quote_id: str) -> None:
        self._delete(em.QUOTE, quote_id)

    def list_quote_details(self, quote_id: str) -> List[Dict[str, Any]]:
        return self._records(em.QUOTE_DETAIL, filter=f"_quoteid_value eq {quote_id}")

    def add_quote_detail(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._create(em.QUOTE_DETAIL, data)

    def activate_quote(self, quote_id: str) -> None:
        self._action("quotes", quote_id, "ActivateQuote")

    def close_quote(self, quote_id: str, status: str) -> None:
        if status not in QUOTE_CLOSE_STATUS:
            raise ValueError(f"Unknown quote close status: {status}")
        self._action("quotes", quote_id, "CloseQuote", {"Status": QUOTE_CLOSE_STATUS[status]})

    def convert_quote_to_order(self, quote_id: str) -> Dict[str, Any]:
        response = self._action(
            "quotes", quote_id, "ConvertQuoteToSalesOrder", {"ColumnSet": {"AllColumns": True}}
        ) or {}
        return {"salesOrderId": response.get("salesorderid")}

    # ------------------------------------------------------------------
    # Orders (salesorders)
    # ------------------------------------------------------------------

    def list_orders(self, limit: int = 20, offset: int = 0, cursor: Optional[str] = None) -> Dict[str, Any]:
        return self._list(em.ORDER, limit, offset, cursor)

    def get_order(self, order_id: str) -> Dict[str, Any]:
        return self._get(em.ORDER, order_id)

    def create_order(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._create(em.ORDER, data)

    def update_order(self, order_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._update(em.ORDER, order_id, data)

    def delete_order(self, order_id: str) -> None:
        self._delete(em.ORDER, order_id)

    def list_order_details(self, order_id: str) -> List[Dict[str, Any]]:
        return self._records(em.ORDER_DETAIL, filter=f"_salesorderid_value eq {order_id}")

    def add_order_detail(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._create(em.ORDER_DETAIL, data)

    def fulfill_order(self, order_id: str) -> None:
        self._action(
            "salesorders", order_id, "FulfillSalesOrder",
            {"OrderClose": {"subject": "Order fulfilled"}, "Status": -1},
        )

    def cancel_order(self, order_id: str) -> None:
        self._action(
            "salesorders", order_id, "CancelSalesOrder",
            {"OrderClose": {"subject": "Order cancelled"}, "Status": -1},
        )

    def convert_order_to_invoice(self, order_id: str) -> Dict[str, Any]:
        response = self._action(
            "salesorders", order_id, "ConvertSalesOrderToInvoice", {"ColumnSet": {"AllColumns": True}}
        ) or {}
        return {"invoiceId": response.get("invoiceid")}

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    def list_invoices(self, limit: int = 20, offset: int = 0, cursor: Optional[str] = None) -> Dict[str, Any]:
        return self._list(em.INVOICE, limit, offset, cursor)

    def get_invoice(self, invoice_id: str) -> Dict[str, Any]:
        return self._get(em.INVOICE, invoice_id)

    def create_invoice(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._create(em.INVOICE, data)

    def update_invoice(self, invoice_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._update(em.INVOICE, invoice_id, data)

    def delete_invoice(self, invoice_id: str) -> None:
        self._delete(em.INVOICE, invoice_id)

    def lock_invoice_pricing(self, invoice_id: str) -> None:
        self._action("invoices", invoice_id, "LockInvoicePricing")

    def cancel_invoice(self, invoice_id: str) -> None:
        self._set_state("invoices", invoice_id, 4, 100003)

    # ------------------------------------------------------------------
    # Products and price lists
    # ------------------------------------------------------------------

    def list_products(self, limit: int = 20, offset: int = 0, cursor: Optional[str] = None) -> Dict[str, Any]:
        return self._list(em.PRODUCT, limit, offset, cursor)

    def get_product(self, product_id: str) -> Dict[str, Any]:
        return self._get(em.PRODUCT, product_id)

    def create_product(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._create(em.PRODUCT, data)

    def update_product(self, product_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._update(em.PRODUCT, product_id, data)

    def delete_product(self, product_id: str) -> None:
        self._delete(em.PRODUCT, product_id)

    def publish_product(self, product_id: str) -> None:
        self._action("products", product_id, "PublishProductHierarchy")

    def list_price_lists(self, limit: int = 20, offset: int = 0, cursor: Optional[str] = None) -> Dict[str, Any]:
        return self._list(em.PRICE_LEVEL, limit, offset, cursor)

    def get_price_list(self, price_list_id: str) -> Dict[str, Any]:
        return self._get(em.PRICE_LEVEL, price_list_id)

    def create_price_list(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._create(em.PRICE_LEVEL, data)

    def update_price_list(self, price_list_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._update(em.PRICE_LEVEL, price_list_id, data)

    def delete_price_list(self, price_list_id: str) -> None:
        self._delete(em.PRICE_LEVEL, price_list_id)

    # ------------------------------------------------------------------
    # Competitors
    # ------------------------------------------------------------------

    def list_competitors(self, limit: int = 20, offset: int = 0, cursor: Optional[str] = None) -> Dict[str, Any]:
        return self._list(em.COMPETITOR, limit, offset, cursor)

    def get_competitor(self, competitor_id: str) -> Dict[str, Any]:
        return self._get(em.COMPETITOR, competitor_id)

    def create_competitor(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._create(em.COMPETITOR, data)

    def update_competitor(self, competitor_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._update(em.COMPETITOR, competitor_id, data)

    def delete_competitor(self, competitor_id: str) -> None:
        self._delete(em.COMPETITOR, competitor_id)

    def associate_competitor(self, competitor_id: str, opportunity_id: str) -> None:
        self.query.associate(
            "opportunity", opportunity_id, "competitor", competitor_id, "opportunitycompetitors_association"
        )

    def disassociate_competitor(self, competitor_id: str, opportunity_id: str) -> None:
        self.query.disassociate(
            "opportunity", opportunity_id, "competitor", competitor_id, "opportunitycompetitors_association"
        )

    def list_opportunity_competitors(self, opportunity_id: str) -> List[Dict[str, Any]]:
        return self._records(
            em.COMPETITOR, path=f"/opportunities({opportunity_id})/opportunitycompetitors_association"
        )

    # ------------------------------------------------------------------
    # Campaigns
    # ------------------------------------------------------------------

    def list_campaigns(self, limit: int = 20, offset: int = 0, cursor: Optional[str] = None) -> Dict[str, Any]:
        return self._list(em.CAMPAIGN, limit, offset, cursor)

    def get_campaign(self, campaign_id: str) -> Dict[str, Any]:
        return self._get(em.CAMPAIGN, campaign_id)

    def create_campaign(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._create(em.CAMPAIGN, data)

    def update_campaign(self, campaign_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._update(em.CAMPAIGN, campaign_id, data)

    def delete_campaign(self, campaign_id: str) -> None:
        self._delete(em.CAMPAIGN, campaign_id)

    def list_campaign_activities(self, campaign_id: str) -> List[Dict[str, Any]]:
        return self._records(
            em.CAMPAIGN_ACTIVITY, path=f"/campaigns({campaign_id})/Campaign_CampaignActivities"
        )

    def create_campaign_activity(self, campaign_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        body = self._body(
            em.CAMPAIGN_ACTIVITY, data,
            {"regardingobjectid_campaign@odata.bind": f"/campaigns({campaign_id})"},
        )
        return {"id": self.odata.create_entity("/campaignactivities", body).id}

    def list_campaign_responses(self, campaign_id: str) -> List[Dict[str, Any]]:
        return self._records(
            em.CAMPAIGN_RESPONSE, path=f"/campaigns({campaign_id})/Campaign_CampaignResponses"
        )

    def create_campaign_response(self, campaign_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        body = self._body(
            em.CAMPAIGN_RESPONSE, data,
            {"regardingobjectid_campaign@odata.bind": f"/campaigns({campaign_id})"},
        )
        return {"id": self.odata.create_entity("/campaignresponses", body).id}

    def add_campaign_member(self, campaign_id: str, member_type: str, member_id: str) -> None:
        if member_type not in CAMPAIGN_MEMBER_TYPES:
            raise ValueError(f"Campaign members must be one of {', '.join(CAMPAIGN_MEMBER_TYPES)}")
        self.query.associate("campaign", campaign_id, member_type, member_id, f"Campaign_{member_type}s")

    def remove_campaign_member(self, campaign_id: str, member_type: str, member_id: str) -> None:
        if member_type not in CAMPAIGN_MEMBER_TYPES:
            raise ValueError(f"Campaign members must be one of {', '.join(CAMPAIGN_MEMBER_TYPES)}")
        self.query.disassociate("campaign", campaign_id, member_type, member_id, f"Campaign_{member_type}s")

    # ------------------------------------------------------------------
    # Cases (incidents)
    # ------------------------------------------------------------------

    def list_cases(self, limit: int = 20, offset: int = 0, cursor: Optional[str] = None) -> Dict[str, Any]:
        return self._list(em.CASE, limit, offset, cursor)

    def get_case(self, case_id: str) -> Dict[str, Any]:
        return self._get(em.CASE, case_id)

    def create_case(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._create(em.CASE, data)

    def update_case(self, case_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._update(em.CASE, case_id, data)

    def delete_case(self, case_id: str) -> None:
        self._delete(em.CASE, case_id)

    def resolve_case(
        self,
        case_id: str,
        subject: str,
        description: Optional[str] = None,
        time_spent: Optional[int] = None,
    ) -> None:
        resolution: Dict[str, Any] = {
            "subject": subject,
            "incidentid@odata.bind": f"/incidents({case_id})",
        }
        if description is not None:
            resolution["description"] = description
        if time_spent is not None:
            resolution["timespent"] = time_spent
        self._action("incidents", case_id, "CloseIncident", {"IncidentResolution": resolution, "Status": -1})

    def cancel_case(self, case_id: str) -> None:
        self._set_state("incidents", case_id, 2, 6)

    def reactivate_case(self, case_id: str) -> None:
        self._set_state("incidents", case_id, 0, 1)

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------

    def list_goals(self, limit: int = 20, offset: int = 0, cursor: Optional[str] = None) -> Dict[str, Any]:
        return self._list(em.GOAL, limit, offset, cursor)

    def get_goal(self, goal_id: str) -> Dict[str, Any]:
        return self._get(em.GOAL, goal_id)

    def create_goal(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._create(em.GOAL, data)

    def update_goal(self, goal_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._update(em.GOAL, goal_id, data)

    def delete_goal(self, goal_id: str) -> None:
        self._delete(em.GOAL, goal_id)

    def recalculate_goal(self, goal_id: str) -> None:
        self._action("goals", goal_id, "Recalculate")

    def list_goal_metrics(self, limit: int = 20, offset: int = 0, cursor: Optional[str] = None) -> Dict[str, Any]:
        return self._list(em.GOAL_METRIC, limit, offset, cursor)

    def get_goal_metric(self, metric_id: str) -> Dict[str, Any]:
        return self._get(em.GOAL_METRIC, metric_id)

    # ------------------------------------------------------------------
    # Notes (annotations)
    # ------------------------------------------------------------------

    def list_notes(
        self,
        limit: int = 20,
        offset: int = 0,
        cursor: Optional[str] = None,
        regarding_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        flt = f"_objectid_value eq {regarding_id}" if regarding_id else None
        return self._list(em.NOTE, limit, offset, cursor, filter=flt)

    def get_note(self, note_id: str) -> Dict[str, Any]:
        return self._get(em.NOTE, note_id)

    def create_note(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Attach a note to a record given by ``regardingEntityType``/``regardingId``
        (or ``objectType``/``objectId``). A file name or body makes it a document.
        """
        extra: Dict[str, Any] = {"isdocument": bool(data.get("fileName") or data.get("documentBody"))}
        object_type = data.get("regardingEntityType") or data.get("objectType")
        object_id = data.get("regardingId") or data.get("objectId")
        if object_type and object_id:
            extra[f"objectid_{object_type}@odata.bind"] = f"/{entity_set_name(object_type)}({object_id})"
        return self._create(em.NOTE, data, extra)

    def update_note(self, note_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        extra = {"isdocument": True} if "documentBody" in data else None
        return self._update(em.NOTE, note_id, data, extra)

    def delete_note(self, note_id: str) -> None:
        self._delete(em.NOTE, note_id)

    def get_note_attachment(self, note_id: str) -> Dict[str, Any]:
        note = self.odata.get(
            f"/annotations({note_id})", params={"$select": "filename,mimetype,documentbody,filesize"}
        ) or {}
        return {
            "fileName": note.get("filename") or "",
            "mimeType": note.get("mimetype") or "",
            "documentBody": note.get("documentbody") or "",
            "fileSize": note.get("filesize") or 0,
        }

    def list_entity_notes(self, entity_type: str, entity_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        # entity_type is informational; _objectid_value is polymorphic
        return self._records(
            em.NOTE, filter=f"_objectid_value eq {entity_id}", limit=limit, order_by="createdon desc"
        )

    def add_attachment_to_note(self, note_id: str, file_name: str, mime_type: str, document_body: str) -> None:
        self.odata.patch(
            f"/annotations({note_id})",
            {"isdocument": True, "filename": file_name, "mimetype": mime_type, "documentbody": document_body},
        )

    def remove_attachment_from_note(self, note_id: str) -> None:
        self.odata.patch(
            f"/annotations({note_id})",
            {"isdocument": False, "filename": None, "mimetype": None, "documentbody": None},
        )

    def search_notes(self, query: str, limit: int = 20) -> List[Dict[str, Any]]:
        return self._records(
            em.NOTE,
            filter=f"contains(subject,'{query}') or contains(notetext,'{query}')",
            limit=limit,
            order_by="createdon desc",
        )

    # ------------------------------------------------------------------
    # Users, teams, business units
    # ------------------------------------------------------------------

    def list_users(
        self,
        limit: int = 20,
        offset: int = 0,
        cursor: Optional[str] = None,
        active_only: bool = True,
    ) -> Dict[str, Any]:
        flt = "isdisabled eq false" if active_only else None
        return self._list(em.SYSTEM_USER, limit, offset, cursor, filter=flt)

    def get_user(self, user_id: str) -> Dict[str, Any]:
        return self._get(em.SYSTEM_USER, user_id)

    def search_users(self, query: Optional[str] = None, limit: int = 20) -> List[Dict[str, Any]]:
        flt = "isdisabled eq false"
        if query:
            flt += f" and (contains(fullname,'{query}') or contains(internalemailaddress,'{query}'))"
        return self._records(em.SYSTEM_USER, filter=flt, limit=limit, order_by=em.SYSTEM_USER.order_by)

    def list_teams(self, limit: int = 20, offset: int = 0, cursor: Optional[str] = None) -> Dict[str, Any]:
        return self._list(em.TEAM, limit, offset, cursor)

    def get_team(self, team_id: str) -> Dict[str, Any]:
        return self._get(em.TEAM, team_id)

    def create_team(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._create(em.TEAM, data)

    def update_team(self, team_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._update(em.TEAM, team_id, data)

    def delete_team(self, team_id: str) -> None:
        self._delete(em.TEAM, team_id)

    def add_team_member(self, team_id: str, user_id: str) -> None:
        self.query.associate("team", team_id, "systemuser", user_id, "teammembership_association")

    def remove_team_member(self, team_id: str, user_id: str) -> None:
        self.query.disassociate("team", team_id, "systemuser", user_id, "teammembership_association")

    def list_team_members(self, team_id: str) -> List[Dict[str, Any]]:
        return self._records(em.SYSTEM_USER, path=f"/teams({team_id})/teammembership_association")

    def list_business_units(self, limit: int = 20, offset: int = 0, cursor: Optional[str] = None) -> Dict[str, Any]:
        return self._list(em.BUSINESS_UNIT, limit, offset, cursor, filter="isdisabled eq false")

    def get_business_unit(self, business_unit_id: str) -> Dict[str, Any]:
        return self._get(em.BUSINESS_UNIT, business_unit_id)
