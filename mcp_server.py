# mcp_server.py
from __future__ import annotations

import asyncio
import functools
import json
import logging
import threading
from collections import OrderedDict
from typing import Annotated, Any, Callable, Dict, List, Literal, Mapping, Optional, Union

from mcp.server.fastmcp import FastMCP
from pydantic import BaseModel, Field
from starlette.requests import Request
from starlette.responses import JSONResponse

from config import TenantCredentials, settings
from dynamics_client import DynamicsClient
from errors import CrmApiError, CrmError, RateLimitError
from log_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)

SERVICE_NAME = "dynamics-crm-mcp"


def _json_ready(x: Any) -> Any:
    """Convert pydantic models and containers to JSON-serialisable structures."""
    if x is None or isinstance(x, (str, int, float, bool)):
        return x
    if isinstance(x, (list, tuple)):
        return [_json_ready(i) for i in x]
    if isinstance(x, dict):
        return {k: _json_ready(v) for k, v in x.items()}
    if hasattr(x, "model_dump"):
        return _json_ready(x.model_dump())
    return repr(x)


def _shorten(data: Any, limit: int = 500) -> str:
    try:
        txt = json.dumps(_json_ready(data), ensure_ascii=False)
    except (TypeError, ValueError):
        txt = repr(data)
    if len(txt) > limit:
        return txt[:limit] + "..."
    return txt


def logged_tool(func):
    """Decorator to log tool calls and results."""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        logger.info(
            "MCP tool %s called with %s",
            func.__name__,
            _shorten({"args": args, "kwargs": kwargs}),
        )
        res = await func(*args, **kwargs)
        logger.info("MCP tool %s result %s", func.__name__, _shorten(res))
        return res

    return wrapper


# ------------------------------------------------------------------
# Tenant clients and the response envelope
# ------------------------------------------------------------------

mcp = FastMCP(SERVICE_NAME, host=settings.MCP_HOST, port=settings.MCP_PORT)

# One adapter (and token cache) per recently used credential set, least recently used first
_clients: "OrderedDict[str, DynamicsClient]" = OrderedDict()
_clients_lock = threading.Lock()


def _request_headers() -> Optional[Mapping[str, str]]:
    """Inbound HTTP headers of the current tool call; None under stdio or outside a request."""
    try:
        request = mcp.get_context().request_context.request
    except (AttributeError, LookupError, ValueError):
        return None
    return getattr(request, "headers", None)


def _client() -> DynamicsClient:
    creds = TenantCredentials.from_headers(_request_headers()) or settings.default_credentials()
    key = creds.cache_key()
    with _clients_lock:
        client = _clients.get(key)
        if client is not None:
            _clients.move_to_end(key)
            return client

    logger.info(f"Creating Dynamics 365 client for {creds.environment_url or '<no environment>'} ({creds.mode})")
    client = DynamicsClient.from_credentials(creds)
    evicted: List[DynamicsClient] = []
    with _clients_lock:
        # a concurrent call may have cached the same credential set first
        existing = _clients.get(key)
        if existing is not None:
            evicted.append(client)
            client = existing
        else:
            _clients[key] = client
        _clients.move_to_end(key)
        while len(_clients) > max(settings.MCP_CLIENT_CACHE_SIZE, 1):
            _, old = _clients.popitem(last=False)
            evicted.append(old)
    for old in evicted:
        old.close()
    if evicted:
        logger.debug(f"Evicted {len(evicted)} cached Dynamics 365 client(s)")
    return client


def _error_envelope(exc: Exception) -> Dict[str, Any]:
    envelope: Dict[str, Any] = {
        "success": False,
        "message": getattr(exc, "message", None) or str(exc) or exc.__class__.__name__,
        "errorType": exc.__class__.__name__,
    }
    if isinstance(exc, RateLimitError):
        envelope["retryAfterSeconds"] = exc.retry_after_seconds
    if isinstance(exc, CrmApiError) and exc.status_code is not None:
        envelope["statusCode"] = exc.status_code
    return envelope


async def _run(
    call: Callable[[DynamicsClient], Any],
    key: str = "data",
    message: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Run a blocking client call in a worker thread and wrap the outcome.

    Success: ``{"success": true, <key>: data, "message"?: ...}``.
    Failure: ``{"success": false, "message", "errorType", ...}``; nothing is raised.
    """
    try:
        client = _client()
        data = await asyncio.to_thread(call, client)
    except CrmError as exc:
        logger.warning(f"{exc.__class__.__name__}: {exc.message}")
        return _error_envelope(exc)
    except Exception as exc:
        logger.exception("Unexpected error while executing a Dynamics 365 tool")
        return _error_envelope(exc)

    envelope: Dict[str, Any] = {"success": True}
    if message:
        envelope["message"] = message
    if data is not None:
        envelope[key] = _json_ready(data)
    return envelope


def _present(**fields: Any) -> Dict[str, Any]:
    """Keep only the arguments the caller actually supplied."""
    return {k: v for k, v in fields.items() if v is not None}


@mcp.custom_route("/health", methods=["GET"])
async def health(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok", "service": SERVICE_NAME})


# ------------------------------------------------------------------
# Argument schemas
# ------------------------------------------------------------------

Limit = Annotated[int, Field(description="Page size (1-100)", ge=1, le=100)]
Offset = Annotated[int, Field(description="Number of records to skip", ge=0)]
Cursor = Annotated[Optional[str], Field(description="nextCursor of a previous page; overrides limit/offset")]
RecordId = Annotated[str, Field(description="Record GUID", min_length=1, max_length=64)]
Text = Annotated[Optional[str], Field(description="Free text")]
CustomFields = Annotated[
    Optional[Dict[str, Any]],
    Field(description="Raw Dynamics attributes merged into the request body last"),
]
SortOrder = Literal["asc", "desc"]
ActivityType = Literal["task", "phonecall", "email", "appointment", "letter", "fax"]
MemberType = Literal["contact", "lead", "account"]


class SearchFilter(BaseModel):
    field: str = Field(description="Dynamics attribute logical name, e.g. jobtitle")
    operator: Literal["eq", "contains", "starts_with"] = "eq"
    value: Union[str, int, float, bool]


class BatchUpdateItem(BaseModel):
    id: str
    data: Dict[str, Any]


class BatchUpsertItem(BaseModel):
    id: Optional[str] = None
    alternateKey: Optional[Dict[str, str]] = Field(
        default=None, description="Alternate key columns, e.g. {\"accountnumber\": \"A-1\"}"
    )
    data: Dict[str, Any]


Filters = Annotated[Optional[List[SearchFilter]], Field(description="Extra attribute filters, combined with AND")]


def _filters(filters: Optional[List[SearchFilter]]) -> Optional[List[Dict[str, Any]]]:
    if not filters:
        return None
    return [f.model_dump() for f in filters]


def _address(**parts: Any) -> Optional[Dict[str, Any]]:
    return _present(**parts) or None


# ------------------------------------------------------------------
# Connection
# ------------------------------------------------------------------

@mcp.tool()
@logged_tool
async def dynamics_test_connection() -> Dict[str, Any]:
    """Check that the configured Dynamics 365 environment answers WhoAmI."""
    return await _run(lambda c: c.test_connection())


@mcp.tool()
@logged_tool
async def dynamics_get_current_user() -> Dict[str, Any]:
    """Return the system user the adapter is authenticated as."""
    return await _run(lambda c: c.get_current_user())


# ------------------------------------------------------------------
# Contacts
# ------------------------------------------------------------------

@mcp.tool()
@logged_tool
async def dynamics_list_contacts(limit: Limit = 20, offset: Offset = 0, cursor: Cursor = None) -> Dict[str, Any]:
    """
    List contacts, most recently modified first.
    Returns data: {items, count, total?, hasMore, nextCursor?}. Pass nextCursor back as cursor.
    """
    return await _run(lambda c: c.list_contacts(limit, offset, cursor))


@mcp.tool()
@logged_tool
async def dynamics_get_contact(contact_id: RecordId) -> Dict[str, Any]:
    """Get one contact by id."""
    return await _run(lambda c: c.get_contact(contact_id))


@mcp.tool()
@logged_tool
async def dynamics_create_contact(
    first_name: Text = None,
    last_name: Text = None,
    email: Text = None,
    phone: Text = None,
    mobile_phone: Text = None,
    title: Annotated[Optional[str], Field(description="Job title")] = None,
    department: Text = None,
    company_id: Annotated[Optional[str], Field(description="Parent account id")] = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Create a contact, optionally linked to a company (account)."""
    data = _present(
        firstName=first_name, lastName=last_name, email=email, phone=phone,
        mobilePhone=mobile_phone, title=title, department=department,
        companyId=company_id, customFields=custom_fields,
    )
    return await _run(lambda c: c.create_contact(data))


@mcp.tool()
@logged_tool
async def dynamics_update_contact(
    contact_id: RecordId,
    first_name: Text = None,
    last_name: Text = None,
    email: Text = None,
    phone: Text = None,
    mobile_phone: Text = None,
    title: Text = None,
    department: Text = None,
    company_id: Annotated[Optional[str], Field(description="Parent account id; empty string clears it")] = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Update only the supplied contact fields."""
    data = _present(
        firstName=first_name, lastName=last_name, email=email, phone=phone,
        mobilePhone=mobile_phone, title=title, department=department,
        companyId=company_id, customFields=custom_fields,
    )
    return await _run(lambda c: c.update_contact(contact_id, data))


@mcp.tool()
@logged_tool
async def dynamics_delete_contact(contact_id: RecordId) -> Dict[str, Any]:
    """Delete a contact."""
    return await _run(lambda c: c.delete_contact(contact_id), message=f"Contact {contact_id} deleted")


@mcp.tool()
@logged_tool
async def dynamics_search_contacts(
    query: Annotated[Optional[str], Field(description="Matched against full name and email")] = None,
    filters: Filters = None,
    sort_by: Annotated[Optional[str], Field(description="Attribute to sort by")] = None,
    sort_order: SortOrder = "asc",
    limit: Limit = 20,
    offset: Offset = 0,
) -> Dict[str, Any]:
    """Search contacts by name/email text plus optional attribute filters."""
    return await _run(
        lambda c: c.search_contacts(
            query, filters=_filters(filters), sort_by=sort_by, sort_order=sort_order, limit=limit, offset=offset
        )
    )


# ------------------------------------------------------------------
# Companies
# ------------------------------------------------------------------

@mcp.tool()
@logged_tool
async def dynamics_list_companies(limit: Limit = 20, offset: Offset = 0, cursor: Cursor = None) -> Dict[str, Any]:
    """List companies (accounts), most recently modified first."""
    return await _run(lambda c: c.list_companies(limit, offset, cursor))


@mcp.tool()
@logged_tool
async def dynamics_get_company(company_id: RecordId) -> Dict[str, Any]:
    """Get one company by id."""
    return await _run(lambda c: c.get_company(company_id))


@mcp.tool()
@logged_tool
async def dynamics_create_company(
    name: Annotated[str, Field(description="Company name", min_length=1)],
    website: Text = None,
    industry: Annotated[Optional[str], Field(description="Numeric industry code")] = None,
    description: Text = None,
    number_of_employees: Optional[int] = None,
    annual_revenue: Optional[float] = None,
    phone: Text = None,
    email: Text = None,
    street: Text = None,
    city: Text = None,
    state: Text = None,
    postal_code: Text = None,
    country: Text = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Create a company (account)."""
    data = _present(
        name=name, website=website, industry=industry, description=description,
        numberOfEmployees=number_of_employees, annualRevenue=annual_revenue,
        phone=phone, email=email,
        address=_address(street=street, city=city, state=state, postalCode=postal_code, country=country),
        customFields=custom_fields,
    )
    return await _run(lambda c: c.create_company(data))


@mcp.tool()
@logged_tool
async def dynamics_update_company(
    company_id: RecordId,
    name: Text = None,
    website: Text = None,
    industry: Annotated[Optional[str], Field(description="Numeric industry code")] = None,
    description: Text = None,
    number_of_employees: Optional[int] = None,
    annual_revenue: Optional[float] = None,
    phone: Text = None,
    email: Text = None,
    street: Text = None,
    city: Text = None,
    state: Text = None,
    postal_code: Text = None,
    country: Text = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Update only the supplied company fields."""
    data = _present(
        name=name, website=website, industry=industry, description=description,
        numberOfEmployees=number_of_employees, annualRevenue=annual_revenue,
        phone=phone, email=email,
        address=_address(street=street, city=city, state=state, postalCode=postal_code, country=country),
        customFields=custom_fields,
    )
    return await _run(lambda c: c.update_company(company_id, data))


@mcp.tool()
@logged_tool
async def dynamics_delete_company(company_id: RecordId) -> Dict[str, Any]:
    """Delete a company."""
    return await _run(lambda c: c.delete_company(company_id), message=f"Company {company_id} deleted")


@mcp.tool()
@logged_tool
async def dynamics_search_companies(
    query: Annotated[Optional[str], Field(description="Matched against name, email and website")] = None,
    filters: Filters = None,
    sort_by: Optional[str] = None,
    sort_order: SortOrder = "asc",
    limit: Limit = 20,
    offset: Offset = 0,
) -> Dict[str, Any]:
    """Search companies by text plus optional attribute filters."""
    return await _run(
        lambda c: c.search_companies(
            query, filters=_filters(filters), sort_by=sort_by, sort_order=sort_order, limit=limit, offset=offset
        )
    )


# ------------------------------------------------------------------
# Deals and pipelines
# ------------------------------------------------------------------

DealStatus = Literal["open", "won", "lost"]


@mcp.tool()
@logged_tool
async def dynamics_list_deals(limit: Limit = 20, offset: Offset = 0, cursor: Cursor = None) -> Dict[str, Any]:
    """List deals (opportunities), most recently modified first."""
    return await _run(lambda c: c.list_deals(limit, offset, cursor))


@mcp.tool()
@logged_tool
async def dynamics_get_deal(deal_id: RecordId) -> Dict[str, Any]:
    """Get one deal by id."""
    return await _run(lambda c: c.get_deal(deal_id))


@mcp.tool()
@logged_tool
async def dynamics_create_deal(
    name: Annotated[str, Field(description="Deal name", min_length=1)],
    amount: Annotated[Optional[float], Field(description="Estimated value")] = None,
    stage: Annotated[Optional[str], Field(description="Pipeline stage name")] = None,
    close_date: Annotated[Optional[str], Field(description="Estimated close date (YYYY-MM-DD)")] = None,
    probability: Annotated[Optional[int], Field(ge=0, le=100)] = None,
    company_id: Annotated[Optional[str], Field(description="Parent account id")] = None,
    description: Text = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Create a deal (opportunity)."""
    data = _present(
        name=name, amount=amount, stage=stage, closeDate=close_date, probability=probability,
        companyId=company_id, description=description, customFields=custom_fields,
    )
    return await _run(lambda c: c.create_deal(data))


@mcp.tool()
@logged_tool
async def dynamics_update_deal(
    deal_id: RecordId,
    name: Text = None,
    amount: Optional[float] = None,
    stage: Text = None,
    close_date: Text = None,
    probability: Annotated[Optional[int], Field(ge=0, le=100)] = None,
    company_id: Text = None,
    description: Text = None,
    status: Annotated[Optional[DealStatus], Field(description="open, won or lost")] = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Update only the supplied deal fields; status moves the deal's state."""
    data = _present(
        name=name, amount=amount, stage=stage, closeDate=close_date, probability=probability,
        companyId=company_id, description=description, status=status, customFields=custom_fields,
    )
    return await _run(lambda c: c.update_deal(deal_id, data))


@mcp.tool()
@logged_tool
async def dynamics_delete_deal(deal_id: RecordId) -> Dict[str, Any]:
    """Delete a deal."""
    return await _run(lambda c: c.delete_deal(deal_id), message=f"Deal {deal_id} deleted")


@mcp.tool()
@logged_tool
async def dynamics_search_deals(
    query: Annotated[Optional[str], Field(description="Matched against the deal name")] = None,
    filters: Filters = None,
    sort_by: Optional[str] = None,
    sort_order: SortOrder = "asc",
    limit: Limit = 20,
    offset: Offset = 0,
) -> Dict[str, Any]:
    """Search deals by name plus optional attribute filters."""
    return await _run(
        lambda c: c.search_deals(
            query, filters=_filters(filters), sort_by=sort_by, sort_order=sort_order, limit=limit, offset=offset
        )
    )


@mcp.tool()
@logged_tool
async def dynamics_move_deal_stage(
    deal_id: RecordId,
    stage: Annotated[str, Field(description="Target stage name", min_length=1)],
) -> Dict[str, Any]:
    """Move a deal to another pipeline stage."""
    return await _run(lambda c: c.move_deal_stage(deal_id, stage))


@mcp.tool()
@logged_tool
async def dynamics_list_pipelines() -> Dict[str, Any]:
    """List active business process flows with their stages."""
    return await _run(lambda c: c.list_pipelines())


# ------------------------------------------------------------------
# Activities
# ------------------------------------------------------------------

@mcp.tool()
@logged_tool
async def dynamics_list_activities(
    limit: Limit = 20,
    offset: Offset = 0,
    cursor: Cursor = None,
    record_id: Annotated[Optional[str], Field(description="Only activities regarding this record")] = None,
) -> Dict[str, Any]:
    """List activities of every type, most recently modified first."""
    return await _run(lambda c: c.list_activities(limit, offset, cursor, record_id))


@mcp.tool()
@logged_tool
async def dynamics_list_activities_by_type(
    activity_type: ActivityType,
    limit: Limit = 20,
    offset: Offset = 0,
    cursor: Cursor = None,
    regarding_id: Annotated[Optional[str], Field(description="Only activities regarding this record")] = None,
) -> Dict[str, Any]:
    """List activities of one type, newest first."""
    return await _run(lambda c: c.list_activities_by_type(activity_type, limit, offset, cursor, regarding_id))


@mcp.tool()
@logged_tool
async def dynamics_get_activity(
    activity_id: RecordId,
    activity_type: Annotated[Optional[ActivityType], Field(description="Omit to read through activitypointers")] = None,
) -> Dict[str, Any]:
    """Get one activity by id."""
    return await _run(lambda c: c.get_activity(activity_id, activity_type))


@mcp.tool()
@logged_tool
async def dynamics_create_activity(
    subject: Annotated[str, Field(min_length=1)],
    body: Text = None,
    due_date: Annotated[Optional[str], Field(description="ISO 8601 due date")] = None,
    contact_ids: Annotated[Optional[List[str]], Field(description="The first contact becomes the regarding record")] = None,
    company_id: Text = None,
    deal_id: Text = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """
    Create a task. Regarding record: first contact, else company, else deal.
    """
    data = _present(
        subject=subject, body=body, dueDate=due_date, contactIds=contact_ids,
        companyId=company_id, dealId=deal_id, customFields=custom_fields,
    )
    return await _run(lambda c: c.create_activity(data))


@mcp.tool()
@logged_tool
async def dynamics_update_activity(
    activity_id: RecordId,
    activity_type: ActivityType,
    subject: Text = None,
    description: Text = None,
    scheduled_start: Text = None,
    scheduled_end: Text = None,
    priority_code: Optional[int] = None,
) -> Dict[str, Any]:
    """Update only the supplied activity fields."""
    data = _present(
        subject=subject, body=description, activityDate=scheduled_start,
        dueDate=scheduled_end, priorityCode=priority_code,
    )
    return await _run(lambda c: c.update_activity(activity_id, activity_type, data))


@mcp.tool()
@logged_tool
async def dynamics_delete_activity(activity_id: RecordId, activity_type: ActivityType) -> Dict[str, Any]:
    """Delete an activity."""
    return await _run(
        lambda c: c.delete_activity(activity_id, activity_type), message=f"Activity {activity_id} deleted"
    )


@mcp.tool()
@logged_tool
async def dynamics_complete_activity(activity_id: RecordId, activity_type: ActivityType) -> Dict[str, Any]:
    """Mark an activity completed."""
    return await _run(
        lambda c: c.complete_activity(activity_id, activity_type), message=f"Activity {activity_id} completed"
    )


@mcp.tool()
@logged_tool
async def dynamics_cancel_activity(activity_id: RecordId, activity_type: ActivityType) -> Dict[str, Any]:
    """Cancel an activity."""
    return await _run(
        lambda c: c.cancel_activity(activity_id, activity_type), message=f"Activity {activity_id} cancelled"
    )


@mcp.tool()
@logged_tool
async def dynamics_log_call(
    contact_id: RecordId,
    subject: Annotated[str, Field(min_length=1)],
    notes: Text = None,
    duration_minutes: Annotated[Optional[int], Field(ge=0)] = None,
) -> Dict[str, Any]:
    """Log a completed phone call with a contact."""
    return await _run(lambda c: c.log_call(contact_id, subject, notes, duration_minutes))


@mcp.tool()
@logged_tool
async def dynamics_log_email(
    contact_id: RecordId,
    subject: Annotated[str, Field(min_length=1)],
    body: Annotated[str, Field(description="Email body")],
    direction: Literal["sent", "received"] = "sent",
) -> Dict[str, Any]:
    """Log an email sent to or received from a contact."""
    return await _run(lambda c: c.log_email(contact_id, subject, body, direction))


@mcp.tool()
@logged_tool
async def dynamics_create_appointment(
    subject: Annotated[str, Field(min_length=1)],
    scheduled_start: Annotated[str, Field(description="ISO 8601 start")],
    scheduled_end: Annotated[str, Field(description="ISO 8601 end")],
    description: Text = None,
    location: Text = None,
    regarding_id: Text = None,
    regarding_type: Annotated[Optional[str], Field(description="Logical name of the regarding record, e.g. account")] = None,
    required_attendees: Annotated[Optional[List[str]], Field(description="System user ids")] = None,
    optional_attendees: Annotated[Optional[List[str]], Field(description="System user ids")] = None,
    is_all_day_event: bool = False,
) -> Dict[str, Any]:
    """Create an appointment, optionally regarding a record and with user attendees."""
    return await _run(
        lambda c: c.create_appointment(
            subject, scheduled_start, scheduled_end, description, location,
            regarding_id, regarding_type, required_attendees, optional_attendees, is_all_day_event,
        )
    )


@mcp.tool()
@logged_tool
async def dynamics_create_letter(
    subject: Annotated[str, Field(min_length=1)],
    description: Text = None,
    address: Text = None,
    regarding_id: Text = None,
    regarding_type: Text = None,
) -> Dict[str, Any]:
    """Create a letter activity."""
    return await _run(lambda c: c.create_letter(subject, description, address, regarding_id, regarding_type))


@mcp.tool()
@logged_tool
async def dynamics_create_fax(
    subject: Annotated[str, Field(min_length=1)],
    description: Text = None,
    fax_number: Text = None,
    regarding_id: Text = None,
    regarding_type: Text = None,
) -> Dict[str, Any]:
    """Create a fax activity."""
    return await _run(lambda c: c.create_fax(subject, description, fax_number, regarding_id, regarding_type))


@mcp.tool()
@logged_tool
async def dynamics_get_activity_parties(activity_id: RecordId) -> Dict[str, Any]:
    """List the parties (senders, recipients, attendees) of an activity."""
    return await _run(lambda c: c.get_activity_parties(activity_id))


# ------------------------------------------------------------------
# Leads
# ------------------------------------------------------------------

@mcp.tool()
@logged_tool
async def dynamics_list_leads(limit: Limit = 20, offset: Offset = 0, cursor: Cursor = None) -> Dict[str, Any]:
    """List leads, newest first."""
    return await _run(lambda c: c.list_leads(limit, offset, cursor))


@mcp.tool()
@logged_tool
async def dynamics_get_lead(lead_id: RecordId) -> Dict[str, Any]:
    """Get one lead by id."""
    return await _run(lambda c: c.get_lead(lead_id))


def _lead_data(**fields: Any) -> Dict[str, Any]:
    parts = {k: fields.pop(k) for k in ("street", "city", "state", "postalCode", "country")}
    return _present(address=_address(**parts), **fields)


@mcp.tool()
@logged_tool
async def dynamics_create_lead(
    subject: Annotated[str, Field(description="Topic of the lead", min_length=1)],
    first_name: Text = None,
    last_name: Text = None,
    email: Text = None,
    phone: Text = None,
    mobile_phone: Text = None,
    company_name: Text = None,
    job_title: Text = None,
    website: Text = None,
    description: Text = None,
    street: Text = None,
    city: Text = None,
    state: Text = None,
    postal_code: Text = None,
    country: Text = None,
    lead_source: Optional[int] = None,
    lead_quality: Optional[int] = None,
    industry_code: Optional[int] = None,
    revenue: Optional[float] = None,
    number_of_employees: Optional[int] = None,
    owner_id: Annotated[Optional[str], Field(description="Owning system user id")] = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Create a lead."""
    data = _lead_data(
        subject=subject, firstName=first_name, lastName=last_name, email=email, phone=phone,
        mobilePhone=mobile_phone, companyName=company_name, jobTitle=job_title, website=website,
        description=description, street=street, city=city, state=state, postalCode=postal_code,
        country=country, leadSource=lead_source, leadQuality=lead_quality, industryCode=industry_code,
        revenue=revenue, numberOfEmployees=number_of_employees, ownerId=owner_id, customFields=custom_fields,
    )
    return await _run(lambda c: c.create_lead(data))


@mcp.tool()
@logged_tool
async def dynamics_update_lead(
    lead_id: RecordId,
    subject: Text = None,
    first_name: Text = None,
    last_name: Text = None,
    email: Text = None,
    phone: Text = None,
    mobile_phone: Text = None,
    company_name: Text = None,
    job_title: Text = None,
    website: Text = None,
    description: Text = None,
    street: Text = None,
    city: Text = None,
    state: Text = None,
    postal_code: Text = None,
    country: Text = None,
    lead_source: Optional[int] = None,
    lead_quality: Optional[int] = None,
    industry_code: Optional[int] = None,
    revenue: Optional[float] = None,
    number_of_employees: Optional[int] = None,
    owner_id: Text = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Update only the supplied lead fields."""
    data = _lead_data(
        subject=subject, firstName=first_name, lastName=last_name, email=email, phone=phone,
        mobilePhone=mobile_phone, companyName=company_name, jobTitle=job_title, website=website,
        description=description, street=street, city=city, state=state, postalCode=postal_code,
        country=country, leadSource=lead_source, leadQuality=lead_quality, industryCode=industry_code,
        revenue=revenue, numberOfEmployees=number_of_employees, ownerId=owner_id, customFields=custom_fields,
    )
    return await _run(lambda c: c.update_lead(lead_id, data))


@mcp.tool()
@logged_tool
async def dynamics_delete_lead(lead_id: RecordId) -> Dict[str, Any]:
    """Delete a lead."""
    return await _run(lambda c: c.delete_lead(lead_id), message=f"Lead {lead_id} deleted")


@mcp.tool()
@logged_tool
async def dynamics_search_leads(
    query: Annotated[Optional[str], Field(description="Matched against name, email and company name")] = None,
    filters: Filters = None,
    sort_by: Optional[str] = None,
    sort_order: SortOrder = "asc",
    limit: Limit = 20,
    offset: Offset = 0,
) -> Dict[str, Any]:
    """Search leads by text plus optional attribute filters."""
    return await _run(
        lambda c: c.search_leads(
            query, filters=_filters(filters), sort_by=sort_by, sort_order=sort_order, limit=limit, offset=offset
        )
    )


@mcp.tool()
@logged_tool
async def dynamics_qualify_lead(
    lead_id: RecordId,
    create_account: bool = True,
    create_contact: bool = True,
    create_opportunity: bool = True,
    status: Annotated[int, Field(description="Lead status reason after qualification")] = 3,
    opportunity_currency_id: Text = None,
    opportunity_customer_id: Annotated[Optional[str], Field(description="Existing account for the new opportunity")] = None,
    source_campaign_id: Text = None,
) -> Dict[str, Any]:
    """Qualify a lead; returns the ids of the account, contact and opportunity created."""
    return await _run(
        lambda c: c.qualify_lead(
            lead_id, create_account, create_contact, create_opportunity, status,
            opportunity_currency_id, opportunity_customer_id, source_campaign_id,
        )
    )


# ------------------------------------------------------------------
# Quotes
# ------------------------------------------------------------------

@mcp.tool()
@logged_tool
async def dynamics_list_quotes(limit: Limit = 20, offset: Offset = 0, cursor: Cursor = None) -> Dict[str, Any]:
    """List quotes, newest first."""
    return await _run(lambda c: c.list_quotes(limit, offset, cursor))


@mcp.tool()
@logged_tool
async def dynamics_get_quote(quote_id: RecordId) -> Dict[str, Any]:
    """Get one quote by id."""
    return await _run(lambda c: c.get_quote(quote_id))


@mcp.tool()
@logged_tool
async def dynamics_create_quote(
    name: Annotated[str, Field(min_length=1)],
    customer_account_id: Annotated[Optional[str], Field(description="Customer account id")] = None,
    opportunity_id: Text = None,
    price_level_id: Annotated[Optional[str], Field(description="Price list id")] = None,
    currency_id: Text = None,
    description: Text = None,
    effective_from: Text = None,
    effective_to: Text = None,
    freight_amount: Optional[float] = None,
    discount_percentage: Optional[float] = None,
    discount_amount: Optional[float] = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Create a draft quote."""
    data = _present(
        name=name, customerAccountId=customer_account_id, opportunityId=opportunity_id,
        priceLevelId=price_level_id, currencyId=currency_id, description=description,
        effectiveFrom=effective_from, effectiveTo=effective_to, freightAmount=freight_amount,
        discountPercentage=discount_percentage, discountAmount=discount_amount, customFields=custom_fields,
    )
    return await _run(lambda c: c.create_quote(data))


@mcp.tool()
@logged_tool
async def dynamics_update_quote(
    quote_id: RecordId,
    name: Text = None,
    description: Text = None,
    effective_from: Text = None,
    effective_to: Text = None,
    freight_amount: Optional[float] = None,
    discount_percentage: Optional[float] = None,
    discount_amount: Optional[float] = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Update only the supplied quote fields."""
    data = _present(
        name=name, description=description, effectiveFrom=effective_from, effectiveTo=effective_to,
        freightAmount=freight_amount, discountPercentage=discount_percentage,
        discountAmount=discount_amount, customFields=custom_fields,
    )
    return await _run(lambda c: c.update_quote(quote_id, data))


@mcp.tool()
@logged_tool
async def dynamics_delete_quote(quote_id: RecordId) -> Dict[str, Any]:
    """Delete a quote."""
    return await _run(lambda c: c.delete_quote(quote_id), message=f"Quote {quote_id} deleted")


@mcp.tool()
@logged_tool
async def dynamics_list_quote_details(quote_id: RecordId) -> Dict[str, Any]:
    """List the line items of a quote."""
    return await _run(lambda c: c.list_quote_details(quote_id))


@mcp.tool()
@logged_tool
async def dynamics_add_quote_detail(
    quote_id: RecordId,
    quantity: Annotated[float, Field(gt=0)],
    product_id: Annotated[Optional[str], Field(description="Catalog product; omit for a write-in line")] = None,
    uom_id: Annotated[Optional[str], Field(description="Unit of measure id")] = None,
    product_description: Annotated[Optional[str], Field(description="Write-in product description")] = None,
    price_per_unit: Optional[float] = None,
    is_price_overridden: Optional[bool] = None,
    manual_discount_amount: Optional[float] = None,
    tax: Optional[float] = None,
) -> Dict[str, Any]:
    """Add a line item to a quote."""
    data = _present(
        quoteId=quote_id, quantity=quantity, productId=product_id, uomId=uom_id,
        productDescription=product_description, pricePerUnit=price_per_unit,
        isPriceOverridden=is_price_overridden, manualDiscountAmount=manual_discount_amount, tax=tax,
    )
    return await _run(lambda c: c.add_quote_detail(data))


@mcp.tool()
@logged_tool
async def dynamics_activate_quote(quote_id: RecordId) -> Dict[str, Any]:
    """Activate a draft quote."""
    return await _run(lambda c: c.activate_quote(quote_id), message=f"Quote {quote_id} activated")


@mcp.tool()
@logged_tool
async def dynamics_close_quote(quote_id: RecordId, status: Literal["won", "lost", "cancelled"]) -> Dict[str, Any]:
    """Close a quote as won, lost or cancelled."""
    return await _run(lambda c: c.close_quote(quote_id, status), message=f"Quote {quote_id} closed as {status}")


@mcp.tool()
@logged_tool
async def dynamics_convert_quote_to_order(quote_id: RecordId) -> Dict[str, Any]:
    """Convert a won quote into a sales order; returns salesOrderId."""
    return await _run(lambda c: c.convert_quote_to_order(quote_id))


# ------------------------------------------------------------------
# Orders
# ------------------------------------------------------------------

@mcp.tool()
@logged_tool
async def dynamics_list_orders(limit: Limit = 20, offset: Offset = 0, cursor: Cursor = None) -> Dict[str, Any]:
    """List sales orders, newest first."""
    return await _run(lambda c: c.list_orders(limit, offset, cursor))


@mcp.tool()
@logged_tool
async def dynamics_get_order(order_id: RecordId) -> Dict[str, Any]:
    """Get one sales order by id."""
    return await _run(lambda c: c.get_order(order_id))


@mcp.tool()
@logged_tool
async def dynamics_create_order(
    name: Annotated[str, Field(min_length=1)],
    customer_account_id: Text = None,
    quote_id: Text = None,
    opportunity_id: Text = None,
    price_level_id: Text = None,
    description: Text = None,
    request_delivery_by: Text = None,
    freight_amount: Optional[float] = None,
    discount_percentage: Optional[float] = None,
    discount_amount: Optional[float] = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Create a sales order."""
    data = _present(
        name=name, customerAccountId=customer_account_id, quoteId=quote_id, opportunityId=opportunity_id,
        priceLevelId=price_level_id, description=description, requestDeliveryBy=request_delivery_by,
        freightAmount=freight_amount, discountPercentage=discount_percentage,
        discountAmount=discount_amount, customFields=custom_fields,
    )
    return await _run(lambda c: c.create_order(data))


@mcp.tool()
@logged_tool
async def dynamics_update_order(
    order_id: RecordId,
    name: Text = None,
    description: Text = None,
    request_delivery_by: Text = None,
    freight_amount: Optional[float] = None,
    discount_percentage: Optional[float] = None,
    discount_amount: Optional[float] = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Update only the supplied order fields."""
    data = _present(
        name=name, description=description, requestDeliveryBy=request_delivery_by,
        freightAmount=freight_amount, discountPercentage=discount_percentage,
        discountAmount=discount_amount, customFields=custom_fields,
    )
    return await _run(lambda c: c.update_order(order_id, data))


@mcp.tool()
@logged_tool
async def dynamics_delete_order(order_id: RecordId) -> Dict[str, Any]:
    """Delete a sales order."""
    return await _run(lambda c: c.delete_order(order_id), message=f"Order {order_id} deleted")


@mcp.tool()
@logged_tool
async def dynamics_list_order_details(order_id: RecordId) -> Dict[str, Any]:
    """List the line items of a sales order."""
    return await _run(lambda c: c.list_order_details(order_id))


@mcp.tool()
@logged_tool
async def dynamics_add_order_detail(
    order_id: RecordId,
    quantity: Annotated[float, Field(gt=0)],
    product_id: Text = None,
    product_description: Text = None,
    price_per_unit: Optional[float] = None,
    manual_discount_amount: Optional[float] = None,
    tax: Optional[float] = None,
) -> Dict[str, Any]:
    """Add a line item to a sales order."""
    data = _present(
        salesOrderId=order_id, quantity=quantity, productId=product_id,
        productDescription=product_description, pricePerUnit=price_per_unit,
        manualDiscountAmount=manual_discount_amount, tax=tax,
    )
    return await _run(lambda c: c.add_order_detail(data))


@mcp.tool()
@logged_tool
async def dynamics_fulfill_order(order_id: RecordId) -> Dict[str, Any]:
    """Mark a sales order fulfilled."""
    return await _run(lambda c: c.fulfill_order(order_id), message=f"Order {order_id} fulfilled")


@mcp.tool()
@logged_tool
async def dynamics_cancel_order(order_id: RecordId) -> Dict[str, Any]:
    """Cancel a sales order."""
    return await _run(lambda c: c.cancel_order(order_id), message=f"Order {order_id} cancelled")


@mcp.tool()
@logged_tool
async def dynamics_convert_order_to_invoice(order_id: RecordId) -> Dict[str, Any]:
    """Create an invoice from a sales order; returns invoiceId."""
    return await _run(lambda c: c.convert_order_to_invoice(order_id))


# ------------------------------------------------------------------
# Invoices
# ------------------------------------------------------------------

@mcp.tool()
@logged_tool
async def dynamics_list_invoices(limit: Limit = 20, offset: Offset = 0, cursor: Cursor = None) -> Dict[str, Any]:
    """List invoices, newest first."""
    return await _run(lambda c: c.list_invoices(limit, offset, cursor))


@mcp.tool()
@logged_tool
async def dynamics_get_invoice(invoice_id: RecordId) -> Dict[str, Any]:
    """Get one invoice by id."""
    return await _run(lambda c: c.get_invoice(invoice_id))


@mcp.tool()
@logged_tool
async def dynamics_create_invoice(
    name: Annotated[str, Field(min_length=1)],
    customer_account_id: Text = None,
    sales_order_id: Text = None,
    price_level_id: Text = None,
    description: Text = None,
    due_date: Text = None,
    freight_amount: Optional[float] = None,
    discount_percentage: Optional[float] = None,
    discount_amount: Optional[float] = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Create an invoice."""
    data = _present(
        name=name, customerAccountId=customer_account_id, salesOrderId=sales_order_id,
        priceLevelId=price_level_id, description=description, dueDate=due_date,
        freightAmount=freight_amount, discountPercentage=discount_percentage,
        discountAmount=discount_amount, customFields=custom_fields,
    )
    return await _run(lambda c: c.create_invoice(data))


@mcp.tool()
@logged_tool
async def dynamics_update_invoice(
    invoice_id: RecordId,
    name: Text = None,
    description: Text = None,
    due_date: Text = None,
    freight_amount: Optional[float] = None,
    discount_percentage: Optional[float] = None,
    discount_amount: Optional[float] = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Update only the supplied invoice fields."""
    data = _present(
        name=name, description=description, dueDate=due_date, freightAmount=freight_amount,
        discountPercentage=discount_percentage, discountAmount=discount_amount, customFields=custom_fields,
    )
    return await _run(lambda c: c.update_invoice(invoice_id, data))


@mcp.tool()
@logged_tool
async def dynamics_delete_invoice(invoice_id: RecordId) -> Dict[str, Any]:
    """Delete an invoice."""
    return await _run(lambda c: c.delete_invoice(invoice_id), message=f"Invoice {invoice_id} deleted")


@mcp.tool()
@logged_tool
async def dynamics_lock_invoice_pricing(invoice_id: RecordId) -> Dict[str, Any]:
    """Freeze the prices on an invoice."""
    return await _run(lambda c: c.lock_invoice_pricing(invoice_id), message=f"Invoice {invoice_id} pricing locked")


@mcp.tool()
@logged_tool
async def dynamics_cancel_invoice(invoice_id: RecordId) -> Dict[str, Any]:
    """Cancel an invoice."""
    return await _run(lambda c: c.cancel_invoice(invoice_id), message=f"Invoice {invoice_id} cancelled")


# ------------------------------------------------------------------
# Products and price lists
# ------------------------------------------------------------------

@mcp.tool()
@logged_tool
async def dynamics_list_products(limit: Limit = 20, offset: Offset = 0, cursor: Cursor = None) -> Dict[str, Any]:
    """List products, newest first."""
    return await _run(lambda c: c.list_products(limit, offset, cursor))


@mcp.tool()
@logged_tool
async def dynamics_get_product(product_id: RecordId) -> Dict[str, Any]:
    """Get one product by id."""
    return await _run(lambda c: c.get_product(product_id))


@mcp.tool()
@logged_tool
async def dynamics_create_product(
    name: Annotated[str, Field(min_length=1)],
    product_number: Annotated[str, Field(description="Unique product id", min_length=1)],
    default_uom_id: Annotated[str, Field(description="Default unit id")],
    default_uom_schedule_id: Annotated[str, Field(description="Unit group id")],
    description: Text = None,
    product_structure: Annotated[Optional[int], Field(description="1 product, 2 family, 3 bundle")] = None,
    product_type_code: Optional[int] = None,
    quantity_decimal: Annotated[Optional[int], Field(ge=0, le=5)] = None,
    current_cost: Optional[float] = None,
    standard_cost: Optional[float] = None,
    price: Optional[float] = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Create a product (starts as a draft)."""
    data = _present(
        name=name, productNumber=product_number, defaultUomId=default_uom_id,
        defaultUomScheduleId=default_uom_schedule_id, description=description,
        productStructure=product_structure, productTypeCode=product_type_code,
        quantityDecimal=quantity_decimal, currentCost=current_cost, standardCost=standard_cost,
        price=price, customFields=custom_fields,
    )
    return await _run(lambda c: c.create_product(data))


@mcp.tool()
@logged_tool
async def dynamics_update_product(
    product_id: RecordId,
    name: Text = None,
    product_number: Text = None,
    description: Text = None,
    product_type_code: Optional[int] = None,
    current_cost: Optional[float] = None,
    standard_cost: Optional[float] = None,
    price: Optional[float] = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Update only the supplied product fields."""
    data = _present(
        name=name, productNumber=product_number, description=description,
        productTypeCode=product_type_code, currentCost=current_cost, standardCost=standard_cost,
        price=price, customFields=custom_fields,
    )
    return await _run(lambda c: c.update_product(product_id, data))


@mcp.tool()
@logged_tool
async def dynamics_delete_product(product_id: RecordId) -> Dict[str, Any]:
    """Delete a product."""
    return await _run(lambda c: c.delete_product(product_id), message=f"Product {product_id} deleted")


@mcp.tool()
@logged_tool
async def dynamics_publish_product(product_id: RecordId) -> Dict[str, Any]:
    """Publish a draft product (and its hierarchy)."""
    return await _run(lambda c: c.publish_product(product_id), message=f"Product {product_id} published")


@mcp.tool()
@logged_tool
async def dynamics_list_price_lists(limit: Limit = 20, offset: Offset = 0, cursor: Cursor = None) -> Dict[str, Any]:
    """List price lists."""
    return await _run(lambda c: c.list_price_lists(limit, offset, cursor))


@mcp.tool()
@logged_tool
async def dynamics_get_price_list(price_list_id: RecordId) -> Dict[str, Any]:
    """Get one price list by id."""
    return await _run(lambda c: c.get_price_list(price_list_id))


@mcp.tool()
@logged_tool
async def dynamics_create_price_list(
    name: Annotated[str, Field(min_length=1)],
    description: Text = None,
    currency_id: Text = None,
    begin_date: Text = None,
    end_date: Text = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Create a price list."""
    data = _present(
        name=name, description=description, currencyId=currency_id,
        beginDate=begin_date, endDate=end_date, customFields=custom_fields,
    )
    return await _run(lambda c: c.create_price_list(data))


@mcp.tool()
@logged_tool
async def dynamics_update_price_list(
    price_list_id: RecordId,
    name: Text = None,
    description: Text = None,
    currency_id: Text = None,
    begin_date: Text = None,
    end_date: Text = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Update only the supplied price list fields."""
    data = _present(
        name=name, description=description, currencyId=currency_id,
        beginDate=begin_date, endDate=end_date, customFields=custom_fields,
    )
    return await _run(lambda c: c.update_price_list(price_list_id, data))


@mcp.tool()
@logged_tool
async def dynamics_delete_price_list(price_list_id: RecordId) -> Dict[str, Any]:
    """Delete a price list."""
    return await _run(lambda c: c.delete_price_list(price_list_id), message=f"Price list {price_list_id} deleted")


# ------------------------------------------------------------------
# Competitors
# ------------------------------------------------------------------

@mcp.tool()
@logged_tool
async def dynamics_list_competitors(limit: Limit = 20, offset: Offset = 0, cursor: Cursor = None) -> Dict[str, Any]:
    """List competitors."""
    return await _run(lambda c: c.list_competitors(limit, offset, cursor))


@mcp.tool()
@logged_tool
async def dynamics_get_competitor(competitor_id: RecordId) -> Dict[str, Any]:
    """Get one competitor by id."""
    return await _run(lambda c: c.get_competitor(competitor_id))


@mcp.tool()
@logged_tool
async def dynamics_create_competitor(
    name: Annotated[str, Field(min_length=1)],
    website: Text = None,
    ticker_symbol: Text = None,
    key_product: Text = None,
    strengths: Text = None,
    weaknesses: Text = None,
    overview: Text = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Create a competitor."""
    data = _present(
        name=name, website=website, tickerSymbol=ticker_symbol, keyProduct=key_product,
        strengths=strengths, weaknesses=weaknesses, overview=overview, customFields=custom_fields,
    )
    return await _run(lambda c: c.create_competitor(data))


@mcp.tool()
@logged_tool
async def dynamics_update_competitor(
    competitor_id: RecordId,
    name: Text = None,
    website: Text = None,
    ticker_symbol: Text = None,
    key_product: Text = None,
    strengths: Text = None,
    weaknesses: Text = None,
    overview: Text = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Update only the supplied competitor fields."""
    data = _present(
        name=name, website=website, tickerSymbol=ticker_symbol, keyProduct=key_product,
        strengths=strengths, weaknesses=weaknesses, overview=overview, customFields=custom_fields,
    )
    return await _run(lambda c: c.update_competitor(competitor_id, data))


@mcp.tool()
@logged_tool
async def dynamics_delete_competitor(competitor_id: RecordId) -> Dict[str, Any]:
    """Delete a competitor."""
    return await _run(lambda c: c.delete_competitor(competitor_id), message=f"Competitor {competitor_id} deleted")


@mcp.tool()
@logged_tool
async def dynamics_associate_competitor(competitor_id: RecordId, opportunity_id: RecordId) -> Dict[str, Any]:
    """Link a competitor to an opportunity."""
    return await _run(
        lambda c: c.associate_competitor(competitor_id, opportunity_id),
        message=f"Competitor {competitor_id} linked to opportunity {opportunity_id}",
    )


@mcp.tool()
@logged_tool
async def dynamics_disassociate_competitor(competitor_id: RecordId, opportunity_id: RecordId) -> Dict[str, Any]:
    """Unlink a competitor from an opportunity."""
    return await _run(
        lambda c: c.disassociate_competitor(competitor_id, opportunity_id),
        message=f"Competitor {competitor_id} unlinked from opportunity {opportunity_id}",
    )


@mcp.tool()
@logged_tool
async def dynamics_list_opportunity_competitors(opportunity_id: RecordId) -> Dict[str, Any]:
    """List the competitors linked to an opportunity."""
    return await _run(lambda c: c.list_opportunity_competitors(opportunity_id))


# ------------------------------------------------------------------
# Campaigns
# ------------------------------------------------------------------

@mcp.tool()
@logged_tool
async def dynamics_list_campaigns(limit: Limit = 20, offset: Offset = 0, cursor: Cursor = None) -> Dict[str, Any]:
    """List marketing campaigns."""
    return await _run(lambda c: c.list_campaigns(limit, offset, cursor))


@mcp.tool()
@logged_tool
async def dynamics_get_campaign(campaign_id: RecordId) -> Dict[str, Any]:
    """Get one campaign by id."""
    return await _run(lambda c: c.get_campaign(campaign_id))


@mcp.tool()
@logged_tool
async def dynamics_create_campaign(
    name: Annotated[str, Field(min_length=1)],
    code_name: Text = None,
    description: Text = None,
    message: Annotated[Optional[str], Field(description="Promotional message")] = None,
    objective: Text = None,
    type_code: Optional[int] = None,
    proposed_start: Text = None,
    proposed_end: Text = None,
    budgeted_cost: Optional[float] = None,
    price_level_id: Text = None,
    currency_id: Text = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Create a campaign."""
    data = _present(
        name=name, codeName=code_name, description=description, message=message, objective=objective,
        typeCode=type_code, proposedStart=proposed_start, proposedEnd=proposed_end,
        budgetedCost=budgeted_cost, priceLevelId=price_level_id, currencyId=currency_id,
        customFields=custom_fields,
    )
    return await _run(lambda c: c.create_campaign(data))


@mcp.tool()
@logged_tool
async def dynamics_update_campaign(
    campaign_id: RecordId,
    name: Text = None,
    code_name: Text = None,
    description: Text = None,
    message: Text = None,
    objective: Text = None,
    type_code: Optional[int] = None,
    proposed_start: Text = None,
    proposed_end: Text = None,
    budgeted_cost: Optional[float] = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Update only the supplied campaign fields."""
    data = _present(
        name=name, codeName=code_name, description=description, message=message, objective=objective,
        typeCode=type_code, proposedStart=proposed_start, proposedEnd=proposed_end,
        budgetedCost=budgeted_cost, customFields=custom_fields,
    )
    return await _run(lambda c: c.update_campaign(campaign_id, data))


@mcp.tool()
@logged_tool
async def dynamics_delete_campaign(campaign_id: RecordId) -> Dict[str, Any]:
    """Delete a campaign."""
    return await _run(lambda c: c.delete_campaign(campaign_id), message=f"Campaign {campaign_id} deleted")


@mcp.tool()
@logged_tool
async def dynamics_list_campaign_activities(campaign_id: RecordId) -> Dict[str, Any]:
    """List the activities planned under a campaign."""
    return await _run(lambda c: c.list_campaign_activities(campaign_id))


@mcp.tool()
@logged_tool
async def dynamics_create_campaign_activity(
    campaign_id: RecordId,
    subject: Annotated[str, Field(min_length=1)],
    description: Text = None,
    channel_type_code: Optional[int] = None,
    type_code: Optional[int] = None,
    scheduled_start: Text = None,
    scheduled_end: Text = None,
    budgeted_cost: Optional[float] = None,
) -> Dict[str, Any]:
    """Create a campaign activity; returns its id."""
    data = _present(
        subject=subject, description=description, channelTypeCode=channel_type_code, typeCode=type_code,
        scheduledStart=scheduled_start, scheduledEnd=scheduled_end, budgetedCost=budgeted_cost,
    )
    return await _run(lambda c: c.create_campaign_activity(campaign_id, data))


@mcp.tool()
@logged_tool
async def dynamics_list_campaign_responses(campaign_id: RecordId) -> Dict[str, Any]:
    """List the responses recorded for a campaign."""
    return await _run(lambda c: c.list_campaign_responses(campaign_id))


@mcp.tool()
@logged_tool
async def dynamics_create_campaign_response(
    campaign_id: RecordId,
    subject: Annotated[str, Field(min_length=1)],
    description: Text = None,
    channel_type_code: Optional[int] = None,
    response_code: Optional[int] = None,
    received_on: Text = None,
    first_name: Text = None,
    last_name: Text = None,
    email_address: Text = None,
    telephone: Text = None,
    company_name: Text = None,
) -> Dict[str, Any]:
    """Record a response to a campaign; returns its id."""
    data = _present(
        subject=subject, description=description, channelTypeCode=channel_type_code,
        responseCode=response_code, receivedOn=received_on, firstName=first_name, lastName=last_name,
        emailAddress=email_address, telephone=telephone, companyName=company_name,
    )
    return await _run(lambda c: c.create_campaign_response(campaign_id, data))


@mcp.tool()
@logged_tool
async def dynamics_add_campaign_member(
    campaign_id: RecordId, member_type: MemberType, member_id: RecordId
) -> Dict[str, Any]:
    """Add a contact, lead or account to a campaign."""
    return await _run(
        lambda c: c.add_campaign_member(campaign_id, member_type, member_id),
        message=f"{member_type} {member_id} added to campaign {campaign_id}",
    )


@mcp.tool()
@logged_tool
async def dynamics_remove_campaign_member(
    campaign_id: RecordId, member_type: MemberType, member_id: RecordId
) -> Dict[str, Any]:
    """Remove a contact, lead or account from a campaign."""
    return await _run(
        lambda c: c.remove_campaign_member(campaign_id, member_type, member_id),
        message=f"{member_type} {member_id} removed from campaign {campaign_id}",
    )


# ------------------------------------------------------------------
# Cases
# ------------------------------------------------------------------

@mcp.tool()
@logged_tool
async def dynamics_list_cases(limit: Limit = 20, offset: Offset = 0, cursor: Cursor = None) -> Dict[str, Any]:
    """List service cases, newest first."""
    return await _run(lambda c: c.list_cases(limit, offset, cursor))


@mcp.tool()
@logged_tool
async def dynamics_get_case(case_id: RecordId) -> Dict[str, Any]:
    """Get one case by id."""
    return await _run(lambda c: c.get_case(case_id))


@mcp.tool()
@logged_tool
async def dynamics_create_case(
    title: Annotated[str, Field(min_length=1)],
    customer_account_id: Annotated[Optional[str], Field(description="Customer account; or use customer_contact_id")] = None,
    customer_contact_id: Text = None,
    description: Text = None,
    case_origin_code: Optional[int] = None,
    case_type_code: Optional[int] = None,
    priority_code: Optional[int] = None,
    severity_code: Optional[int] = None,
    primary_contact_id: Text = None,
    product_id: Text = None,
    subject_id: Text = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Create a service case for an account or contact."""
    data = _present(
        title=title, customerAccountId=customer_account_id, customerContactId=customer_contact_id,
        description=description, caseOriginCode=case_origin_code, caseTypeCode=case_type_code,
        priorityCode=priority_code, severityCode=severity_code, primaryContactId=primary_contact_id,
        productId=product_id, subjectId=subject_id, customFields=custom_fields,
    )
    return await _run(lambda c: c.create_case(data))


@mcp.tool()
@logged_tool
async def dynamics_update_case(
    case_id: RecordId,
    title: Text = None,
    description: Text = None,
    case_origin_code: Optional[int] = None,
    case_type_code: Optional[int] = None,
    priority_code: Optional[int] = None,
    severity_code: Optional[int] = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Update only the supplied case fields."""
    data = _present(
        title=title, description=description, caseOriginCode=case_origin_code, caseTypeCode=case_type_code,
        priorityCode=priority_code, severityCode=severity_code, customFields=custom_fields,
    )
    return await _run(lambda c: c.update_case(case_id, data))


@mcp.tool()
@logged_tool
async def dynamics_delete_case(case_id: RecordId) -> Dict[str, Any]:
    """Delete a case."""
    return await _run(lambda c: c.delete_case(case_id), message=f"Case {case_id} deleted")


@mcp.tool()
@logged_tool
async def dynamics_resolve_case(
    case_id: RecordId,
    subject: Annotated[str, Field(description="Resolution summary", min_length=1)],
    description: Text = None,
    time_spent: Annotated[Optional[int], Field(description="Minutes spent", ge=0)] = None,
) -> Dict[str, Any]:
    """Resolve a case with a resolution record."""
    return await _run(
        lambda c: c.resolve_case(case_id, subject, description, time_spent), message=f"Case {case_id} resolved"
    )


@mcp.tool()
@logged_tool
async def dynamics_cancel_case(case_id: RecordId) -> Dict[str, Any]:
    """Cancel a case."""
    return await _run(lambda c: c.cancel_case(case_id), message=f"Case {case_id} cancelled")


@mcp.tool()
@logged_tool
async def dynamics_reactivate_case(case_id: RecordId) -> Dict[str, Any]:
    """Reopen a resolved or cancelled case."""
    return await _run(lambda c: c.reactivate_case(case_id), message=f"Case {case_id} reactivated")


# ------------------------------------------------------------------
# Goals
# ------------------------------------------------------------------

@mcp.tool()
@logged_tool
async def dynamics_list_goals(limit: Limit = 20, offset: Offset = 0, cursor: Cursor = None) -> Dict[str, Any]:
    """List goals."""
    return await _run(lambda c: c.list_goals(limit, offset, cursor))


@mcp.tool()
@logged_tool
async def dynamics_get_goal(goal_id: RecordId) -> Dict[str, Any]:
    """Get one goal by id."""
    return await _run(lambda c: c.get_goal(goal_id))


@mcp.tool()
@logged_tool
async def dynamics_create_goal(
    title: Annotated[str, Field(min_length=1)],
    goal_owner_id: Annotated[str, Field(description="System user who owns the goal")],
    metric_id: Annotated[str, Field(description="Goal metric id")],
    target_money: Optional[float] = None,
    target_decimal: Optional[float] = None,
    target_integer: Optional[int] = None,
    fiscal_period: Optional[int] = None,
    fiscal_year: Optional[int] = None,
    goal_start_date: Text = None,
    goal_end_date: Text = None,
    consider_only_goal_owners_records: Optional[bool] = None,
    parent_goal_id: Text = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Create a goal for a user against a metric."""
    data = _present(
        title=title, goalOwnerId=goal_owner_id, metricId=metric_id, targetMoney=target_money,
        targetDecimal=target_decimal, targetInteger=target_integer, fiscalPeriod=fiscal_period,
        fiscalYear=fiscal_year, goalStartDate=goal_start_date, goalEndDate=goal_end_date,
        considerOnlyGoalOwnersRecords=consider_only_goal_owners_records, parentGoalId=parent_goal_id,
        customFields=custom_fields,
    )
    return await _run(lambda c: c.create_goal(data))


@mcp.tool()
@logged_tool
async def dynamics_update_goal(
    goal_id: RecordId,
    title: Text = None,
    target_money: Optional[float] = None,
    target_decimal: Optional[float] = None,
    target_integer: Optional[int] = None,
    goal_start_date: Text = None,
    goal_end_date: Text = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Update only the supplied goal fields."""
    data = _present(
        title=title, targetMoney=target_money, targetDecimal=target_decimal, targetInteger=target_integer,
        goalStartDate=goal_start_date, goalEndDate=goal_end_date, customFields=custom_fields,
    )
    return await _run(lambda c: c.update_goal(goal_id, data))


@mcp.tool()
@logged_tool
async def dynamics_delete_goal(goal_id: RecordId) -> Dict[str, Any]:
    """Delete a goal."""
    return await _run(lambda c: c.delete_goal(goal_id), message=f"Goal {goal_id} deleted")


@mcp.tool()
@logged_tool
async def dynamics_recalculate_goal(goal_id: RecordId) -> Dict[str, Any]:
    """Recompute the rollup values of a goal."""
    return await _run(lambda c: c.recalculate_goal(goal_id), message=f"Goal {goal_id} recalculated")


@mcp.tool()
@logged_tool
async def dynamics_list_goal_metrics(limit: Limit = 20, offset: Offset = 0, cursor: Cursor = None) -> Dict[str, Any]:
    """List goal metrics."""
    return await _run(lambda c: c.list_goal_metrics(limit, offset, cursor))


@mcp.tool()
@logged_tool
async def dynamics_get_goal_metric(metric_id: RecordId) -> Dict[str, Any]:
    """Get one goal metric by id."""
    return await _run(lambda c: c.get_goal_metric(metric_id))


# ------------------------------------------------------------------
# Notes
# ------------------------------------------------------------------

@mcp.tool()
@logged_tool
async def dynamics_list_notes(
    limit: Limit = 20,
    offset: Offset = 0,
    cursor: Cursor = None,
    regarding_id: Annotated[Optional[str], Field(description="Only notes attached to this record")] = None,
) -> Dict[str, Any]:
    """List notes, newest first."""
    return await _run(lambda c: c.list_notes(limit, offset, cursor, regarding_id))


@mcp.tool()
@logged_tool
async def dynamics_get_note(note_id: RecordId) -> Dict[str, Any]:
    """Get one note by id (without the attachment body)."""
    return await _run(lambda c: c.get_note(note_id))


@mcp.tool()
@logged_tool
async def dynamics_create_note(
    regarding_entity_type: Annotated[str, Field(description="Logical name of the record, e.g. contact")],
    regarding_id: RecordId,
    subject: Text = None,
    note_text: Text = None,
    file_name: Text = None,
    mime_type: Text = None,
    document_body: Annotated[Optional[str], Field(description="Base64 attachment content")] = None,
    custom_fields: CustomFields = None,
) -> Dict[str, Any]:
    """Attach a note (optionally with a file) to a record."""
    data = _present(
        regardingEntityType=regarding_entity_type, regardingId=regarding_id, subject=subject,
        noteText=note_text, fileName=file_name, mimeType=mime_type, documentBody=document_body,
        customFields=custom_fields,
    )
    return await _run(lambda c: c.create_note(data))


@mcp.tool()
@logged_tool
async def dynamics_update_note(
    note_id: RecordId,
    subject: Text = None,
    note_text: Text = None,
    file_name: Text = None,
    mime_type: Text = None,
    document_body: Annotated[Optional[str], Field(description="Base64 attachment content")] = None,
) -> Dict[str, Any]:
    """Update only the supplied note fields."""
    data = _present(
        subject=subject, noteText=note_text, fileName=file_name, mimeType=mime_type, documentBody=document_body,
    )
    return await _run(lambda c: c.update_note(note_id, data))


@mcp.tool()
@logged_tool
async def dynamics_delete_note(note_id: RecordId) -> Dict[str, Any]:
    """Delete a note."""
    return await _run(lambda c: c.delete_note(note_id), message=f"Note {note_id} deleted")


@mcp.tool()
@logged_tool
async def dynamics_get_note_attachment(note_id: RecordId) -> Dict[str, Any]:
    """Download a note's attachment (base64 documentBody)."""
    return await _run(lambda c: c.get_note_attachment(note_id))


@mcp.tool()
@logged_tool
async def dynamics_list_entity_notes(
    entity_type: Annotated[str, Field(description="Logical name of the record, e.g. account")],
    entity_id: RecordId,
    limit: Limit = 20,
) -> Dict[str, Any]:
    """List the notes attached to one record."""
    return await _run(lambda c: c.list_entity_notes(entity_type, entity_id, limit))


@mcp.tool()
@logged_tool
async def dynamics_add_attachment_to_note(
    note_id: RecordId,
    file_name: Annotated[str, Field(min_length=1)],
    mime_type: Annotated[str, Field(min_length=1)],
    document_body: Annotated[str, Field(description="Base64 attachment content")],
) -> Dict[str, Any]:
    """Attach a file to an existing note."""
    return await _run(
        lambda c: c.add_attachment_to_note(note_id, file_name, mime_type, document_body),
        message=f"Attachment added to note {note_id}",
    )


@mcp.tool()
@logged_tool
async def dynamics_remove_attachment_from_note(note_id: RecordId) -> Dict[str, Any]:
    """Remove the file from a note, keeping the note."""
    return await _run(
        lambda c: c.remove_attachment_from_note(note_id), message=f"Attachment removed from note {note_id}"
    )


@mcp.tool()
@logged_tool
async def dynamics_search_notes(
    query: Annotated[str, Field(description="Matched against subject and text", min_length=1)],
    limit: Limit = 20,
) -> Dict[str, Any]:
    """Search notes by subject or text."""
    return await _run(lambda c: c.search_notes(query, limit))


# ------------------------------------------------------------------
# Users, teams, business units
# ------------------------------------------------------------------

@mcp.tool()
@logged_tool
async def dynamics_list_users(
    limit: Limit = 20,
    offset: Offset = 0,
    cursor: Cursor = None,
    active_only: Annotated[bool, Field(description="Skip disabled users")] = True,
) -> Dict[str, Any]:
    """List system users by name."""
    return await _run(lambda c: c.list_users(limit, offset, cursor, active_only))


@mcp.tool()
@logged_tool
async def dynamics_get_user(user_id: RecordId) -> Dict[str, Any]:
    """Get one system user by id."""
    return await _run(lambda c: c.get_user(user_id))


@mcp.tool()
@logged_tool
async def dynamics_search_users(
    query: Annotated[Optional[str], Field(description="Matched against name and email")] = None,
    limit: Limit = 20,
) -> Dict[str, Any]:
    """Search enabled system users."""
    return await _run(lambda c: c.search_users(query, limit))


@mcp.tool()
@logged_tool
async def dynamics_list_teams(limit: Limit = 20, offset: Offset = 0, cursor: Cursor = None) -> Dict[str, Any]:
    """List teams by name."""
    return await _run(lambda c: c.list_teams(limit, offset, cursor))


@mcp.tool()
@logged_tool
async def dynamics_get_team(team_id: RecordId) -> Dict[str, Any]:
    """Get one team by id."""
    return await _run(lambda c: c.get_team(team_id))


@mcp.tool()
@logged_tool
async def dynamics_create_team(
    name: Annotated[str, Field(min_length=1)],
    business_unit_id: RecordId,
    description: Text = None,
    team_type: Annotated[Optional[int], Field(description="0 owner, 1 access")] = None,
    administrator_id: Text = None,
) -> Dict[str, Any]:
    """Create a team in a business unit."""
    data = _present(
        name=name, businessUnitId=business_unit_id, description=description,
        teamType=team_type, administratorId=administrator_id,
    )
    return await _run(lambda c: c.create_team(data))


@mcp.tool()
@logged_tool
async def dynamics_update_team(
    team_id: RecordId,
    name: Text = None,
    description: Text = None,
    administrator_id: Text = None,
) -> Dict[str, Any]:
    """Update only the supplied team fields."""
    data = _present(name=name, description=description, administratorId=administrator_id)
    return await _run(lambda c: c.update_team(team_id, data))


@mcp.tool()
@logged_tool
async def dynamics_delete_team(team_id: RecordId) -> Dict[str, Any]:
    """Delete a team."""
    return await _run(lambda c: c.delete_team(team_id), message=f"Team {team_id} deleted")


@mcp.tool()
@logged_tool
async def dynamics_add_team_member(team_id: RecordId, user_id: RecordId) -> Dict[str, Any]:
    """Add a system user to a team."""
    return await _run(lambda c: c.add_team_member(team_id, user_id), message=f"User {user_id} added to team {team_id}")


@mcp.tool()
@logged_tool
async def dynamics_remove_team_member(team_id: RecordId, user_id: RecordId) -> Dict[str, Any]:
    """Remove a system user from a team."""
    return await _run(
        lambda c: c.remove_team_member(team_id, user_id), message=f"User {user_id} removed from team {team_id}"
    )


@mcp.tool()
@logged_tool
async def dynamics_list_team_members(team_id: RecordId) -> Dict[str, Any]:
    """List the users of a team."""
    return await _run(lambda c: c.list_team_members(team_id))


@mcp.tool()
@logged_tool
async def dynamics_list_business_units(limit: Limit = 20, offset: Offset = 0, cursor: Cursor = None) -> Dict[str, Any]:
    """List enabled business units."""
    return await _run(lambda c: c.list_business_units(limit, offset, cursor))


@mcp.tool()
@logged_tool
async def dynamics_get_business_unit(business_unit_id: RecordId) -> Dict[str, Any]:
    """Get one business unit by id."""
    return await _run(lambda c: c.get_business_unit(business_unit_id))


# ------------------------------------------------------------------
# Generic queries
# ------------------------------------------------------------------

EntityName = Annotated[str, Field(description="Entity logical name, e.g. account", min_length=1, max_length=128)]


@mcp.tool()
@logged_tool
async def dynamics_execute_query(
    entity_type: EntityName,
    select: Annotated[Optional[str], Field(description="Comma separated columns ($select)")] = None,
    filter: Annotated[Optional[str], Field(description="Raw OData $filter, sent as is")] = None,
    orderby: Optional[str] = None,
    expand: Optional[str] = None,
    top: Annotated[Optional[int], Field(ge=1, le=5000)] = None,
    skip: Annotated[Optional[int], Field(ge=0)] = None,
    count: bool = False,
) -> Dict[str, Any]:
    """
    Run an OData query against any entity set.
    Returns data: {records, totalCount?, hasMore}. The filter is not escaped.
    """
    return await _run(lambda c: c.query.execute_query(entity_type, select, filter, orderby, expand, top, skip, count))


@mcp.tool()
@logged_tool
async def dynamics_execute_fetchxml(
    entity_type: EntityName,
    fetch_xml: Annotated[str, Field(description="Complete <fetch> document", min_length=1)],
) -> Dict[str, Any]:
    """Run a FetchXML query."""
    return await _run(lambda c: c.query.execute_fetchxml(entity_type, fetch_xml))


@mcp.tool()
@logged_tool
async def dynamics_execute_aggregate(
    entity_type: EntityName,
    aggregate_function: Literal["count", "sum", "avg", "min", "max"],
    field: Annotated[Optional[str], Field(description="Aggregated column; required except for count")] = None,
    filter: Annotated[Optional[str], Field(description="Any value restricts to active records")] = None,
    group_by: Optional[str] = None,
) -> Dict[str, Any]:
    """Count/sum/avg/min/max a column, optionally grouped by another column."""
    return await _run(
        lambda c: c.query.execute_aggregate(entity_type, aggregate_function, field, filter, group_by)
    )


@mcp.tool()
@logged_tool
async def dynamics_get_record_count(
    entity_type: EntityName,
    filter: Annotated[Optional[str], Field(description="Raw OData $filter")] = None,
) -> Dict[str, Any]:
    """Count the records of an entity."""
    return await _run(lambda c: c.query.get_record_count(entity_type, filter), key="count")


@mcp.tool()
@logged_tool
async def dynamics_execute_saved_query(
    saved_query_id: RecordId,
    entity_type: EntityName,
    top: Annotated[int, Field(ge=1, le=5000)] = 50,
) -> Dict[str, Any]:
    """Run a system view by id."""
    return await _run(lambda c: c.query.execute_saved_query(saved_query_id, entity_type, top))


@mcp.tool()
@logged_tool
async def dynamics_execute_user_query(
    user_query_id: RecordId,
    entity_type: EntityName,
    top: Annotated[int, Field(ge=1, le=5000)] = 50,
) -> Dict[str, Any]:
    """Run a personal view by id."""
    return await _run(lambda c: c.query.execute_user_query(user_query_id, entity_type, top))


# ------------------------------------------------------------------
# Metadata
# ------------------------------------------------------------------

@mcp.tool()
@logged_tool
async def dynamics_list_entities(
    filter: Annotated[Optional[str], Field(description="Substring of the logical name")] = None,
    include_custom: bool = True,
) -> Dict[str, Any]:
    """List entity definitions."""
    return await _run(lambda c: c.query.list_entity_metadata(filter, include_custom))


@mcp.tool()
@logged_tool
async def dynamics_get_entity_metadata(entity_logical_name: EntityName) -> Dict[str, Any]:
    """Get the full definition of one entity."""
    return await _run(lambda c: c.query.get_entity_metadata(entity_logical_name))


@mcp.tool()
@logged_tool
async def dynamics_list_entity_attributes(
    entity_logical_name: EntityName,
    attribute_type: Annotated[Optional[str], Field(description="AttributeTypeCode, e.g. Picklist")] = None,
) -> Dict[str, Any]:
    """List the attributes (columns) of an entity."""
    return await _run(lambda c: c.query.list_entity_attributes(entity_logical_name, attribute_type))


@mcp.tool()
@logged_tool
async def dynamics_get_attribute_metadata(
    entity_logical_name: EntityName,
    attribute_logical_name: Annotated[str, Field(min_length=1)],
) -> Dict[str, Any]:
    """Get the full definition of one attribute."""
    return await _run(lambda c: c.query.get_attribute_metadata(entity_logical_name, attribute_logical_name))


@mcp.tool()
@logged_tool
async def dynamics_get_option_set_values(
    entity_logical_name: EntityName,
    attribute_logical_name: Annotated[str, Field(description="A picklist attribute", min_length=1)],
) -> Dict[str, Any]:
    """List the value/label pairs of a picklist attribute."""
    return await _run(lambda c: c.query.get_option_set_values(entity_logical_name, attribute_logical_name))


@mcp.tool()
@logged_tool
async def dynamics_get_global_option_set(
    option_set_name: Annotated[str, Field(min_length=1)],
) -> Dict[str, Any]:
    """List the value/label pairs of a global option set."""
    return await _run(lambda c: c.query.get_global_option_set(option_set_name))


# ------------------------------------------------------------------
# Relationships
# ------------------------------------------------------------------

@mcp.tool()
@logged_tool
async def dynamics_associate_records(
    source_entity_type: EntityName,
    source_id: RecordId,
    target_entity_type: EntityName,
    target_id: RecordId,
    relationship_name: Annotated[str, Field(description="Collection navigation property on the source")],
) -> Dict[str, Any]:
    """Link two records through a many-to-many or one-to-many navigation property."""
    return await _run(
        lambda c: c.query.associate(source_entity_type, source_id, target_entity_type, target_id, relationship_name),
        message="Records associated",
    )


@mcp.tool()
@logged_tool
async def dynamics_disassociate_records(
    source_entity_type: EntityName,
    source_id: RecordId,
    target_entity_type: EntityName,
    target_id: RecordId,
    relationship_name: Annotated[str, Field(description="Collection navigation property on the source")],
) -> Dict[str, Any]:
    """Remove a link created with dynamics_associate_records."""
    return await _run(
        lambda c: c.query.disassociate(source_entity_type, source_id, target_entity_type, target_id, relationship_name),
        message="Records disassociated",
    )


@mcp.tool()
@logged_tool
async def dynamics_list_related_records(
    entity_type: EntityName,
    record_id: RecordId,
    navigation_property: Annotated[str, Field(min_length=1)],
    select: Optional[str] = None,
    limit: Annotated[Optional[int], Field(ge=1, le=5000)] = None,
) -> Dict[str, Any]:
    """List the records reachable through a navigation property."""
    return await _run(
        lambda c: c.query.list_related_records(entity_type, record_id, navigation_property, select, limit)
    )


# ------------------------------------------------------------------
# Batch
# ------------------------------------------------------------------

ContinueOnError = Annotated[bool, Field(description="Keep counting after the first failure")]


@mcp.tool()
@logged_tool
async def dynamics_batch_create(
    entity_type: EntityName,
    records: Annotated[List[Dict[str, Any]], Field(description="Raw Dynamics bodies", min_length=1)],
    continue_on_error: ContinueOnError = False,
) -> Dict[str, Any]:
    """
    Create many records concurrently.
    Returns data: {succeeded, failed, errors[{index, message}], createdIds}.
    """
    return await _run(lambda c: c.query.batch_create(entity_type, records, continue_on_error))


@mcp.tool()
@logged_tool
async def dynamics_batch_update(
    entity_type: EntityName,
    updates: Annotated[List[BatchUpdateItem], Field(min_length=1)],
    continue_on_error: ContinueOnError = False,
) -> Dict[str, Any]:
    """Update many records concurrently."""
    items = [u.model_dump() for u in updates]
    return await _run(lambda c: c.query.batch_update(entity_type, items, continue_on_error))


@mcp.tool()
@logged_tool
async def dynamics_batch_delete(
    entity_type: EntityName,
    ids: Annotated[List[str], Field(min_length=1)],
    continue_on_error: ContinueOnError = False,
) -> Dict[str, Any]:
    """Delete many records concurrently."""
    return await _run(lambda c: c.query.batch_delete(entity_type, ids, continue_on_error))


@mcp.tool()
@logged_tool
async def dynamics_batch_upsert(
    entity_type: EntityName,
    records: Annotated[List[BatchUpsertItem], Field(min_length=1)],
    continue_on_error: ContinueOnError = False,
) -> Dict[str, Any]:
    """
    Upsert records one by one: by id, by alternate key, or create when neither is given.
    Returns data: {succeeded, failed, created, updated, errors}.
    """
    items = [r.model_dump() for r in records]
    return await _run(lambda c: c.query.batch_upsert(entity_type, items, continue_on_error))


# ASGI application for running with Uvicorn/gunicorn
app = mcp.streamable_http_app()


def main() -> None:
    logger.info(f"Starting {SERVICE_NAME} ({settings.MCP_TRANSPORT})")
    mcp.run(settings.MCP_TRANSPORT)


if __name__ == "__main__":
    main()
