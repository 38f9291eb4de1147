"""
Field tables translating Dynamics 365 wire records to normalized entities and back.

Each entity is described by an explicit table: normalized name -> wire attribute
(+ optional transform), relationship binds, and a statecode -> status lookup.
``EntityMapper.to_domain`` and ``EntityMapper.to_wire`` are pure; they never raise on
unknown codes or unexpected keys.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, NamedTuple, Optional, Tuple

from odata_client import entity_set_name

# Returned by a to_wire transform when the value must not be sent at all
SKIP = object()


class FieldSpec(NamedTuple):
    name: str
    wire: str
    read_only: bool = False
    create_only: bool = False
    to_wire: Optional[Callable[[Any], Any]] = None
    to_domain: Optional[Callable[[Any], Any]] = None
    group: Optional[str] = None
    selected: bool = True


class BindSpec(NamedTuple):
    """Inline relationship: ``<navigation>@odata.bind: /<entity_set>(<id>)``."""

    name: str
    navigation: str
    entity_set: str
    create_only: bool = False
    clear_on_empty: bool = False


class StatusMap:
    """statecode -> closed status label; unknown codes fall back to ``default``."""

    def __init__(
        self,
        codes: Dict[int, str],
        default: Optional[str] = None,
        transitions: Optional[Dict[str, Tuple[int, int]]] = None,
        wire: str = "statecode",
    ) -> None:
        self.codes = dict(codes)
        self.default = default if default is not None else next(iter(self.codes.values()))
        self.transitions = dict(transitions or {})
        self.wire = wire

    def label(self, code: Any) -> str:
        return self.codes.get(code, self.default)

    @property
    def labels(self) -> Tuple[str, ...]:
        seen = [self.default]
        for value in self.codes.values():
            if value not in seen:
                seen.append(value)
        return tuple(seen)


def _bind_path(entity_set: str, record_id: str) -> str:
    return f"/{entity_set}({record_id})"


class EntityMapper:
    def __init__(
        self,
        entity: str,
        id_field: str,
        fields: Iterable[FieldSpec],
        binds: Iterable[BindSpec] = (),
        status: Optional[StatusMap] = None,
        defaults: Optional[Dict[str, Any]] = None,
        order_by: str = "createdon desc",
    ) -> None:
        self.entity = entity
        self.entity_set = entity_set_name(entity)
        self.id_field = id_field
        self.fields = tuple(fields)
        self.binds = tuple(binds)
        self.status = status
        self.defaults = dict(defaults or {})
        self.order_by = order_by
        self._known_wire = {id_field, *(f.wire for f in self.fields)}
        if status is not None:
            self._known_wire.update({status.wire, "statuscode"})

    @property
    def select(self) -> str:
        columns = [self.id_field]
        for f in self.fields:
            if f.selected and f.wire not in columns:
                columns.append(f.wire)
        if self.status is not None:
            for extra in (self.status.wire, "statuscode"):
                if extra not in columns:
                    columns.append(extra)
        return ",".join(columns)

    def to_domain(self, record: Dict[str, Any]) -> Dict[str, Any]:
        record = record or {}
        entity: Dict[str, Any] = {"id": record.get(self.id_field)}
        for f in self.fields:
            if f.wire not in record:
                continue
            value = record[f.wire]
            if f.to_domain is not None and value is not None:
                value = f.to_domain(value)
            if f.group:
                entity.setdefault(f.group, {})[f.name] = value
            else:
                entity[f.name] = value
        if self.status is not None:
            entity["status"] = self.status.label(record.get(self.status.wire))

        custom = {
            k: v
            for k, v in record.items()
            if k not in self._known_wire and "@" not in k
        }
        if custom:
            entity["customFields"] = custom
        return entity

    def to_wire(self, data: Dict[str, Any], *, partial: bool = False) -> Dict[str, Any]:
        """
        Translate normalized input into a request body.

        Only keys present in ``data`` are emitted, so a partial update produces a
        minimal PATCH body. ``customFields`` are merged last.
        """
        data = data or {}
        body: Dict[str, Any] = {}

        for f in self.fields:
            if f.read_only or (partial and f.create_only):
                continue
            source = data.get(f.group) if f.group else data
            if not isinstance(source, dict) or f.name not in source:
                continue
            value = source[f.name]
            if f.to_wire is not None and value is not None:
                value = f.to_wire(value)
                if value is SKIP:
                    continue
            body[f.wire] = value

        for b in self.binds:
            if (partial and b.create_only) or b.name not in data:
                continue
            value = data[b.name]
            if value:
                body[f"{b.navigation}@odata.bind"] = _bind_path(b.entity_set, value)
            elif partial and b.clear_on_empty:
                body[f"{b.navigation}@odata.bind"] = None

        if self.status is not None and self.status.transitions and "status" in data:
            codes = self.status.transitions.get(data["status"])
            if codes:
                body[self.status.wire], body["statuscode"] = codes

        if not partial:
            for wire, value in self.defaults.items():
                body.setdefault(wire, value)

        custom = data.get("customFields")
        if isinstance(custom, dict):
            body.update(custom)
        return body


# ------------------------------ Transforms --------------------------------

def _industry_to_wire(value: Any) -> Any:
    try:
        return int(str(value).strip())
    except ValueError:
        return SKIP


_ACTIVITY_TYPES = {
    "phonecall": "call",
    "email": "email",
    "appointment": "meeting",
    "task": "task",
    "annotation": "note",
}


def activity_type(code: Any) -> str:
    return _ACTIVITY_TYPES.get(code, "other")


def _ro(name: str, wire: str, **kwargs: Any) -> FieldSpec:
    return FieldSpec(name, wire, read_only=True, **kwargs)


def _audit(modified: bool = True) -> Tuple[FieldSpec, ...]:
    fields = [_ro("createdAt", "createdon")]
    if modified:
        fields.append(_ro("updatedAt", "modifiedon"))
    return tuple(fields)


def _address(read_only: bool = False) -> Tuple[FieldSpec, ...]:
    return tuple(
        FieldSpec(name, wire, read_only=read_only, group="address")
        for name, wire in (
            ("street", "address1_line1"),
            ("city", "address1_city"),
            ("state", "address1_stateorprovince"),
            ("postalCode", "address1_postalcode"),
            ("country", "address1_country"),
        )
    )


ACTIVE_INACTIVE = {0: "active", 1: "inactive"}

OWNER = _ro("ownerId", "_ownerid_value")
STATE_CODE = _ro("stateCode", "statecode")


# ------------------------------- Entities ---------------------------------

CONTACT = EntityMapper(
    "contact",
    "contactid",
    (
        FieldSpec("firstName", "firstname"),
        FieldSpec("lastName", "lastname"),
        _ro("fullName", "fullname"),
        FieldSpec("email", "emailaddress1"),
        FieldSpec("phone", "telephone1"),
        FieldSpec("mobilePhone", "mobilephone"),
        FieldSpec("title", "jobtitle"),
        FieldSpec("department", "department"),
        _ro("companyId", "_parentcustomerid_value"),
        OWNER,
        *_audit(),
    ),
    binds=(BindSpec("companyId", "parentcustomerid_account", "accounts", clear_on_empty=True),),
    status=StatusMap(ACTIVE_INACTIVE),
    order_by="modifiedon desc",
)

COMPANY = EntityMapper(
    "account",
    "accountid",
    (
        FieldSpec("name", "name"),
        FieldSpec("website", "websiteurl"),
        FieldSpec("industry", "industrycode", to_wire=_industry_to_wire, to_domain=str),
        FieldSpec("description", "description"),
        FieldSpec("numberOfEmployees", "numberofemployees"),
        FieldSpec("annualRevenue", "revenue"),
        FieldSpec("phone", "telephone1"),
        FieldSpec("email", "emailaddress1"),
        *_address(),
        OWNER,
        *_audit(),
    ),
    status=StatusMap(ACTIVE_INACTIVE),
    order_by="modifiedon desc",
)

DEAL = EntityMapper(
    "opportunity",
    "opportunityid",
    (
        FieldSpec("name", "name"),
        FieldSpec("amount", "estimatedvalue"),
        _ro("currency", "_transactioncurrencyid_value"),
        FieldSpec("stage", "stepname"),
        FieldSpec("closeDate", "estimatedclosedate"),
        FieldSpec("probability", "closeprobability"),
        _ro("companyId", "_parentaccountid_value"),
        FieldSpec("description", "description"),
        OWNER,
        *_audit(),
    ),
    binds=(BindSpec("companyId", "parentaccountid", "accounts"),),
    status=StatusMap(
        {0: "open", 1: "won", 2: "lost"},
        transitions={"won": (1, 3), "lost": (2, 4), "open": (0, 1)},
    ),
    order_by="modifiedon desc",
)

ACTIVITY = EntityMapper(
    "activitypointer",
    "activityid",
    (
        _ro("type", "activitytypecode", to_domain=activity_type),
        FieldSpec("subject", "subject"),
        FieldSpec("body", "description"),
        FieldSpec("activityDate", "scheduledstart"),
        FieldSpec("dueDate", "scheduledend"),
        _ro("completedDate", "actualend"),
        FieldSpec("durationMinutes", "actualdurationminutes"),
        FieldSpec("priorityCode", "prioritycode"),
        _ro("regardingId", "_regardingobjectid_value"),
        OWNER,
        *_audit(),
    ),
    status=StatusMap({0: "pending", 1: "completed", 2: "cancelled"}),
    order_by="modifiedon desc",
)

LEAD = EntityMapper(
    "lead",
    "leadid",
    (
        FieldSpec("subject", "subject"),
        FieldSpec("firstName", "firstname"),
        FieldSpec("lastName", "lastname"),
        _ro("fullName", "fullname"),
        FieldSpec("email", "emailaddress1"),
        FieldSpec("phone", "telephone1"),
        FieldSpec("mobilePhone", "mobilephone"),
        FieldSpec("companyName", "companyname"),
        FieldSpec("jobTitle", "jobtitle"),
        FieldSpec("website", "websiteurl"),
        FieldSpec("description", "description"),
        *_address(),
        FieldSpec("leadSource", "leadsourcecode"),
        FieldSpec("leadQuality", "leadqualitycode"),
        FieldSpec("industryCode", "industrycode"),
        FieldSpec("revenue", "revenue"),
        FieldSpec("numberOfEmployees", "numberofemployees"),
        STATE_CODE,
        OWNER,
        _ro("parentAccountId", "_parentaccountid_value"),
        _ro("parentContactId", "_parentcontactid_value"),
        *_audit(),
    ),
    binds=(BindSpec("ownerId", "ownerid", "systemusers"),),
    status=StatusMap({0: "open", 1: "qualified", 2: "disqualified"}),
)

_SALES_TOTALS = (
    _ro("totalAmount", "totalamount"),
    _ro("totalLineItemAmount", "totallineitemamount"),
    _ro("totalDiscountAmount", "totaldiscountamount"),
    _ro("totalTax", "totaltax"),
    FieldSpec("freightAmount", "freightamount"),
    FieldSpec("discountPercentage", "discountpercentage"),
    FieldSpec("discountAmount", "discountamount"),
)

QUOTE = EntityMapper(
    "quote",
    "quoteid",
    (
        FieldSpec("name", "name"),
        _ro("quoteNumber", "quotenumber"),
        FieldSpec("description", "description"),
        FieldSpec("effectiveFrom", "effectivefrom"),
        FieldSpec("effectiveTo", "effectiveto"),
        *_SALES_TOTALS,
        STATE_CODE,
        _ro("opportunityId", "_opportunityid_value"),
        _ro("customerId", "_customerid_value"),
        _ro("priceLevelId", "_pricelevelid_value"),
        OWNER,
        _ro("currencyId", "_transactioncurrencyid_value"),
        *_audit(),
    ),
    binds=(
        BindSpec("opportunityId", "opportunityid", "opportunities", create_only=True),
        BindSpec("customerAccountId", "customerid_account", "accounts", create_only=True),
        BindSpec("priceLevelId", "pricelevelid", "pricelevels", create_only=True),
        BindSpec("currencyId", "transactioncurrencyid", "transactioncurrencies", create_only=True),
    ),
    status=StatusMap({0: "draft", 1: "active", 2: "won", 3: "closed"}),
)

_LINE_ITEM_FIELDS = (
    _ro("productId", "_productid_value"),
    FieldSpec("productDescription", "productdescription"),
    FieldSpec("quantity", "quantity"),
    FieldSpec("pricePerUnit", "priceperunit"),
    _ro("baseAmount", "baseamount"),
    _ro("extendedAmount", "extendedamount"),
    FieldSpec("manualDiscountAmount", "manualdiscountamount"),
    FieldSpec("tax", "tax"),
)

QUOTE_DETAIL = EntityMapper(
    "quotedetail",
    "quotedetailid",
    (
        _ro("quoteId", "_quoteid_value"),
        *_LINE_ITEM_FIELDS,
        _ro("uomId", "_uomid_value"),
        FieldSpec("isPriceOverridden", "ispriceoverridden"),
        _ro("isProductOverridden", "isproductoverridden"),
    ),
    binds=(
        BindSpec("quoteId", "quoteid", "quotes", create_only=True),
        BindSpec("productId", "productid", "products", create_only=True),
        BindSpec("uomId", "uomid", "uoms", create_only=True),
    ),
)

ORDER = EntityMapper(
    "salesorder",
    "salesorderid",
    (
        FieldSpec("name", "name"),
        _ro("orderNumber", "ordernumber"),
        FieldSpec("description", "description"),
        *_SALES_TOTALS,
        _ro("dateDelivered", "datedelivered"),
        FieldSpec("requestDeliveryBy", "requestdeliveryby"),
        STATE_CODE,
        _ro("quoteId", "_quoteid_value"),
        _ro("opportunityId", "_opportunityid_value"),
        _ro("customerId", "_customerid_value"),
        _ro("priceLevelId", "_pricelevelid_value"),
        OWNER,
        *_audit(),
    ),
    binds=(
        BindSpec("quoteId", "quoteid", "quotes", create_only=True),
        BindSpec("opportunityId", "opportunityid", "opportunities", create_only=True),
        BindSpec("customerAccountId", "customerid_account", "accounts", create_only=True),
        BindSpec("priceLevelId", "pricelevelid", "pricelevels", create_only=True),
    ),
    status=StatusMap({0: "active", 1: "submitted", 2: "cancelled", 3: "fulfilled", 4: "invoiced"}),
)

ORDER_DETAIL = EntityMapper(
    "salesorderdetail",
    "salesorderdetailid",
    (_ro("salesOrderId", "_salesorderid_value"), *_LINE_ITEM_FIELDS),
    binds=(
        BindSpec("salesOrderId", "salesorderid", "salesorders", create_only=True),
        BindSpec("productId", "productid", "products", create_only=True),
    ),
)

INVOICE = EntityMapper(
    "invoice",
    "invoiceid",
    (
        FieldSpec("name", "name"),
        _ro("invoiceNumber", "invoicenumber"),
        FieldSpec("description", "description"),
        *_SALES_TOTALS,
        FieldSpec("dueDate", "duedate"),
        _ro("dateDelivered", "datedelivered"),
        STATE_CODE,
        _ro("isPriceLocked", "ispricelocked"),
        _ro("salesOrderId", "_salesorderid_value"),
        _ro("opportunityId", "_opportunityid_value"),
        _ro("customerId", "_customerid_value"),
        _ro("priceLevelId", "_pricelevelid_value"),
        OWNER,
        *_audit(),
    ),
    binds=(
        BindSpec("salesOrderId", "salesorderid", "salesorders", create_only=True),
        BindSpec("customerAccountId", "customerid_account", "accounts", create_only=True),
        BindSpec("priceLevelId", "pricelevelid", "pricelevels", create_only=True),
    ),
    status=StatusMap({0: "active", 2: "closed", 3: "paid", 4: "cancelled"}),
)

PRODUCT = EntityMapper(
    "product",
    "productid",
    (
        FieldSpec("name", "name"),
        FieldSpec("productNumber", "productnumber"),
        FieldSpec("description", "description"),
        FieldSpec("productStructure", "productstructure", create_only=True),
        FieldSpec("productTypeCode", "producttypecode"),
        FieldSpec("quantityDecimal", "quantitydecimal", create_only=True),
        FieldSpec("currentCost", "currentcost"),
        FieldSpec("standardCost", "standardcost"),
        FieldSpec("price", "price"),
        _ro("stockWeight", "stockweight"),
        _ro("stockVolume", "stockvolume"),
        _ro("quantityOnHand", "quantityonhand"),
        _ro("defaultUomId", "_defaultuomid_value"),
        _ro("defaultUomScheduleId", "_defaultuomscheduleid_value"),
        _ro("subjectId", "_subjectid_value"),
        STATE_CODE,
        *_audit(),
    ),
    binds=(
        BindSpec("defaultUomId", "defaultuomid", "uoms", create_only=True),
        BindSpec("defaultUomScheduleId", "defaultuomscheduleid", "uomschedules", create_only=True),
    ),
    status=StatusMap(
        {3: "draft", 0: "active", 1: "retired", 2: "under_revision"}, default="draft"
    ),
    defaults={"productstructure": 1},
)

PRICE_LEVEL = EntityMapper(
    "pricelevel",
    "pricelevelid",
    (
        FieldSpec("name", "name"),
        FieldSpec("description", "description"),
        FieldSpec("beginDate", "begindate"),
        FieldSpec("endDate", "enddate"),
        _ro("freightTermsCode", "freighttermscode"),
        _ro("paymentMethodCode", "paymentmethodcode"),
        _ro("shippingMethodCode", "shippingmethodcode"),
        STATE_CODE,
        _ro("currencyId", "_transactioncurrencyid_value"),
        *_audit(),
    ),
    binds=(BindSpec("currencyId", "transactioncurrencyid", "transactioncurrencies"),),
    status=StatusMap(ACTIVE_INACTIVE),
)

COMPETITOR = EntityMapper(
    "competitor",
    "competitorid",
    (
        FieldSpec("name", "name"),
        FieldSpec("website", "websiteurl"),
        FieldSpec("tickerSymbol", "tickersymbol"),
        _ro("stockExchange", "stockexchange"),
        _ro("reportedRevenue", "reportedrevenue"),
        _ro("reportingQuarter", "reportingquarter"),
        _ro("reportingYear", "reportingyear"),
        FieldSpec("keyProduct", "keyproduct"),
        FieldSpec("strengths", "strengths"),
        FieldSpec("weaknesses", "weaknesses"),
        FieldSpec("overview", "overview"),
        _ro("opportunities", "opportunities"),
        _ro("threats", "threats"),
        _ro("winPercentage", "winpercentage"),
        *_address(read_only=True),
        STATE_CODE,
        *_audit(),
    ),
    status=StatusMap(ACTIVE_INACTIVE),
)

CAMPAIGN = EntityMapper(
    "campaign",
    "campaignid",
    (
        FieldSpec("name", "name"),
        FieldSpec("codeName", "codename"),
        FieldSpec("description", "description"),
        FieldSpec("message", "message"),
        FieldSpec("objective", "objective"),
        FieldSpec("typeCode", "typecode"),
        FieldSpec("proposedStart", "proposedstart"),
        FieldSpec("proposedEnd", "proposedend"),
        _ro("actualStart", "actualstart"),
        _ro("actualEnd", "actualend"),
        FieldSpec("budgetedCost", "budgetedcost"),
        _ro("otherCost", "othercost"),
        _ro("totalCampaignActivityActualCost", "totalcampaignactivityactualcost"),
        _ro("totalActualCost", "totalactualcost"),
        _ro("expectedResponse", "expectedresponse"),
        _ro("expectedRevenue", "expectedrevenue"),
        STATE_CODE,
        _ro("priceLevelId", "_pricelevelid_value"),
        OWNER,
        _ro("currencyId", "_transactioncurrencyid_value"),
        *_audit(),
    ),
    binds=(
        BindSpec("priceLevelId", "pricelevelid", "pricelevels", create_only=True),
        BindSpec("currencyId", "transactioncurrencyid", "transactioncurrencies", create_only=True),
    ),
    status=StatusMap(ACTIVE_INACTIVE),
)

_CAMPAIGN_ITEM_STATUS = StatusMap({0: "open", 1: "closed", 2: "cancelled"})

CAMPAIGN_ACTIVITY = EntityMapper(
    "campaignactivity",
    "activityid",
    (
        FieldSpec("subject", "subject"),
        FieldSpec("description", "description"),
        FieldSpec("channelTypeCode", "channeltypecode"),
        FieldSpec("typeCode", "typecode"),
        FieldSpec("scheduledStart", "scheduledstart"),
        FieldSpec("scheduledEnd", "scheduledend"),
        FieldSpec("budgetedCost", "budgetedcost"),
        _ro("actualCost", "actualcost"),
        *_audit(modified=False),
    ),
    status=_CAMPAIGN_ITEM_STATUS,
)

CAMPAIGN_RESPONSE = EntityMapper(
    "campaignresponse",
    "activityid",
    (
        FieldSpec("subject", "subject"),
        FieldSpec("description", "description"),
        FieldSpec("channelTypeCode", "channeltypecode"),
        FieldSpec("responseCode", "responsecode"),
        FieldSpec("receivedOn", "receivedon"),
        FieldSpec("firstName", "firstname"),
        FieldSpec("lastName", "lastname"),
        FieldSpec("emailAddress", "emailaddress"),
        FieldSpec("telephone", "telephone"),
        FieldSpec("companyName", "companyname"),
        *_audit(modified=False),
    ),
    status=_CAMPAIGN_ITEM_STATUS,
)

CASE = EntityMapper(
    "incident",
    "incidentid",
    (
        FieldSpec("title", "title"),
        _ro("ticketNumber", "ticketnumber"),
        FieldSpec("description", "description"),
        FieldSpec("caseOriginCode", "caseorigincode"),
        FieldSpec("caseTypeCode", "casetypecode"),
        FieldSpec("priorityCode", "prioritycode"),
        FieldSpec("severityCode", "severitycode"),
        STATE_CODE,
        _ro("escalatedOn", "escalatedon"),
        _ro("isEscalated", "isescalated"),
        _ro("followUpBy", "followupby"),
        _ro("customerId", "_customerid_value"),
        _ro("primaryContactId", "_primarycontactid_value"),
        _ro("productId", "_productid_value"),
        _ro("subjectId", "_subjectid_value"),
        OWNER,
        _ro("entitlementId", "_entitlementid_value"),
        _ro("contractId", "_contractid_value"),
        _ro("contractDetailId", "_contractdetailid_value"),
        _ro("resolveBy", "resolveby"),
        _ro("responseBy", "responseby"),
        *_audit(),
    ),
    binds=(
        BindSpec("customerAccountId", "customerid_account", "accounts", create_only=True),
        BindSpec("customerContactId", "customerid_contact", "contacts", create_only=True),
        BindSpec("primaryContactId", "primarycontactid", "contacts", create_only=True),
        BindSpec("productId", "productid", "products", create_only=True),
        BindSpec("subjectId", "subjectid", "subjects", create_only=True),
    ),
    status=StatusMap({0: "active", 1: "resolved", 2: "cancelled"}),
)

GOAL = EntityMapper(
    "goal",
    "goalid",
    (
        FieldSpec("title", "title"),
        _ro("goalOwnerId", "_goalownerid_value"),
        _ro("metricId", "_metricid_value"),
        FieldSpec("targetMoney", "targetmoney"),
        FieldSpec("targetDecimal", "targetdecimal"),
        FieldSpec("targetInteger", "targetinteger"),
        _ro("actualMoney", "actualmoney"),
        _ro("actualDecimal", "actualdecimal"),
        _ro("actualInteger", "actualinteger"),
        _ro("inProgressMoney", "inprogressmoney"),
        _ro("inProgressDecimal", "inprogressdecimal"),
        _ro("inProgressInteger", "inprogressinteger"),
        _ro("percentage", "percentage"),
        FieldSpec("fiscalPeriod", "fiscalperiod"),
        FieldSpec("fiscalYear", "fiscalyear"),
        FieldSpec("goalStartDate", "goalstartdate"),
        FieldSpec("goalEndDate", "goalenddate"),
        FieldSpec("considerOnlyGoalOwnersRecords", "consideronlygoalownersrecords"),
        _ro("parentGoalId", "_parentgoalid_value"),
        STATE_CODE,
        _ro("lastRolledUpDate", "lastrolledupdate"),
        *_audit(),
    ),
    binds=(
        BindSpec("goalOwnerId", "goalownerid", "systemusers", create_only=True),
        BindSpec("metricId", "metricid", "metrics", create_only=True),
        BindSpec("parentGoalId", "parentgoalid", "goals", create_only=True),
    ),
    status=StatusMap(ACTIVE_INACTIVE),
)

GOAL_METRIC = EntityMapper(
    "metric",
    "metricid",
    (
        FieldSpec("name", "name"),
        FieldSpec("description", "description"),
        _ro("amountDataType", "amountdatatype"),
        _ro("isAmount", "isamount"),
        _ro("isStretchTracked", "isstretchtracked"),
        STATE_CODE,
    ),
    status=StatusMap(ACTIVE_INACTIVE),
    order_by="name asc",
)

NOTE = EntityMapper(
    "annotation",
    "annotationid",
    (
        FieldSpec("subject", "subject"),
        FieldSpec("noteText", "notetext"),
        _ro("objectId", "_objectid_value"),
        _ro("objectTypeCode", "objecttypecode"),
        FieldSpec("isDocument", "isdocument"),
        FieldSpec("fileName", "filename"),
        FieldSpec("mimeType", "mimetype"),
        # the attachment body is only fetched by the attachment call
        FieldSpec("documentBody", "documentbody", selected=False),
        _ro("fileSize", "filesize"),
        OWNER,
        _ro("createdById", "_createdby_value"),
        *_audit(),
    ),
)

SYSTEM_USER = EntityMapper(
    "systemuser",
    "systemuserid",
    (
        _ro("fullName", "fullname"),
        _ro("firstName", "firstname"),
        _ro("lastName", "lastname"),
        _ro("domainName", "domainname"),
        _ro("internalEmailAddress", "internalemailaddress"),
        _ro("title", "title"),
        _ro("jobTitle", "jobtitle"),
        _ro("mobilePhone", "mobilephone"),
        _ro("phone", "address1_telephone1"),
        _ro("businessUnitId", "_businessunitid_value"),
        _ro("territoryId", "_territoryid_value"),
        _ro("positionId", "_positionid_value"),
        _ro("queueId", "_queueid_value"),
        _ro("isDisabled", "isdisabled"),
        _ro("accessMode", "accessmode"),
        _ro("userLicenseType", "userlicensetype"),
        _ro("setupUser", "setupuser"),
        *_audit(),
    ),
    order_by="fullname asc",
)

TEAM = EntityMapper(
    "team",
    "teamid",
    (
        FieldSpec("name", "name"),
        FieldSpec("description", "description"),
        FieldSpec("teamType", "teamtype", create_only=True),
        _ro("businessUnitId", "_businessunitid_value"),
        _ro("administratorId", "_administratorid_value"),
        _ro("queueId", "_queueid_value"),
        _ro("isDefault", "isdefault"),
        *_audit(modified=False),
    ),
    binds=(
        BindSpec("businessUnitId", "businessunitid", "businessunits", create_only=True),
        BindSpec("administratorId", "administratorid", "systemusers"),
    ),
    defaults={"teamtype": 0},
    order_by="name asc",
)

BUSINESS_UNIT = EntityMapper(
    "businessunit",
    "businessunitid",
    (
        _ro("name", "name"),
        _ro("parentBusinessUnitId", "_parentbusinessunitid_value"),
        _ro("divisionName", "divisionname"),
        _ro("emailAddress", "emailaddress"),
        _ro("website", "websiteurl"),
        _ro("isDisabled", "isdisabled"),
        *_audit(modified=False),
    ),
    order_by="name asc",
)


def map_pipeline_stage(stage: Dict[str, Any], order: int) -> Dict[str, Any]:
    """processstage record -> pipeline stage; stagecategory 3 is the closing stage."""
    closing = stage.get("stagecategory") == 3
    return {
        "id": stage.get("processstageid"),
        "name": stage.get("stagename"),
        "order": order,
        "isClosed": closing,
        "isWon": closing,
    }


def label_of(localized: Any, fallback: Any = None) -> Any:
    """``{"UserLocalizedLabel": {"Label": ...}}`` -> label text."""
    if isinstance(localized, dict):
        user_label = localized.get("UserLocalizedLabel")
        if isinstance(user_label, dict) and user_label.get("Label"):
            return user_label["Label"]
    return fallback


def map_option(option: Dict[str, Any]) -> Dict[str, Any]:
    value = option.get("Value")
    return {"value": value, "label": label_of(option.get("Label"), str(value))}
