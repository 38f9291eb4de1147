"""
Schema-less operations: OData/FetchXML queries, aggregates, batch writes,
metadata lookups and ``$ref`` associations.

Results here are plain dicts/lists of wire records; the caller chooses the
entity and the columns at runtime, so nothing is forced through a mapper.
Filter strings are passed to the service verbatim (no escaping); callers must
treat them as trusted input.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from config import settings
from entity_mappers import label_of, map_option
from odata_client import ODataClient, entity_set_name, values

logger = logging.getLogger(__name__)

AGGREGATE_FUNCTIONS = ("count", "sum", "avg", "min", "max")


def build_aggregate_fetchxml(
    entity_type: str,
    aggregate_function: str,
    field: Optional[str] = None,
    filter: Optional[str] = None,
    group_by: Optional[str] = None,
) -> str:
    """
    Minimal aggregate FetchXML document.

    Any non-empty ``filter`` adds the single "active records" condition
    (statecode eq 0); the filter text itself is not translated.
    """
    if aggregate_function not in AGGREGATE_FUNCTIONS:
        raise ValueError(f"Unsupported aggregate function: {aggregate_function}")

    fetch = ET.Element("fetch", {"aggregate": "true"})
    entity = ET.SubElement(fetch, "entity", {"name": entity_type})
    if aggregate_function == "count":
        ET.SubElement(
            entity,
            "attribute",
            {"name": field or f"{entity_type}id", "aggregate": "count", "alias": "count"},
        )
    else:
        if not field:
            raise ValueError(f"A field is required for the '{aggregate_function}' aggregate")
        ET.SubElement(
            entity,
            "attribute",
            {"name": field, "aggregate": aggregate_function, "alias": "result"},
        )
    if filter:
        condition_block = ET.SubElement(entity, "filter")
        ET.SubElement(
            condition_block, "condition", {"attribute": "statecode", "operator": "eq", "value": "0"}
        )
    if group_by:
        ET.SubElement(entity, "attribute", {"name": group_by, "groupby": "true", "alias": "groupby"})
    return ET.tostring(fetch, encoding="unicode")


def limit_fetchxml(fetch_xml: str, top: Optional[int]) -> str:
    """Apply a row limit as the ``count`` attribute unless the document already has one."""
    if not top:
        return fetch_xml
    try:
        root = ET.fromstring(fetch_xml)
    except ET.ParseError:
        logger.warning("Stored FetchXML could not be parsed; running it without a row limit")
        return fetch_xml
    if root.tag != "fetch" or root.get("count") or root.get("top"):
        return fetch_xml
    root.set("count", str(int(top)))
    return ET.tostring(root, encoding="unicode")


def _error_text(exc: Exception) -> str:
    return getattr(exc, "message", None) or str(exc) or exc.__class__.__name__


class CrmQueryService:
    def __init__(self, odata: ODataClient, max_workers: Optional[int] = None) -> None:
        self.odata = odata
        self.max_workers = max_workers or settings.DYNAMICS_BATCH_WORKERS

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def execute_query(
        self,
        entity_type: str,
        select: Optional[str] = None,
        filter: Optional[str] = None,
        orderby: Optional[str] = None,
        expand: Optional[str] = None,
        top: Optional[int] = None,
        skip: Optional[int] = None,
        count: bool = False,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if select:
            params["$select"] = select
        if filter:
            params["$filter"] = filter
        if orderby:
            params["$orderby"] = orderby
        if expand:
            params["$expand"] = expand
        if top:
            params["$top"] = int(top)
        if skip:
            params["$skip"] = int(skip)
        if count:
            params["$count"] = "true"

        payload = self.odata.get(f"/{entity_set_name(entity_type)}", params=params) or {}
        result: Dict[str, Any] = {
            "records": values(payload),
            "hasMore": bool(payload.get("@odata.nextLink")),
        }
        if payload.get("@odata.count") is not None:
            result["totalCount"] = payload["@odata.count"]
        return result

    def execute_fetchxml(self, entity_type: str, fetch_xml: str) -> List[Dict[str, Any]]:
        payload = self.odata.get(f"/{entity_set_name(entity_type)}", params={"fetchXml": fetch_xml})
        return values(payload)

    def execute_aggregate(
        self,
        entity_type: str,
        aggregate_function: str,
        field: Optional[str] = None,
        filter: Optional[str] = None,
        group_by: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        fetch_xml = build_aggregate_fetchxml(entity_type, aggregate_function, field, filter, group_by)
        return self.execute_fetchxml(entity_type, fetch_xml)

    def get_record_count(self, entity_type: str, filter: Optional[str] = None) -> int:
        params: Dict[str, Any] = {"$count": "true", "$top": 0}
        if filter:
            params["$filter"] = filter
        payload = self.odata.get(f"/{entity_set_name(entity_type)}", params=params) or {}
        return payload.get("@odata.count") or 0

    def execute_saved_query(self, saved_query_id: str, entity_type: str, top: int = 50) -> List[Dict[str, Any]]:
        query = self.odata.get(f"/savedqueries({saved_query_id})", params={"$select": "fetchxml"}) or {}
        return self.execute_fetchxml(entity_type, limit_fetchxml(query.get("fetchxml") or "", top))

    def execute_user_query(self, user_query_id: str, entity_type: str, top: int = 50) -> List[Dict[str, Any]]:
        query = self.odata.get(f"/userqueries({user_query_id})", params={"$select": "fetchxml"}) or {}
        return self.execute_fetchxml(entity_type, limit_fetchxml(query.get("fetchxml") or "", top))

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def _dispatch(
        self, items: Sequence[Any], call: Callable[[Any], Any]
    ) -> List[Tuple[int, Any, Optional[str]]]:
        """Run ``call`` for every item concurrently; outcomes come back in dispatch order."""

        def attempt(indexed: Tuple[int, Any]) -> Tuple[int, Any, Optional[str]]:
            index, item = indexed
            try:
                return index, call(item), None
            except Exception as exc:  # reported per item
                logger.warning(f"Batch item {index} failed: {exc}")
                return index, None, _error_text(exc)

        if not items:
            return []
        workers = max(1, min(self.max_workers, len(items)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(attempt, enumerate(items)))

    @staticmethod
    def _tally(
        outcomes: List[Tuple[int, Any, Optional[str]]],
        continue_on_error: bool,
        on_success: Optional[Callable[[Any], None]] = None,
    ) -> Dict[str, Any]:
        """
        Count outcomes in dispatch order. Without ``continue_on_error`` counting stops at
        the first failure; requests already dispatched have still completed.
        """
        summary: Dict[str, Any] = {"succeeded": 0, "failed": 0, "errors": []}
        for index, value, error in outcomes:
            if error is None:
                summary["succeeded"] += 1
                if on_success is not None:
                    on_success(value)
                continue
            summary["failed"] += 1
            summary["errors"].append({"index": index, "message": error})
            if not continue_on_error:
                break
        return summary

    def batch_create(
        self, entity_type: str, records: Sequence[Dict[str, Any]], continue_on_error: bool = False
    ) -> Dict[str, Any]:
        path = f"/{entity_set_name(entity_type)}"
        outcomes = self._dispatch(records, lambda record: self.odata.create_entity(path, record).id)
        created_ids: List[str] = []
        summary = self._tally(outcomes, continue_on_error, created_ids.append)
        summary["createdIds"] = created_ids
        return summary

    def batch_update(
        self, entity_type: str, updates: Sequence[Dict[str, Any]], continue_on_error: bool = False
    ) -> Dict[str, Any]:
        entity_set = entity_set_name(entity_type)
        outcomes = self._dispatch(
            updates,
            lambda update: self.odata.patch(f"/{entity_set}({update['id']})", update.get("data") or {}),
        )
        return self._tally(outcomes, continue_on_error)

    def batch_delete(
        self, entity_type: str, ids: Sequence[str], continue_on_error: bool = False
    ) -> Dict[str, Any]:
        entity_set = entity_set_name(entity_type)
        outcomes = self._dispatch(ids, lambda record_id: self.odata.delete(f"/{entity_set}({record_id})"))
        return self._tally(outcomes, continue_on_error)

    def batch_upsert(
        self, entity_type: str, records: Sequence[Dict[str, Any]], continue_on_error: bool = False
    ) -> Dict[str, Any]:
        """
        Sequential upsert. A record with ``id`` or ``alternateKey`` is PATCHed with
        ``If-Match: *`` (counted as updated); anything else is POSTed (created).
        """
        entity_set = entity_set_name(entity_type)
        summary: Dict[str, Any] = {"succeeded": 0, "failed": 0, "created": 0, "updated": 0, "errors": []}
        for index, record in enumerate(records):
            record_id = record.get("id")
            alternate_key = record.get("alternateKey")
            data = record.get("data") or {}
            try:
                if record_id:
                    self.odata.patch(f"/{entity_set}({record_id})", data, headers={"If-Match": "*"})
                elif alternate_key:
                    key = ",".join(f"{k}='{v}'" for k, v in alternate_key.items())
                    self.odata.patch(f"/{entity_set}({key})", data, headers={"If-Match": "*"})
                else:
                    self.odata.post(f"/{entity_set}", data)
            except Exception as exc:  # reported per item
                logger.warning(f"Upsert of record {index} failed: {exc}")
                summary["failed"] += 1
                summary["errors"].append({"index": index, "message": _error_text(exc)})
                if not continue_on_error:
                    break
                continue
            summary["succeeded"] += 1
            summary["updated" if (record_id or alternate_key) else "created"] += 1
        return summary

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def list_entity_metadata(
        self, filter: Optional[str] = None, include_custom: bool = True
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "$select": "LogicalName,DisplayName,Description,IsCustomEntity,PrimaryIdAttribute,PrimaryNameAttribute",
        }
        filters = []
        if filter:
            filters.append(f"contains(LogicalName,'{filter}')")
        if not include_custom:
            filters.append("IsCustomEntity eq false")
        if filters:
            params["$filter"] = " and ".join(filters)

        payload = self.odata.get("/EntityDefinitions", params=params)
        return [
            {
                "logicalName": e.get("LogicalName"),
                "displayName": label_of(e.get("DisplayName"), e.get("LogicalName")),
                "description": label_of(e.get("Description")),
                "isCustomEntity": e.get("IsCustomEntity"),
                "primaryIdAttribute": e.get("PrimaryIdAttribute"),
                "primaryNameAttribute": e.get("PrimaryNameAttribute"),
            }
            for e in values(payload)
        ]

    def get_entity_metadata(self, entity_logical_name: str) -> Any:
        return self.odata.get(f"/EntityDefinitions(LogicalName='{entity_logical_name}')")

    def list_entity_attributes(
        self, entity_logical_name: str, attribute_type: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "$select": "LogicalName,DisplayName,AttributeType,RequiredLevel,IsCustomAttribute,Description",
        }
        if attribute_type:
            params["$filter"] = f"AttributeType eq Microsoft.Dynamics.CRM.AttributeTypeCode'{attribute_type}'"
        payload = self.odata.get(
            f"/EntityDefinitions(LogicalName='{entity_logical_name}')/Attributes", params=params
        )
        attributes = []
        for a in values(payload):
            required = (a.get("RequiredLevel") or {}).get("Value")
            attributes.append(
                {
                    "logicalName": a.get("LogicalName"),
                    "displayName": label_of(a.get("DisplayName"), a.get("LogicalName")),
                    "attributeType": a.get("AttributeType"),
                    "isRequired": required in ("ApplicationRequired", "SystemRequired"),
                    "isCustomAttribute": a.get("IsCustomAttribute"),
                    "description": label_of(a.get("Description")),
                }
            )
        return attributes

    def get_attribute_metadata(self, entity_logical_name: str, attribute_logical_name: str) -> Any:
        return self.odata.get(
            f"/EntityDefinitions(LogicalName='{entity_logical_name}')"
            f"/Attributes(LogicalName='{attribute_logical_name}')"
        )

    def get_option_set_values(self, entity_logical_name: str, attribute_logical_name: str) -> List[Dict[str, Any]]:
        payload = self.odata.get(
            f"/EntityDefinitions(LogicalName='{entity_logical_name}')"
            f"/Attributes(LogicalName='{attribute_logical_name}')"
            "/Microsoft.Dynamics.CRM.PicklistAttributeMetadata",
            params={"$expand": "OptionSet"},
        ) or {}
        options = (payload.get("OptionSet") or {}).get("Options") or []
        return [map_option(o) for o in options]

    def get_global_option_set(self, option_set_name: str) -> List[Dict[str, Any]]:
        payload = self.odata.get(f"/GlobalOptionSetDefinitions(Name='{option_set_name}')") or {}
        return [map_option(o) for o in payload.get("Options") or []]

    # ------------------------------------------------------------------
    # Relationships ($ref associations)
    # ------------------------------------------------------------------

    def associate(
        self,
        source_entity_type: str,
        source_id: str,
        target_entity_type: str,
        target_id: str,
        relationship_name: str,
    ) -> None:
        """Link two existing records through a collection-valued navigation property."""
        self.odata.post(
            f"/{entity_set_name(source_entity_type)}({source_id})/{relationship_name}/$ref",
            {"@odata.id": self.odata.entity_url(entity_set_name(target_entity_type), target_id)},
        )

    def disassociate(
        self,
        source_entity_type: str,
        source_id: str,
        target_entity_type: str,
        target_id: str,
        relationship_name: str,
    ) -> None:
        self.odata.delete(
            f"/{entity_set_name(source_entity_type)}({source_id})/{relationship_name}({target_id})/$ref"
        )

    def list_related_records(
        self,
        entity_type: str,
        record_id: str,
        navigation_property: str,
        select: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {}
        if select:
            params["$select"] = select
        if limit:
            params["$top"] = int(limit)
        payload = self.odata.get(
            f"/{entity_set_name(entity_type)}({record_id})/{navigation_property}", params=params
        )
        return values(payload)
