"""Algolia Query Translator

Lets front ends written against the Algolia multi-query protocol search the
Typesense collection. Three pure functions:

- ``parse_params``: URL-encoded ``params`` string -> ``AlgoliaQuery``
- ``to_search_params``: ``AlgoliaQuery`` -> Typesense search parameters
- ``to_protocol_response``: Typesense result -> Algolia result object

Algolia pages are 0-based and Typesense pages are 1-based; the conversion
happens only here.
"""

import json
import logging
import math
import re
from typing import Any, Dict, List, Optional, Union
from urllib.parse import parse_qs

from pydantic import BaseModel

from .typesense_config import CATEGORY_FIELD, CATEGORY_LEVELS, QUERY_BY_FIELDS

logger = logging.getLogger(__name__)

DEFAULT_HITS_PER_PAGE = 20
DEFAULT_SORT = "relevance_score:desc"
HIGHLIGHT_FIELDS = ("title", "brand", "sku")

_NUMERIC_FILTER = re.compile(r"^\s*([\w.]+)\s*(<=|>=|!=|<|>|=)\s*(-?\d+(?:\.\d+)?)\s*$")
_NUMERIC_RANGE = re.compile(r"^\s*([\w.]+)\s*:\s*(-?\d+(?:\.\d+)?)\s+TO\s+(-?\d+(?:\.\d+)?)\s*$")

FacetFilter = Union[str, List[str]]


class AlgoliaQuery(BaseModel):
    """Parsed Algolia ``params`` string."""

    query: str = ""
    page: int = 0
    hits_per_page: int = DEFAULT_HITS_PER_PAGE
    facets: List[str] = []
    facet_filters: List[FacetFilter] = []
    numeric_filters: List[str] = []
    analytics: bool = False
    click_analytics: bool = False
    original_params: str = ""


def _json_list(raw: Optional[str], name: str) -> List[Any]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        # Algolia also accepts a bare comma-separated list
        logger.debug("%s is not JSON, splitting on commas: %r", name, raw)
        return [part.strip() for part in raw.split(",") if part.strip()]
    if isinstance(value, str):
        return [value]
    return value if isinstance(value, list) else []


def _int(raw: Optional[str], default: int) -> int:
    try:
        return int(raw) if raw not in (None, "") else default
    except ValueError:
        return default


def parse_params(params: Optional[str]) -> AlgoliaQuery:
    if not params:
        return AlgoliaQuery()

    qs = {key: values[-1] for key, values in parse_qs(params, keep_blank_values=True).items()}

    facet_filters: List[FacetFilter] = []
    for item in _json_list(qs.get("facetFilters"), "facetFilters"):
        if isinstance(item, str):
            facet_filters.append(item)
        elif isinstance(item, list):
            group = [f for f in item if isinstance(f, str)]
            if group:
                facet_filters.append(group)

    return AlgoliaQuery(
        query=qs.get("query", ""),
        page=max(0, _int(qs.get("page"), 0)),
        hits_per_page=max(0, _int(qs.get("hitsPerPage"), DEFAULT_HITS_PER_PAGE)),
        facets=[f for f in _json_list(qs.get("facets"), "facets") if isinstance(f, str)],
        facet_filters=facet_filters,
        numeric_filters=[
            f for f in _json_list(qs.get("numericFilters"), "numericFilters") if isinstance(f, str)
        ],
        analytics=qs.get("analytics") == "true",
        click_analytics=qs.get("clickAnalytics") == "true",
        original_params=params,
    )


def _facet_clause(facet_filter: str) -> Optional[str]:
    """``brand:Sony`` -> ``brand:=`Sony```; ``-brand:Sony`` -> ``brand:!=`Sony```."""
    if ":" not in facet_filter:
        return None
    field, value = facet_filter.split(":", 1)
    negate = field.startswith("-")
    field = field.lstrip("-").strip()
    if not field:
        return None
    value = value.replace("`", "")
    return f"{field}:{'!=' if negate else '='}`{value}`"


def _numeric_clause(numeric_filter: str) -> Optional[str]:
    match = _NUMERIC_RANGE.match(numeric_filter)
    if match:
        field, low, high = match.groups()
        return f"{field}:[{low}..{high}]"
    match = _NUMERIC_FILTER.match(numeric_filter)
    if match:
        field, op, value = match.groups()
        return f"{field}:{'=' if op == '=' else op}{value}"
    logger.debug("Ignoring unsupported numeric filter %r", numeric_filter)
    return None


def build_filter_by(query: AlgoliaQuery) -> str:
    """AND across top-level entries, OR inside nested facet-filter lists."""
    clauses: List[str] = []
    for entry in query.facet_filters:
        if isinstance(entry, list):
            group = [c for c in (_facet_clause(f) for f in entry) if c]
            if len(group) == 1:
                clauses.append(group[0])
            elif group:
                clauses.append("(" + " || ".join(group) + ")")
        else:
            clause = _facet_clause(entry)
            if clause:
                clauses.append(clause)

    clauses.extend(c for c in (_numeric_clause(f) for f in query.numeric_filters) if c)
    return " && ".join(clauses)


def to_search_params(query: AlgoliaQuery) -> Dict[str, Any]:
    params: Dict[str, Any] = {
        "q": query.query or "*",
        "query_by": QUERY_BY_FIELDS,
        "page": query.page + 1,
        "per_page": query.hits_per_page,
        "sort_by": DEFAULT_SORT,
    }
    if query.facets:
        params["facet_by"] = ",".join(query.facets)
    filter_by = build_filter_by(query)
    if filter_by:
        params["filter_by"] = filter_by
    return params


def _highlight_result(document: Dict[str, Any], highlights: List[Dict[str, Any]]) -> Dict[str, Any]:
    by_field = {h.get("field"): h for h in highlights if isinstance(h, dict)}
    result = {}
    for field in HIGHLIGHT_FIELDS:
        hl = by_field.get(field)
        if hl:
            matched = hl.get("matched_tokens") or []
            result[field] = {
                "value": hl.get("snippet", document.get(field)),
                "matchLevel": "full" if matched else "none",
                "matchedWords": matched,
            }
        else:
            result[field] = {"value": document.get(field), "matchLevel": "none", "matchedWords": []}
    return result


def _to_hit(raw_hit: Dict[str, Any]) -> Dict[str, Any]:
    document = dict(raw_hit.get("document") or {})
    hit = {**document, "objectID": str(document.get("objectID") or document.get("id", ""))}

    category = document.get(CATEGORY_FIELD)
    category = category if isinstance(category, dict) else {}
    hit[CATEGORY_FIELD] = {}
    for level in CATEGORY_LEVELS:
        value = category.get(level) or document.get(f"{CATEGORY_FIELD}.{level}")
        if isinstance(value, list):
            hit[CATEGORY_FIELD][level] = value
        else:
            hit[CATEGORY_FIELD][level] = [value] if value else []

    hit["_highlightResult"] = _highlight_result(document, raw_hit.get("highlights") or [])
    return hit


def _facet_stats(facet: Dict[str, Any]) -> Optional[Dict[str, float]]:
    stats = facet.get("stats")
    if isinstance(stats, dict) and {"min", "max"} <= stats.keys():
        return {key: stats[key] for key in ("min", "max", "avg", "sum") if key in stats}

    values = []
    for item in facet.get("counts") or []:
        try:
            values.append(float(item.get("value")))
        except (TypeError, ValueError):
            return None
    if not values:
        return None
    return {
        "min": min(values),
        "max": max(values),
        "avg": sum(values) / len(values),
        "sum": sum(values),
    }


def empty_response(query: AlgoliaQuery, index_name: str) -> Dict[str, Any]:
    """Result used when a sub-request fails; keeps the batch response well formed."""
    return to_protocol_response({}, query, index_name)


def to_protocol_response(
    result: Dict[str, Any], query: AlgoliaQuery, index_name: str
) -> Dict[str, Any]:
    found = int(result.get("found") or 0)
    hits_per_page = query.hits_per_page

    facets: Dict[str, Dict[str, int]] = {}
    facets_stats: Dict[str, Dict[str, float]] = {}
    for facet in result.get("facet_counts") or []:
        name = facet.get("field_name")
        if not name:
            continue
        facets[name] = {str(c.get("value")): int(c.get("count") or 0) for c in facet.get("counts") or []}
        stats = _facet_stats(facet)
        if stats:
            facets_stats[name] = stats

    processing_ms = int(result.get("search_time_ms") or 1)

    return {
        "hits": [_to_hit(h) for h in result.get("hits") or []] if hits_per_page else [],
        "nbHits": found,
        "page": query.page,
        "nbPages": math.ceil(found / hits_per_page) if hits_per_page else 0,
        "hitsPerPage": hits_per_page,
        "facets": facets,
        "facets_stats": facets_stats,
        "exhaustiveFacetsCount": True,
        "exhaustiveNbHits": True,
        "exhaustiveTypo": True,
        "exhaustive": {"facetsCount": True, "nbHits": True, "typo": True},
        "query": query.query,
        "params": query.original_params,
        "index": index_name,
        "processingTimeMS": processing_ms,
        "processingTimingsMS": {"total": processing_ms},
    }
