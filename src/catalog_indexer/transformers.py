"""Product Transformation Module

Maps one upstream product into one Typesense index document.

Key responsibilities:
  - Derive the stable primary key ``id`` from ``id`` / ``external_id``
  - Normalize hierarchical categories into lvl0 / lvl1 / lvl2 paths
  - Compute the ``relevance_score`` used as the default sort key
  - Collapse polymorphic fields (warranties, seller) into one shape
  - Coerce every array / object / numeric field so the document always
    matches the collection schema, whatever the upstream sent

The upstream product is never reused as the outbound document: every
field is read, normalized and written into a fresh dictionary.
"""

import copy
import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .errors import TransformError
from .typesense_config import (
    ARRAY_FIELDS,
    CATEGORY_FIELD,
    CATEGORY_SEPARATOR,
    OBJECT_FIELDS,
    STRING_LIMITS,
)

logger = logging.getLogger(__name__)

SEO_DISALLOWED_RE = re.compile(r"[^a-z0-9 ]")
SEO_SPACES_RE = re.compile(r" +")
NUMERIC_ID_RE = re.compile(r"-?\d+", re.ASCII)

DEFAULT_TITLE_SEO = "producto"
FALLBACK_RELEVANCE_SCORE = 50.0
MAX_RELEVANCE_SCORE = 100.0


# ============================================================================
# Coercion helpers
# ============================================================================


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _to_float(value: Any, default: float = 0.0) -> float:
    """Coerce to a finite float; booleans, garbage and NaN become ``default``."""
    if value is None or isinstance(value, bool):
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    return result if math.isfinite(result) else default


def _to_int(value: Any, default: int = 0) -> int:
    return int(_to_float(value, float(default)))


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes", "si", "sí"}
    return bool(value)


def _optional_str(value: Any, max_len: Optional[int] = None) -> Optional[str]:
    if value is None or value == "":
        return None
    s = str(value)
    return s[:max_len] if max_len else s


def _first_present(*values: Any) -> Any:
    """Return the first value that is not None (the ``??`` chain)."""
    for value in values:
        if value is not None:
            return value
    return None


# ============================================================================
# Field rules
# ============================================================================


def generate_title_seo(title: Any) -> str:
    """Build a URL slug from a product title.

    Lowercases, deletes everything outside ``[a-z0-9 ]``, turns runs of
    spaces into a single ``-`` and truncates to 100 characters. An empty
    title yields ``"producto"``.
    """
    if not title:
        return DEFAULT_TITLE_SEO
    slug = SEO_DISALLOWED_RE.sub("", str(title).lower())
    slug = SEO_SPACES_RE.sub("-", slug)
    return slug[: STRING_LIMITS["title_seo"]]


def _category_name(categories: List[Dict[str, Any]], level: int) -> Optional[str]:
    for cat in categories:
        if _to_int(cat.get("level"), -1) == level:
            name = cat.get("name")
            return str(name).lower() if name else None
    return None


def parse_categories(categories: Any) -> Dict[str, Optional[str]]:
    """
    Build the hierarchical category paths of a product.

    The upstream sends ``categories`` as a list of category chains, each a
    list of ``{id, name, level}`` where level 2 is the root. Only the first
    chain is used (or the field itself when it is a flat chain).

    Returns:
        ``{"lvl0": root, "lvl1": "root > child", "lvl2": "root > child > leaf"}``
        where a missing or repeated level collapses onto its parent. All
        three are None when no category can be read.
    """
    empty = {"lvl0": None, "lvl1": None, "lvl2": None}
    if not isinstance(categories, list) or not categories:
        return empty

    chain = categories[0] if isinstance(categories[0], list) else categories
    chain = [c for c in chain if isinstance(c, dict)]
    chain.sort(key=lambda c: _to_int(c.get("level"), 0), reverse=True)

    lvl0 = _category_name(chain, 2)
    lvl1 = _category_name(chain, 1)
    lvl2 = _category_name(chain, 0)

    # A chain without a root is re-anchored on its highest present level.
    if lvl0 is None:
        present = [name for name in (lvl1, lvl2) if name]
        if not present:
            return empty
        lvl0, lvl1, lvl2 = (present + [None, None])[:3]

    h0 = lvl0
    h1 = lvl0 if lvl1 is None or lvl1 == lvl0 else f"{lvl0}{CATEGORY_SEPARATOR}{lvl1}"
    h2 = h1 if lvl2 is None or lvl2 == lvl1 else f"{h1}{CATEGORY_SEPARATOR}{lvl2}"

    return {"lvl0": h0, "lvl1": h1, "lvl2": h2}


def calculate_relevance_score(product: Dict[str, Any]) -> float:
    """
    Compute the scalar relevance score used as the default sort key.

    Contributions (each only when the signal is positive):
      - stock:            min(stock * 0.3, 10)
      - average rating:   rating * 3
      - review volume:    min(log10(reviews + 1) * 3, 10)
      - discount:         min(discount * 0.16, 8)
      - super express:    +10
      - free shipping:    +7
      - active:           +5
      - relevance_sales:  min(sales * 0.15, 12)
      - relevance_amount: min(amount * 0.08, 8)

    The sum is rounded to two decimals and clamped to [0, 100]. Any
    unexpected failure yields 50.0.
    """
    try:
        rating = _as_dict(product.get("rating"))
        pricing = _as_dict(product.get("pricing"))
        features = _as_dict(product.get("features"))
        shipping = _as_dict(product.get("shipping"))

        score = 0.0

        stock = float(product.get("stock") or 0)
        if stock > 0:
            score += min(stock * 0.3, 10)

        avg_rating = float(_first_present(rating.get("average_score"), rating.get("average")) or 0)
        if avg_rating > 0:
            score += avg_rating * 3

        total_reviews = float(_first_present(rating.get("total_reviews"), rating.get("count")) or 0)
        if total_reviews > 0:
            score += min(math.log10(total_reviews + 1) * 3, 10)

        discount = float(pricing.get("percentage_discount") or 0)
        if discount > 0:
            score += min(discount * 0.16, 8)

        if _to_bool(features.get("super_express")):
            score += 10
        if _to_bool(shipping.get("is_free")):
            score += 7
        if _to_bool(product.get("is_active")):
            score += 5

        relevance_sales = float(product.get("relevance_sales") or 0)
        if relevance_sales > 0:
            score += min(relevance_sales * 0.15, 12)

        relevance_amount = float(product.get("relevance_amount") or 0)
        if relevance_amount > 0:
            score += min(relevance_amount * 0.08, 8)

        if not math.isfinite(score):
            return FALLBACK_RELEVANCE_SCORE
        return max(0.0, min(MAX_RELEVANCE_SCORE, round(score, 2)))
    except Exception:
        logger.debug("Relevance score fell back to %.1f for product %r",
                     FALLBACK_RELEVANCE_SCORE, product.get("id"), exc_info=True)
        return FALLBACK_RELEVANCE_SCORE


def fix_warranties(warranties: Any) -> Optional[Dict[str, Any]]:
    """Collapse the polymorphic ``warranties`` field into an object or None."""
    if warranties is None:
        return None
    if isinstance(warranties, dict):
        return warranties
    if isinstance(warranties, list) and warranties and isinstance(warranties[0], dict):
        return warranties[0]
    return None


def clean_array_fields(document: Dict[str, Any]) -> Dict[str, Any]:
    """
    Drop malformed entries from list fields.

    - attributes: keep objects carrying both ``name`` and ``value``
    - pictures / photos: keep objects carrying a ``source``
    - categories: keep non-empty inner lists
    """
    cleaned = dict(document)
    cleaned["attributes"] = [
        a for a in _as_list(cleaned.get("attributes"))
        if isinstance(a, dict) and a.get("name") and a.get("value")
    ]
    for key in ("pictures", "photos"):
        cleaned[key] = [
            p for p in _as_list(cleaned.get(key))
            if isinstance(p, dict) and p.get("source")
        ]
    cleaned["categories"] = [
        c for c in _as_list(cleaned.get("categories"))
        if isinstance(c, list) and len(c) > 0
    ]
    return cleaned


def extract_product_id(product: Dict[str, Any]) -> str:
    """
    Return the stable primary key of a product.

    ``id`` wins when usable; a missing, blank or non-scalar ``id`` falls
    back to ``external_id``.

    Raises:
        TransformError: if neither ``id`` nor ``external_id`` is usable
    """
    for raw_id in (product.get("id"), product.get("external_id")):
        if raw_id is None or isinstance(raw_id, (dict, list, bool)):
            continue
        product_id = str(raw_id).strip()
        if product_id:
            return product_id
    raise TransformError("unknown", "missing id and external_id")


# ============================================================================
# Document builder
# ============================================================================


def to_index_document(product: Any, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Convert one upstream product into a Typesense document.

    Args:
        product: Raw product dictionary from the upstream API
        now: Clock override used for default timestamps

    Returns:
        Index document keyed by ``id``

    Raises:
        TransformError: if the product has no usable id or cannot be mapped
    """
    if not isinstance(product, dict):
        raise TransformError("unknown", f"product is not an object (got {type(product).__name__})")

    doc_id = extract_product_id(product)

    try:
        return _build_document(product, doc_id, now or datetime.now(timezone.utc))
    except TransformError:
        raise
    except Exception as e:
        raise TransformError(doc_id, str(e)) from e


def _build_document(product: Dict[str, Any], doc_id: str, now: datetime) -> Dict[str, Any]:
    pricing = _as_dict(product.get("pricing"))
    shipping = _as_dict(product.get("shipping"))
    rating = _as_dict(product.get("rating"))
    features = _as_dict(product.get("features"))
    seller = product.get("seller") if isinstance(product.get("seller"), dict) else None

    categories = parse_categories(product.get("categories"))
    now_iso = now.isoformat()
    now_epoch = int(now.timestamp())

    title = str(product.get("title") or "")[: STRING_LIMITS["title"]]
    title_seo = product.get("title_seo") or generate_title_seo(product.get("title"))

    numeric_id = int(doc_id) if NUMERIC_ID_RE.fullmatch(doc_id) else None

    is_store_only = _to_bool(product.get("is_store_only")) or _to_bool(features.get("is_store_only"))
    is_store_pickup = _to_bool(product.get("is_store_pickup")) or _to_bool(features.get("is_store_pickup"))
    has_free_shipping = _to_bool(shipping.get("is_free")) or _to_bool(shipping.get("free_shipping"))

    document: Dict[str, Any] = {
        # ------------------------------------------------------------------
        # Primary key and identifiers
        # ------------------------------------------------------------------
        "id": doc_id,
        "objectID": doc_id,
        "product_id": numeric_id,
        "external_id": str(_first_present(product.get("external_id"), product.get("id"))),
        "ean": _optional_str(product.get("ean")),
        "sku": _optional_str(product.get("sku")),

        # ------------------------------------------------------------------
        # Scalars
        # ------------------------------------------------------------------
        "title": title,
        "title_seo": str(title_seo)[: STRING_LIMITS["title_seo"]],
        "brand": _optional_str(product.get("brand")),
        "description": _optional_str(product.get("description")),
        "short_description": _optional_str(
            product.get("short_description"), STRING_LIMITS["short_description"]
        ),
        "division": _to_int(product.get("division"), 1) or 1,
        "stock": _to_int(product.get("stock"), 0),
        "is_active": _to_bool(product.get("is_active")),
        "sale_price": _to_float(_first_present(pricing.get("sales_price"), pricing.get("sale_price"))),
        "price": _to_float(pricing.get("list_price")),
        "percent_off": _to_float(pricing.get("percentage_discount")),
        "relevance_score": calculate_relevance_score(product),
        "relevance_sales": _to_float(product.get("relevance_sales")),
        "relevance_amount": _to_float(product.get("relevance_amount")),
        "wallet": _to_bool(product.get("wallet")),
        "home": _to_bool(product.get("home")),
        "temporada": _to_int(product.get("temporada"), 0),

        # ------------------------------------------------------------------
        # Timestamps
        # ------------------------------------------------------------------
        "created_at": _optional_str(product.get("created_at")) or now_iso,
        "updated_at": _optional_str(product.get("updated_at")) or now_iso,
        "indexing_date": now_epoch,
        "fecha_alta_cms": _to_int(product.get("fecha_alta_cms"), now_epoch) or now_epoch,
        "presale_date": _optional_str(product.get("presale_date")),
        "extended_catalogue_days": _to_int(product.get("extended_catalogue_days"), 0) or None,

        # ------------------------------------------------------------------
        # Original complex objects
        # ------------------------------------------------------------------
        "pricing": pricing,
        "shipping": shipping,
        "rating": rating,
        "features": features,
        "variations": _as_dict(product.get("variations")),
        "seller": seller,
        "warranties": fix_warranties(product.get("warranties")),

        # ------------------------------------------------------------------
        # Arrays
        # ------------------------------------------------------------------
        "pictures": _as_list(product.get("pictures")),
        "photos": _as_list(product.get("pictures")),
        "attributes": _as_list(product.get("attributes")),
        "categories": _as_list(product.get("categories")),
        "videos": _as_list(product.get("videos")),
        "volumetries": _as_list(product.get("volumetries")),
        "cs_months": _as_list(product.get("cs_months")),
        "ccs_months": _as_list(product.get("ccs_months")),
        "sellers": [seller] if seller else [],

        # ------------------------------------------------------------------
        # Booleans derived from nested feature / shipping flags
        # ------------------------------------------------------------------
        "is_store_only": is_store_only,
        "is_store_pickup": is_store_pickup,
        "store_only": is_store_only,
        "store_pickup": is_store_pickup,
        "is_backorder": _to_bool(features.get("is_backorder")),
        "is_big_ticket": _to_bool(features.get("is_big_ticket")),
        "super_express": _to_bool(features.get("super_express")),
        "digital": _to_bool(features.get("digital")),
        "fulfillment_id": _optional_str(features.get("fulfillment_id")),
        "fulfillment": _to_bool(features.get("super_express")) or bool(features.get("fulfillment_id")),
        "has_free_shipping": has_free_shipping,

        # ------------------------------------------------------------------
        # Ratings
        # ------------------------------------------------------------------
        "review_rating": _to_float(_first_present(rating.get("average_score"), rating.get("average"))),
        "total_reviews": _to_int(_first_present(rating.get("total_reviews"), rating.get("count"))),
        "store_rating": _to_float((seller or {}).get("store_rating")),

        # ------------------------------------------------------------------
        # Hierarchical categories: nested object plus dotted scalars,
        # the facet API indexes the dotted names.
        # ------------------------------------------------------------------
        CATEGORY_FIELD: dict(categories),
        f"{CATEGORY_FIELD}.lvl0": categories["lvl0"],
        f"{CATEGORY_FIELD}.lvl1": categories["lvl1"],
        f"{CATEGORY_FIELD}.lvl2": categories["lvl2"],
    }

    document = clean_array_fields(document)

    for key in ARRAY_FIELDS:
        document[key] = list(_as_list(document.get(key)))
    for key in OBJECT_FIELDS:
        document[key] = copy.deepcopy(_as_dict(document.get(key)))

    return document
