"""
Typesense Collection Configuration

Shape of the documents the indexer writes and the parts of the
collection schema it depends on. The transformer uses the field groups
below to coerce every document into the declared shape, and the run
controller uses ``REQUIRED_SCHEMA_FIELDS`` to refuse to start against a
collection that cannot hold them.
"""

# --- Primary key ---

# Typesense uses the document "id" as its primary key; an upsert with an
# existing id replaces that document in place.
PRIMARY_KEY_FIELD = "id"
PRIMARY_KEY_TYPE = "string"

DEFAULT_SORTING_FIELD = "relevance_score"


# --- Hierarchical categories ---

CATEGORY_FIELD = "hierarchical_category"
CATEGORY_LEVELS = ("lvl0", "lvl1", "lvl2")
CATEGORY_SEPARATOR = " > "


# --- Field groups used for defensive coercion ---

ARRAY_FIELDS = (
    "pictures",
    "photos",
    "attributes",
    "categories",
    "videos",
    "volumetries",
    "cs_months",
    "ccs_months",
    "sellers",
)

OBJECT_FIELDS = (
    "pricing",
    "shipping",
    "rating",
    "features",
    "variations",
)

# Emitted as an object or null, never as an array.
NULLABLE_OBJECT_FIELDS = (
    "seller",
    "warranties",
)

STRING_LIMITS = {
    "title": 500,
    "short_description": 1000,
    "title_seo": 100,
}


# --- Schema expectations checked at startup ---

REQUIRED_SCHEMA_FIELDS = [
    "title",
    "stock",
    "is_active",
    "sale_price",
    DEFAULT_SORTING_FIELD,
    f"{CATEGORY_FIELD}.lvl0",
    f"{CATEGORY_FIELD}.lvl1",
    f"{CATEGORY_FIELD}.lvl2",
]

AUTO_SCHEMA_FIELD = ".*"


# --- Search defaults ---

QUERY_BY_FIELDS = "title,brand,description"
