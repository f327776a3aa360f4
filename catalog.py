"""
Categories, sub-categories and the catalog items that reference them.

Medicines, prescriptions and lab reports each live in their own domain. A
category id carries its domain as a prefix ("med_1718000000000"), and the
sub-category registry reads that prefix back to find the parent collection.
Items copy the display names of their category (and, for medicines, their
sub-category) at write time and fill them in at read time when missing.
"""
import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple, Type

from database import DocumentExistsError, Store, utcnow
from schemas import (
    Category,
    CategoryCreate,
    CategoryUpdate,
    LabReport,
    Medicine,
    Payload,
    Prescription,
    Record,
    SubCategory,
    SubCategoryCreate,
    SubCategoryUpdate,
)

logger = logging.getLogger(__name__)

BACKFILL_CONCURRENCY = int(os.getenv("BACKFILL_CONCURRENCY", "8"))
STRICT_CATEGORY_IDS = os.getenv("STRICT_CATEGORY_IDS", "").lower() in ("1", "true", "yes")


# ---------------- Errors -----------------

class CatalogError(Exception):
    pass


class NotFoundError(CatalogError):
    pass


class ReferentialIntegrityError(CatalogError):
    pass


class UnknownDomainError(CatalogError, ValueError):
    pass


# ---------------- Domains -----------------

class Domain(str, Enum):
    MEDICINE = "medicine"
    PRESCRIPTION = "prescription"
    LAB_REPORT = "labReport"

    @property
    def category_collection(self) -> str:
        return f"{self.value}Categories"

    @property
    def item_collection(self) -> str:
        return ITEM_COLLECTIONS[self]

    @property
    def prefix(self) -> str:
        return PREFIXES[self]


ITEM_COLLECTIONS = {
    Domain.MEDICINE: "medicines",
    Domain.PRESCRIPTION: "prescriptions",
    Domain.LAB_REPORT: "labReports",
}

PREFIXES = {
    Domain.MEDICINE: "med",
    Domain.PRESCRIPTION: "pre",
    Domain.LAB_REPORT: "lab",
}

DOMAIN_BY_PREFIX = {prefix: domain for domain, prefix in PREFIXES.items()}
DOMAIN_BY_CATEGORY_COLLECTION = {d.category_collection: d for d in Domain}


def domain_of(category_id: str) -> Domain:
    prefix, sep, _ = category_id.partition("_")
    domain = DOMAIN_BY_PREFIX.get(prefix) if sep else None
    if domain is None:
        raise UnknownDomainError(f"Cannot tell the domain of category id {category_id!r}")
    return domain


@dataclass(frozen=True)
class CategoryId:
    """Domain-tagged category identifier, stored as "<prefix>_<sequence>"."""

    domain: Domain
    sequence: int

    def __str__(self) -> str:
        return f"{self.domain.prefix}_{self.sequence}"

    @classmethod
    def parse(cls, raw: str) -> "CategoryId":
        domain = domain_of(raw)
        sequence = raw.partition("_")[2]
        if not sequence.isdigit():
            raise UnknownDomainError(f"Malformed category id {raw!r}")
        return cls(domain, int(sequence))


def category_collection_for(parent_id: str, strict: bool = STRICT_CATEGORY_IDS) -> str:
    """Category collection a parent id belongs to.

    Outside strict mode an unrecognized prefix falls back to the medicine
    categories, which is how existing clients address them.
    """
    try:
        return domain_of(parent_id).category_collection
    except UnknownDomainError:
        if strict:
            raise
        logger.warning("Unrecognized category id %r, assuming medicine domain", parent_id)
        return Domain.MEDICINE.category_collection


def _now_millis() -> int:
    return int(time.time() * 1000)


# ---------------- Categories -----------------

class CategoryRegistry:
    def __init__(self, store: Store, clock=_now_millis):
        self.store = store
        self.clock = clock

    def list(self, domain) -> List[Category]:
        domain = Domain(domain)
        return [Category(**doc) for doc in self.store.list_collection(domain.category_collection)]

    def get(self, domain, category_id: str) -> Optional[Category]:
        doc = self.store.get_document(Domain(domain).category_collection, category_id)
        return Category(**doc) if doc else None

    def create(self, domain, data: CategoryCreate) -> str:
        domain = Domain(domain)
        fields = data.model_dump()
        fields["createdAt"] = utcnow()
        sequence = self.clock()
        while True:
            try:
                return self.store.create_document(
                    domain.category_collection, fields, str(CategoryId(domain, sequence))
                )
            except DocumentExistsError:
                # same millisecond as an existing category
                sequence += 1

    def update(self, domain, category_id: str, data: CategoryUpdate) -> None:
        patch = data.patch()
        patch["updatedAt"] = utcnow()
        self.store.update_document(Domain(domain).category_collection, category_id, patch)

    def delete(self, domain, category_id: str) -> None:
        domain = Domain(domain)
        items = domain.item_collection
        if self.store.exists(items, {"categoryId": category_id}):
            raise ReferentialIntegrityError(
                f"Cannot delete category with existing {items}. Please delete the {items} first."
            )
        self.store.delete_document(domain.category_collection, category_id)
        logger.info("Deleted %s category %s", domain.value, category_id)


# ---------------- Sub-categories -----------------

class SubCategoryRegistry:
    def __init__(self, store: Store, strict: bool = STRICT_CATEGORY_IDS, max_workers: int = BACKFILL_CONCURRENCY):
        self.store = store
        self.strict = strict
        self.max_workers = max_workers

    def collection_for(self, parent_id: str) -> str:
        return category_collection_for(parent_id, self.strict)

    def _path(self, parent_id: str, categories: Optional[str] = None) -> str:
        return f"{categories or self.collection_for(parent_id)}/{parent_id}/subCategories"

    def list(self, parent_id: str) -> List[SubCategory]:
        return [
            SubCategory(**{**doc, "parentCategoryId": parent_id})
            for doc in self.store.list_collection(self._path(parent_id))
        ]

    def list_all(self) -> List[SubCategory]:
        parents = [
            (collection, doc)
            for collection in DOMAIN_BY_CATEGORY_COLLECTION
            for doc in self.store.list_collection(collection)
        ]
        if not parents:
            return []

        def children(parent: Tuple[str, dict]) -> List[SubCategory]:
            collection, category = parent
            return [
                SubCategory(**{
                    **doc,
                    "parentCategoryId": category["id"],
                    "parentCategoryName": doc.get("parentCategoryName") or category.get("name", ""),
                })
                for doc in self.store.list_collection(self._path(category["id"], collection))
            ]

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            return [sub for batch in pool.map(children, parents) for sub in batch]

    def get(self, parent_id: str, sub_category_id: str) -> Optional[SubCategory]:
        doc = self.store.get_document(self._path(parent_id), sub_category_id)
        if doc is None:
            return None
        parent = self.store.get_document(self.collection_for(parent_id), parent_id)
        return SubCategory(**{
            **doc,
            "parentCategoryId": parent_id,
            "parentCategoryName": parent.get("name", "") if parent else "",
        })

    def create(self, parent_id: str, data: SubCategoryCreate) -> str:
        categories = self.collection_for(parent_id)
        parent = self.store.get_document(categories, parent_id)
        if parent is None:
            raise NotFoundError("Parent category does not exist")
        fields = data.model_dump()
        fields.update(
            parentCategoryId=parent_id,
            parentCategoryName=parent.get("name", ""),
            createdAt=utcnow(),
        )
        return self.store.create_document(self._path(parent_id, categories), fields)

    def update(self, parent_id: str, sub_category_id: str, data: SubCategoryUpdate) -> None:
        # parentCategoryName keeps the value captured at creation
        patch = data.patch()
        patch["updatedAt"] = utcnow()
        self.store.update_document(self._path(parent_id), sub_category_id, patch)

    def delete(self, parent_id: str, sub_category_id: str) -> None:
        categories = self.collection_for(parent_id)
        items = DOMAIN_BY_CATEGORY_COLLECTION[categories].item_collection
        if self.store.exists(items, {"subCategoryId": sub_category_id}):
            raise ReferentialIntegrityError(
                f"Cannot delete sub-category with existing {items}. Please delete the {items} first."
            )
        self.store.delete_document(self._path(parent_id, categories), sub_category_id)


# ---------------- Catalog items -----------------

class ItemRepository:
    """CRUD over one item collection with category-name denormalization."""

    domain: Domain
    model: Type[Record]
    has_subcategories = False

    def __init__(
        self,
        store: Store,
        categories: CategoryRegistry,
        subcategories: SubCategoryRegistry,
        max_workers: int = BACKFILL_CONCURRENCY,
    ):
        self.store = store
        self.categories = categories
        self.subcategories = subcategories
        self.max_workers = max_workers

    @property
    def collection(self) -> str:
        return self.domain.item_collection

    # -- name lookups

    def _category_name(self, category_id: str) -> str:
        category = self.categories.get(self.domain, category_id)
        return category.name if category else ""

    def _sub_category_name(self, key: Tuple[str, str]) -> str:
        sub = self.subcategories.get(*key)
        return sub.name if sub else ""

    def _needs_category(self, doc: dict) -> bool:
        return bool(doc.get("categoryId")) and not doc.get("categoryName")

    def _needs_sub_category(self, doc: dict) -> bool:
        return (
            self.has_subcategories
            and bool(doc.get("categoryId"))
            and bool(doc.get("subCategoryId"))
            and not doc.get("subCategoryName")
        )

    def _resolve_names(self, docs: Iterable[dict]) -> Tuple[Dict[str, str], Dict[Tuple[str, str], str]]:
        category_ids = set()
        sub_keys = set()
        for doc in docs:
            if self._needs_category(doc):
                category_ids.add(doc["categoryId"])
            if self._needs_sub_category(doc):
                sub_keys.add((doc["categoryId"], doc["subCategoryId"]))
        if not category_ids and not sub_keys:
            return {}, {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            category_futures = {cid: pool.submit(self._category_name, cid) for cid in category_ids}
            sub_futures = {key: pool.submit(self._sub_category_name, key) for key in sub_keys}
            return (
                {cid: f.result() for cid, f in category_futures.items()},
                {key: f.result() for key, f in sub_futures.items()},
            )

    def _with_names(self, doc: dict, category_names: dict, sub_names: dict) -> dict:
        doc = dict(doc)
        if self._needs_category(doc):
            doc["categoryName"] = category_names.get(doc["categoryId"], "")
        if self._needs_sub_category(doc):
            doc["subCategoryName"] = sub_names.get((doc["categoryId"], doc["subCategoryId"]), "")
        return doc

    def _denormalize(self, fields: dict) -> dict:
        if fields.get("categoryId") and not fields.get("categoryName"):
            category = self.categories.get(self.domain, fields["categoryId"])
            if category:
                fields["categoryName"] = category.name
        if self._needs_sub_category(fields):
            sub = self.subcategories.get(fields["categoryId"], fields["subCategoryId"])
            if sub:
                fields["subCategoryName"] = sub.name
        return fields

    # -- operations

    def list(self, category_id: Optional[str] = None, sub_category_id: Optional[str] = None) -> List[Record]:
        filters = {}
        if category_id:
            filters["categoryId"] = category_id
        if sub_category_id:
            filters["subCategoryId"] = sub_category_id
        docs = self.store.query(self.collection, filters)
        category_names, sub_names = self._resolve_names(docs)
        return [self.model(**self._with_names(d, category_names, sub_names)) for d in docs]

    def get(self, item_id: str) -> Optional[Record]:
        doc = self.store.get_document(self.collection, item_id)
        if doc is None:
            return None
        category_names, sub_names = self._resolve_names([doc])
        return self.model(**self._with_names(doc, category_names, sub_names))

    def create(self, data: Payload) -> str:
        fields = {k: v for k, v in data.model_dump().items() if v is not None}
        fields = self._denormalize(fields)
        fields["createdAt"] = utcnow()
        return self.store.create_document(self.collection, fields)

    def update(self, item_id: str, data: Payload) -> None:
        patch = self._denormalize(data.patch())
        patch["updatedAt"] = utcnow()
        self.store.update_document(self.collection, item_id, patch)

    def delete(self, item_id: str) -> None:
        # images stay in the blob store
        self.store.delete_document(self.collection, item_id)

    def backfill_names(self) -> int:
        """Persist missing denormalized names; returns the number of records repaired."""
        docs = [
            d for d in self.store.list_collection(self.collection)
            if self._needs_category(d) or self._needs_sub_category(d)
        ]
        category_names, sub_names = self._resolve_names(docs)
        repaired = 0
        for doc in docs:
            filled = self._with_names(doc, category_names, sub_names)
            patch = {
                key: filled[key]
                for key in ("categoryName", "subCategoryName")
                if filled.get(key) and not doc.get(key)
            }
            if patch:
                self.store.update_document(self.collection, doc["id"], patch)
                repaired += 1
        logger.info("Backfilled names on %d %s", repaired, self.collection)
        return repaired


class MedicineRepository(ItemRepository):
    domain = Domain.MEDICINE
    model = Medicine
    has_subcategories = True


class PrescriptionRepository(ItemRepository):
    domain = Domain.PRESCRIPTION
    model = Prescription


class LabReportRepository(ItemRepository):
    domain = Domain.LAB_REPORT
    model = LabReport
