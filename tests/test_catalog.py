import re

import pytest

from catalog import (
    CategoryId,
    CategoryRegistry,
    Domain,
    NotFoundError,
    ReferentialIntegrityError,
    SubCategoryRegistry,
    UnknownDomainError,
    category_collection_for,
)
from schemas import (
    CategoryCreate,
    CategoryUpdate,
    LabReportCreate,
    MedicineCreate,
    MedicineUpdate,
    PrescriptionCreate,
    SubCategoryCreate,
    SubCategoryUpdate,
)


@pytest.mark.parametrize("domain,pattern", [
    ("medicine", r"^med_\d+$"),
    ("prescription", r"^pre_\d+$"),
    ("labReport", r"^lab_\d+$"),
])
def test_category_ids_carry_domain_prefix(categories, domain, pattern):
    cid = categories.create(domain, CategoryCreate(name="General"))
    assert re.match(pattern, cid)
    assert categories.get(domain, cid).name == "General"


def test_same_millisecond_categories_get_distinct_ids(store):
    registry = CategoryRegistry(store, clock=lambda: 1700000000000)
    first = registry.create(Domain.MEDICINE, CategoryCreate(name="A"))
    second = registry.create(Domain.MEDICINE, CategoryCreate(name="B"))
    assert first == "med_1700000000000"
    assert second == "med_1700000000001"
    assert {c.name for c in registry.list("medicine")} == {"A", "B"}


@pytest.mark.parametrize("domain", list(Domain))
def test_prefix_resolves_back_to_category_collection(categories, domain):
    cid = categories.create(domain, CategoryCreate(name="X"))
    assert category_collection_for(cid) == domain.category_collection
    assert CategoryId.parse(cid).domain is domain


def test_unrecognized_prefix_falls_back_to_medicine():
    assert category_collection_for("abc123", strict=False) == "medicineCategories"
    assert category_collection_for("xyz_99", strict=False) == "medicineCategories"


def test_unrecognized_prefix_rejected_in_strict_mode():
    with pytest.raises(UnknownDomainError):
        category_collection_for("abc123", strict=True)
    with pytest.raises(UnknownDomainError):
        CategoryId.parse("med_notanumber")


def test_category_id_round_trips_through_string():
    cid = CategoryId(Domain.LAB_REPORT, 42)
    assert str(cid) == "lab_42"
    assert CategoryId.parse("lab_42") == cid


def test_update_category_is_merge_patch(categories):
    cid = categories.create("medicine", CategoryCreate(name="Painkillers", description="For pain"))
    categories.update("medicine", cid, CategoryUpdate(name="Analgesics"))
    category = categories.get("medicine", cid)
    assert category.name == "Analgesics"
    assert category.description == "For pain"
    assert category.updatedAt is not None


def test_category_delete_blocked_by_items(categories, medicines):
    cid = categories.create("medicine", CategoryCreate(name="Painkillers"))
    medicines.create(MedicineCreate(name="Ibuprofen", categoryId=cid))
    with pytest.raises(ReferentialIntegrityError, match="medicines"):
        categories.delete("medicine", cid)
    assert categories.get("medicine", cid) is not None


def test_category_delete_without_items(categories):
    cid = categories.create("prescription", CategoryCreate(name="Chronic"))
    categories.delete("prescription", cid)
    assert cid not in [c.id for c in categories.list("prescription")]


def test_category_guard_only_checks_its_own_domain(categories, prescriptions):
    med = categories.create("medicine", CategoryCreate(name="Painkillers"))
    # an item in another domain pointing at the same id does not block
    prescriptions.create(PrescriptionCreate(title="Rx", categoryId=med))
    categories.delete("medicine", med)
    assert categories.get("medicine", med) is None


def test_subcategory_requires_existing_parent(subcategories):
    with pytest.raises(NotFoundError):
        subcategories.create("med_1", SubCategoryCreate(name="Tablets"))


def test_subcategory_copies_parent_name(categories, subcategories):
    cid = categories.create("medicine", CategoryCreate(name="Painkillers"))
    sid = subcategories.create(cid, SubCategoryCreate(name="Tablets"))
    [sub] = subcategories.list(cid)
    assert sub.id == sid
    assert sub.parentCategoryId == cid
    assert sub.parentCategoryName == "Painkillers"


def test_subcategory_parent_name_goes_stale_but_get_is_fresh(categories, subcategories):
    cid = categories.create("labReport", CategoryCreate(name="Blood"))
    sid = subcategories.create(cid, SubCategoryCreate(name="CBC"))
    categories.update("labReport", cid, CategoryUpdate(name="Haematology"))
    subcategories.update(cid, sid, SubCategoryUpdate(description="Complete blood count"))

    [listed] = subcategories.list(cid)
    assert listed.parentCategoryName == "Blood"
    assert listed.description == "Complete blood count"
    assert subcategories.get(cid, sid).parentCategoryName == "Haematology"


def test_list_all_subcategories_spans_domains(categories, subcategories):
    med = categories.create("medicine", CategoryCreate(name="Painkillers"))
    lab = categories.create("labReport", CategoryCreate(name="Blood"))
    categories.create("prescription", CategoryCreate(name="Empty"))
    subcategories.create(med, SubCategoryCreate(name="Tablets"))
    subcategories.create(med, SubCategoryCreate(name="Syrups"))
    subcategories.create(lab, SubCategoryCreate(name="CBC"))

    everything = subcategories.list_all()
    assert sorted((s.parentCategoryId, s.name) for s in everything) == sorted([
        (med, "Tablets"), (med, "Syrups"), (lab, "CBC"),
    ])
    assert {s.parentCategoryName for s in everything} == {"Painkillers", "Blood"}


def test_list_all_with_no_categories(subcategories):
    assert subcategories.list_all() == []


def test_subcategory_delete_guard(categories, subcategories, medicines):
    cid = categories.create("medicine", CategoryCreate(name="Painkillers"))
    sid = subcategories.create(cid, SubCategoryCreate(name="Tablets"))
    mid = medicines.create(MedicineCreate(name="Paracetamol", categoryId=cid, subCategoryId=sid))

    with pytest.raises(ReferentialIntegrityError, match="sub-category"):
        subcategories.delete(cid, sid)
    assert subcategories.get(cid, sid) is not None

    medicines.delete(mid)
    subcategories.delete(cid, sid)
    assert subcategories.get(cid, sid) is None


def test_strict_registry_rejects_unknown_parent(store):
    registry = SubCategoryRegistry(store, strict=True)
    with pytest.raises(UnknownDomainError):
        registry.list("legacy-category")


def test_medicine_create_denormalizes_names(categories, subcategories, medicines, store):
    cid = categories.create("medicine", CategoryCreate(name="Painkillers"))
    sid = subcategories.create(cid, SubCategoryCreate(name="Tablets"))
    mid = medicines.create(MedicineCreate(name="Paracetamol", categoryId=cid, subCategoryId=sid))

    stored = store.get_document("medicines", mid)
    assert stored["categoryName"] == "Painkillers"
    assert stored["subCategoryName"] == "Tablets"
    assert stored["createdAt"] is not None


def test_explicit_names_are_kept(categories, medicines, store):
    cid = categories.create("medicine", CategoryCreate(name="Painkillers"))
    mid = medicines.create(MedicineCreate(name="Aspirin", categoryId=cid, categoryName="Custom"))
    assert store.get_document("medicines", mid)["categoryName"] == "Custom"


def test_dangling_category_reference_is_stored(medicines, store):
    mid = medicines.create(MedicineCreate(name="Orphan", categoryId="med_1"))
    stored = store.get_document("medicines", mid)
    assert stored["categoryId"] == "med_1"
    assert "categoryName" not in stored
    assert medicines.get(mid).categoryName == ""


def test_read_backfill_does_not_write(categories, medicines, store):
    cid = categories.create("medicine", CategoryCreate(name="Painkillers"))
    mid = store.create_document("medicines", {"name": "Legacy", "categoryId": cid})

    assert medicines.get(mid).categoryName == "Painkillers"
    assert [m.categoryName for m in medicines.list()] == ["Painkillers"]
    assert medicines.get(mid).categoryName == "Painkillers"
    assert "categoryName" not in store.get_document("medicines", mid)

    categories.update("medicine", cid, CategoryUpdate(name="Analgesics"))
    assert medicines.get(mid).categoryName == "Analgesics"


def test_read_backfill_for_subcategory(categories, subcategories, medicines, store):
    cid = categories.create("medicine", CategoryCreate(name="Painkillers"))
    sid = subcategories.create(cid, SubCategoryCreate(name="Tablets"))
    store.create_document("medicines", {"name": "A", "categoryId": cid, "subCategoryId": sid})
    store.create_document("medicines", {"name": "B", "categoryId": cid, "subCategoryId": sid})

    listed = medicines.list()
    assert [(m.categoryName, m.subCategoryName) for m in listed] == [("Painkillers", "Tablets")] * 2


def test_backfill_names_persists(categories, subcategories, medicines, store):
    cid = categories.create("medicine", CategoryCreate(name="Painkillers"))
    sid = subcategories.create(cid, SubCategoryCreate(name="Tablets"))
    legacy = store.create_document("medicines", {"name": "A", "categoryId": cid, "subCategoryId": sid})
    medicines.create(MedicineCreate(name="B", categoryId=cid, subCategoryId=sid))

    assert medicines.backfill_names() == 1
    stored = store.get_document("medicines", legacy)
    assert stored["categoryName"] == "Painkillers"
    assert stored["subCategoryName"] == "Tablets"
    assert medicines.backfill_names() == 0


def test_list_filters(categories, subcategories, medicines):
    a = categories.create("medicine", CategoryCreate(name="A"))
    b = categories.create("medicine", CategoryCreate(name="B"))
    a1 = subcategories.create(a, SubCategoryCreate(name="A1"))
    a2 = subcategories.create(a, SubCategoryCreate(name="A2"))
    medicines.create(MedicineCreate(name="m1", categoryId=a, subCategoryId=a1))
    medicines.create(MedicineCreate(name="m2", categoryId=a, subCategoryId=a2))
    medicines.create(MedicineCreate(name="m3", categoryId=b))

    assert len(medicines.list()) == 3
    assert {m.name for m in medicines.list(category_id=a)} == {"m1", "m2"}
    assert {m.name for m in medicines.list(sub_category_id=a2)} == {"m2"}
    assert {m.name for m in medicines.list(category_id=a, sub_category_id=a1)} == {"m1"}
    assert medicines.list(category_id=b, sub_category_id=a1) == []


def test_update_item_denormalizes_new_category(categories, medicines, store):
    a = categories.create("medicine", CategoryCreate(name="A"))
    b = categories.create("medicine", CategoryCreate(name="B"))
    mid = medicines.create(MedicineCreate(name="m", company="Acme", categoryId=a))

    medicines.update(mid, MedicineUpdate(categoryId=b))
    stored = store.get_document("medicines", mid)
    assert stored["categoryId"] == b
    assert stored["categoryName"] == "B"
    assert stored["company"] == "Acme"
    assert stored["updatedAt"] is not None


def test_reports_use_their_own_domain(categories, prescriptions, lab_reports):
    pre = categories.create("prescription", CategoryCreate(name="Chronic"))
    lab = categories.create("labReport", CategoryCreate(name="Blood"))
    pid = prescriptions.create(PrescriptionCreate(title="Rx 1", categoryId=pre))
    lid = lab_reports.create(LabReportCreate(title="CBC", categoryId=lab))

    assert prescriptions.get(pid).categoryName == "Chronic"
    assert lab_reports.get(lid).categoryName == "Blood"
    with pytest.raises(ReferentialIntegrityError, match="labReports"):
        categories.delete("labReport", lab)


def test_item_delete_is_unconditional(categories, medicines):
    cid = categories.create("medicine", CategoryCreate(name="A"))
    mid = medicines.create(MedicineCreate(name="m", categoryId=cid, images_url=["/files/abc"]))
    medicines.delete(mid)
    assert medicines.get(mid) is None


def test_end_to_end_catalog_lifecycle(categories, subcategories, medicines):
    cid = categories.create("medicine", CategoryCreate(name="Painkillers"))
    assert re.match(r"^med_\d+$", cid)
    sid = subcategories.create(cid, SubCategoryCreate(name="Tablets"))
    assert subcategories.get(cid, sid).parentCategoryName == "Painkillers"

    mid = medicines.create(MedicineCreate(name="Paracetamol", categoryId=cid, subCategoryId=sid))
    medicine = medicines.get(mid)
    assert medicine.categoryName == "Painkillers"
    assert medicine.subCategoryName == "Tablets"

    with pytest.raises(ReferentialIntegrityError):
        categories.delete("medicine", cid)

    medicines.delete(mid)
    subcategories.delete(cid, sid)
    categories.delete("medicine", cid)
    assert categories.list("medicine") == []
