import logging
import os
from contextlib import asynccontextmanager
from typing import List, Literal, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pymongo.errors import PyMongoError

from catalog import (
    CategoryRegistry,
    Domain,
    LabReportRepository,
    MedicineRepository,
    NotFoundError,
    PrescriptionRepository,
    ReferentialIntegrityError,
    SubCategoryRegistry,
    UnknownDomainError,
)
from database import DocumentNotFoundError, Store, connect, ensure_indexes
from notifications import FirebaseMessenger, NotificationDispatcher
from people import DonorRepository, UserRepository
from schemas import (
    Category,
    CategoryCreate,
    CategoryUpdate,
    Donor,
    DonorCreate,
    DonorUpdate,
    LabReport,
    LabReportCreate,
    LabReportUpdate,
    Medicine,
    MedicineCreate,
    MedicineUpdate,
    NotificationRecord,
    NotificationRequest,
    Prescription,
    PrescriptionCreate,
    PrescriptionUpdate,
    SubCategory,
    SubCategoryCreate,
    SubCategoryUpdate,
    UserVoucher,
    Voucher,
    VoucherCreate,
    VoucherUpdate,
)
from storage import BlobStore
from vouchers import ImageFile, VoucherRegistry, generate_code

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = connect()
    try:
        ensure_indexes(store)
    except PyMongoError as e:
        logger.warning("Could not create indexes: %s", e)
    app.state.store = store
    app.state.blobs = BlobStore(store.db)
    app.state.messenger = FirebaseMessenger()
    yield
    store.db.client.close()


app = FastAPI(title="Medisow Admin API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------- Dependencies -----------------

def get_store(request: Request) -> Store:
    return request.app.state.store


def get_blobs(request: Request) -> BlobStore:
    return request.app.state.blobs


def get_messenger(request: Request):
    return request.app.state.messenger


def get_categories(store: Store = Depends(get_store)) -> CategoryRegistry:
    return CategoryRegistry(store)


def get_subcategories(store: Store = Depends(get_store)) -> SubCategoryRegistry:
    return SubCategoryRegistry(store)


def get_medicines(
    store: Store = Depends(get_store),
    categories: CategoryRegistry = Depends(get_categories),
    subcategories: SubCategoryRegistry = Depends(get_subcategories),
) -> MedicineRepository:
    return MedicineRepository(store, categories, subcategories)


def get_prescriptions(
    store: Store = Depends(get_store),
    categories: CategoryRegistry = Depends(get_categories),
    subcategories: SubCategoryRegistry = Depends(get_subcategories),
) -> PrescriptionRepository:
    return PrescriptionRepository(store, categories, subcategories)


def get_lab_reports(
    store: Store = Depends(get_store),
    categories: CategoryRegistry = Depends(get_categories),
    subcategories: SubCategoryRegistry = Depends(get_subcategories),
) -> LabReportRepository:
    return LabReportRepository(store, categories, subcategories)


def get_donors(store: Store = Depends(get_store)) -> DonorRepository:
    return DonorRepository(store)


def get_users(store: Store = Depends(get_store)) -> UserRepository:
    return UserRepository(store)


def get_vouchers(store: Store = Depends(get_store), blobs: BlobStore = Depends(get_blobs)) -> VoucherRegistry:
    return VoucherRegistry(store, blobs)


def get_dispatcher(store: Store = Depends(get_store), messenger=Depends(get_messenger)) -> NotificationDispatcher:
    return NotificationDispatcher(store, messenger)

# ---------------- Errors -----------------

@app.exception_handler(NotFoundError)
@app.exception_handler(DocumentNotFoundError)
async def not_found_handler(request: Request, exc: Exception):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ReferentialIntegrityError)
async def integrity_handler(request: Request, exc: ReferentialIntegrityError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(UnknownDomainError)
async def unknown_domain_handler(request: Request, exc: UnknownDomainError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Operation failed"})

# ---------------- Categories -----------------

@app.get("/categories/{domain}", response_model=List[Category])
def list_categories(domain: Domain, categories: CategoryRegistry = Depends(get_categories)):
    return categories.list(domain)


@app.post("/categories/{domain}", response_model=dict)
def create_category(domain: Domain, payload: CategoryCreate, categories: CategoryRegistry = Depends(get_categories)):
    return {"id": categories.create(domain, payload)}


@app.get("/categories/{domain}/{category_id}", response_model=Category)
def get_category(domain: Domain, category_id: str, categories: CategoryRegistry = Depends(get_categories)):
    category = categories.get(domain, category_id)
    if not category:
        raise HTTPException(404, "Category not found")
    return category


@app.put("/categories/{domain}/{category_id}")
def update_category(domain: Domain, category_id: str, payload: CategoryUpdate, categories: CategoryRegistry = Depends(get_categories)):
    categories.update(domain, category_id, payload)
    return {"status": "updated"}


@app.delete("/categories/{domain}/{category_id}")
def delete_category(domain: Domain, category_id: str, categories: CategoryRegistry = Depends(get_categories)):
    categories.delete(domain, category_id)
    return {"status": "deleted"}

# ---------------- Sub-categories -----------------

@app.get("/subcategories", response_model=List[SubCategory])
def list_all_subcategories(subcategories: SubCategoryRegistry = Depends(get_subcategories)):
    return subcategories.list_all()


@app.get("/subcategories/{parent_id}", response_model=List[SubCategory])
def list_subcategories(parent_id: str, subcategories: SubCategoryRegistry = Depends(get_subcategories)):
    return subcategories.list(parent_id)


@app.post("/subcategories/{parent_id}", response_model=dict)
def create_subcategory(parent_id: str, payload: SubCategoryCreate, subcategories: SubCategoryRegistry = Depends(get_subcategories)):
    return {"id": subcategories.create(parent_id, payload)}


@app.get("/subcategories/{parent_id}/{sub_id}", response_model=SubCategory)
def get_subcategory(parent_id: str, sub_id: str, subcategories: SubCategoryRegistry = Depends(get_subcategories)):
    sub = subcategories.get(parent_id, sub_id)
    if not sub:
        raise HTTPException(404, "Sub-category not found")
    return sub


@app.put("/subcategories/{parent_id}/{sub_id}")
def update_subcategory(parent_id: str, sub_id: str, payload: SubCategoryUpdate, subcategories: SubCategoryRegistry = Depends(get_subcategories)):
    subcategories.update(parent_id, sub_id, payload)
    return {"status": "updated"}


@app.delete("/subcategories/{parent_id}/{sub_id}")
def delete_subcategory(parent_id: str, sub_id: str, subcategories: SubCategoryRegistry = Depends(get_subcategories)):
    subcategories.delete(parent_id, sub_id)
    return {"status": "deleted"}

# ---------------- Medicines, prescriptions, lab reports -----------------

def add_item_routes(path: str, label: str, get_repo, read_model, create_model, update_model):
    """Register list/get/create/update/delete/backfill routes for one item collection."""

    @app.get(path, response_model=List[read_model], name=f"list_{label}")
    def list_items(categoryId: Optional[str] = None, subCategoryId: Optional[str] = None, repo=Depends(get_repo)):
        return repo.list(categoryId, subCategoryId)

    @app.post(path, response_model=dict, name=f"create_{label}")
    def create_item(payload: create_model, repo=Depends(get_repo)):
        return {"id": repo.create(payload)}

    @app.post(f"{path}/backfill", response_model=dict, name=f"backfill_{label}")
    def backfill_items(repo=Depends(get_repo)):
        return {"repaired": repo.backfill_names()}

    @app.get(f"{path}/{{item_id}}", response_model=read_model, name=f"get_{label}")
    def get_item(item_id: str, repo=Depends(get_repo)):
        item = repo.get(item_id)
        if not item:
            raise HTTPException(404, f"{label.replace('_', ' ').capitalize()} not found")
        return item

    @app.put(f"{path}/{{item_id}}", name=f"update_{label}")
    def update_item(item_id: str, payload: update_model, repo=Depends(get_repo)):
        repo.update(item_id, payload)
        return {"status": "updated"}

    @app.delete(f"{path}/{{item_id}}", name=f"delete_{label}")
    def delete_item(item_id: str, repo=Depends(get_repo)):
        repo.delete(item_id)
        return {"status": "deleted"}


add_item_routes("/medicines", "medicine", get_medicines, Medicine, MedicineCreate, MedicineUpdate)
add_item_routes("/prescriptions", "prescription", get_prescriptions, Prescription, PrescriptionCreate, PrescriptionUpdate)
add_item_routes("/lab-reports", "lab_report", get_lab_reports, LabReport, LabReportCreate, LabReportUpdate)

# ---------------- Donor Endpoints -----------------

@app.get("/donors", response_model=List[Donor])
def list_donors(
    q: Optional[str] = None,
    bloodGroup: Optional[str] = None,
    city: Optional[str] = None,
    contactPreference: Optional[str] = None,
    sortBy: Literal["name", "bloodGroup", "city", "date"] = "name",
    donors: DonorRepository = Depends(get_donors),
):
    return donors.search(q, bloodGroup, city, contactPreference, sortBy)


@app.post("/donors", response_model=dict)
def register_donor(payload: DonorCreate, donors: DonorRepository = Depends(get_donors)):
    return {"id": donors.create(payload)}


@app.get("/donors/{donor_id}", response_model=Donor)
def get_donor(donor_id: str, donors: DonorRepository = Depends(get_donors)):
    donor = donors.get(donor_id)
    if not donor:
        raise HTTPException(404, "Donor not found")
    return donor


@app.put("/donors/{donor_id}")
def update_donor(donor_id: str, payload: DonorUpdate, donors: DonorRepository = Depends(get_donors)):
    donors.update(donor_id, payload)
    return {"status": "updated"}


@app.delete("/donors/{donor_id}")
def remove_donor(donor_id: str, donors: DonorRepository = Depends(get_donors)):
    donors.delete(donor_id)
    return {"status": "deleted"}

# ---------------- Users -----------------

@app.get("/users", response_model=List[dict])
def list_users(q: Optional[str] = None, users: UserRepository = Depends(get_users)):
    return users.search(q)


@app.get("/users/{user_id}", response_model=dict)
def get_user(user_id: str, users: UserRepository = Depends(get_users)):
    user = users.get(user_id)
    if not user:
        raise HTTPException(404, "User not found")
    return user


@app.delete("/users/{user_id}")
def delete_user(user_id: str, users: UserRepository = Depends(get_users)):
    users.delete(user_id)
    return {"status": "deleted"}


@app.get("/users/{user_id}/vouchers", response_model=List[UserVoucher])
def list_user_vouchers(user_id: str, vouchers: VoucherRegistry = Depends(get_vouchers)):
    return vouchers.list_for_user(user_id)

# ---------------- Vouchers -----------------

@app.get("/vouchers", response_model=List[Voucher])
def list_vouchers(vouchers: VoucherRegistry = Depends(get_vouchers)):
    return vouchers.list()


@app.get("/vouchers/generate-code")
def new_voucher_code():
    return {"code": generate_code()}


@app.post("/vouchers", response_model=dict)
def create_voucher(payload: VoucherCreate, vouchers: VoucherRegistry = Depends(get_vouchers)):
    if not vouchers.create(payload):
        raise HTTPException(409, vouchers.error)
    return {"id": vouchers.last_id}


@app.get("/vouchers/{voucher_id}", response_model=Voucher)
def get_voucher(voucher_id: str, vouchers: VoucherRegistry = Depends(get_vouchers)):
    voucher = vouchers.get(voucher_id)
    if not voucher:
        raise HTTPException(404, "Voucher not found")
    return voucher


@app.put("/vouchers/{voucher_id}")
def update_voucher(voucher_id: str, payload: VoucherUpdate, vouchers: VoucherRegistry = Depends(get_vouchers)):
    if not vouchers.update(voucher_id, payload):
        raise HTTPException(409, vouchers.error)
    return {"status": "updated"}


@app.post("/vouchers/{voucher_id}/image")
async def upload_voucher_image(voucher_id: str, image: UploadFile = File(...), vouchers: VoucherRegistry = Depends(get_vouchers)):
    if not vouchers.get(voucher_id):
        raise HTTPException(404, "Voucher not found")
    content = await image.read()
    if not vouchers.update(voucher_id, VoucherUpdate(), ImageFile(image.filename or "image", content, image.content_type)):
        raise HTTPException(409, vouchers.error)
    voucher = vouchers.get(voucher_id)
    if not voucher:
        raise HTTPException(404, "Voucher not found")
    return {"imageUrl": voucher.imageUrl}


@app.delete("/vouchers/{voucher_id}")
def delete_voucher(voucher_id: str, vouchers: VoucherRegistry = Depends(get_vouchers)):
    vouchers.delete(voucher_id)
    return {"status": "deleted"}

# ---------------- Notifications -----------------

@app.post("/notifications", response_model=dict)
def send_notification(payload: NotificationRequest, dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    result = dispatcher.send(payload.title, payload.body, payload.imageUrl, payload.topic)
    if result["status"] != "sent":
        raise HTTPException(500, "Failed to send notification")
    return {"message": "Notification sent successfully", "messageId": result["messageId"]}


@app.get("/notifications", response_model=List[NotificationRecord])
def list_notifications(limit: Optional[int] = 50, dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    return dispatcher.history(limit)

# ---------------- Uploads -----------------

@app.post("/uploads", response_model=dict)
async def upload_file(path: str = Form(...), file: UploadFile = File(...), blobs: BlobStore = Depends(get_blobs)):
    content = await file.read()
    return {"url": blobs.upload(content, path, file.content_type)}


@app.delete("/uploads")
def delete_upload(url: str, blobs: BlobStore = Depends(get_blobs)):
    blobs.delete(url)
    return {"status": "deleted"}


@app.get("/files/{file_id}")
def download_file(file_id: str, blobs: BlobStore = Depends(get_blobs)):
    grid_out = blobs.open(file_id)
    if grid_out is None:
        raise HTTPException(404, "File not found")
    return Response(content=grid_out.read(), media_type=grid_out.content_type or "application/octet-stream")

# ---------------- Dashboard -----------------

@app.get("/stats", response_model=dict)
def dashboard_stats(store: Store = Depends(get_store)):
    return {
        "users": store.count("users"),
        "medicines": store.count("medicines"),
        "prescriptions": store.count("prescriptions"),
        "donors": store.count("Donors"),
    }

# ---------------- Health -----------------

@app.get("/")
def read_root():
    return {"message": "Medisow Admin API running"}


@app.get("/test")
def test_database(request: Request):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        store = getattr(request.app.state, "store", None)
        if store is not None:
            response["database"] = "✅ Connected & Working"
            response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
            response["database_name"] = getattr(store.db, 'name', '✅ Connected')
            response["connection_status"] = "Connected"
            response["collections"] = store.collection_names()[:10]
    except PyMongoError as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"
    return response

if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
