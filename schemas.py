"""
Database Schemas

Pydantic models for the Medisow collections. Field names are the stored
document keys, shared with the consumer mobile app:
- Category -> "{domain}Categories" collection
- SubCategory -> "{domain}Categories/{categoryId}/subCategories"
- Medicine / Prescription / LabReport -> "medicines" / "prescriptions" / "labReports"
- Donor -> "Donors"
- Voucher -> "vouchers", UserVoucher -> "users/{userId}/vouchers"
- NotificationRecord -> "notifications"

Payload models (*Create / *Update) are closed: unknown fields are rejected.
Update models leave every field optional and are applied as a merge-patch;
an explicit null is treated the same as an omitted field.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class Payload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    def patch(self) -> dict:
        # null never reaches stored fields the read models require
        return self.model_dump(exclude_unset=True, exclude_none=True)


class Record(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


# ---------------- Categories -----------------

class CategoryCreate(Payload):
    name: str = Field(..., min_length=1, description="Display name")
    description: Optional[str] = None
    image_url: Optional[str] = Field(None, description="Blob store url of the category image")


class CategoryUpdate(Payload):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    image_url: Optional[str] = None


class Category(Record):
    name: str = ""
    description: Optional[str] = None
    image_url: Optional[str] = None


class SubCategoryCreate(CategoryCreate):
    pass


class SubCategoryUpdate(CategoryUpdate):
    pass


class SubCategory(Category):
    parentCategoryId: str
    parentCategoryName: Optional[str] = Field(None, description="Parent name copied at creation")


# ---------------- Catalog items -----------------

class MedicineCreate(Payload):
    name: str = Field(..., min_length=1)
    company: str = ""
    composition: str = ""
    categoryId: str
    categoryName: Optional[str] = None
    subCategoryId: Optional[str] = None
    subCategoryName: Optional[str] = None
    images_url: List[str] = []


class MedicineUpdate(Payload):
    name: Optional[str] = Field(None, min_length=1)
    company: Optional[str] = None
    composition: Optional[str] = None
    categoryId: Optional[str] = None
    categoryName: Optional[str] = None
    subCategoryId: Optional[str] = None
    subCategoryName: Optional[str] = None
    images_url: Optional[List[str]] = None


class Medicine(Record):
    name: str = ""
    company: str = ""
    composition: str = ""
    categoryId: str = ""
    categoryName: str = ""
    subCategoryId: str = ""
    subCategoryName: str = ""
    images_url: List[str] = []


class ReportCreate(Payload):
    title: str = Field(..., min_length=1)
    description: str = ""
    categoryId: str
    categoryName: Optional[str] = None
    images_url: List[str] = []


class ReportUpdate(Payload):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    categoryId: Optional[str] = None
    categoryName: Optional[str] = None
    images_url: Optional[List[str]] = None


class Report(Record):
    title: str = ""
    description: str = ""
    categoryId: str = ""
    categoryName: str = ""
    images_url: List[str] = []


PrescriptionCreate = ReportCreate
PrescriptionUpdate = ReportUpdate
LabReportCreate = ReportCreate
LabReportUpdate = ReportUpdate


class Prescription(Report):
    pass


class LabReport(Report):
    pass


# ---------------- Blood donors -----------------

BloodGroup = Literal[
    "A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-"
]

ContactPreference = Literal["phone", "email", "both", "none"]


class DonorCreate(Payload):
    name: str = Field(..., min_length=1, description="Full name")
    email: EmailStr = Field(..., description="Email address")
    contactNumber: str = Field(..., description="Contact phone number")
    bloodGroup: BloodGroup
    area: str = ""
    city: str = Field("", description="City/Location")
    contactPreference: ContactPreference = "phone"


class DonorUpdate(Payload):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    contactNumber: Optional[str] = None
    bloodGroup: Optional[BloodGroup] = None
    area: Optional[str] = None
    city: Optional[str] = None
    contactPreference: Optional[ContactPreference] = None


class Donor(Record):
    # stored records predate validation, so reads stay lenient
    name: str = ""
    email: str = ""
    contactNumber: str = ""
    bloodGroup: str = ""
    area: str = ""
    city: str = ""
    contactPreference: str = ""


# ---------------- Vouchers -----------------

class VoucherCreate(Payload):
    title: str = Field(..., min_length=1)
    description: str = ""
    imageUrl: str = ""
    creditCost: int = Field(0, ge=0, description="Credits needed to redeem")
    code: str = Field("", description="Unique redemption code")
    isActive: bool = True
    expiresAt: Optional[datetime] = None


class VoucherUpdate(Payload):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    imageUrl: Optional[str] = None
    creditCost: Optional[int] = Field(None, ge=0)
    code: Optional[str] = None
    isActive: Optional[bool] = None
    expiresAt: Optional[datetime] = None


class Voucher(Record):
    title: str = ""
    description: str = ""
    imageUrl: str = ""
    creditCost: int = 0
    code: str = ""
    isActive: bool = True
    expiresAt: Optional[datetime] = None


class UserVoucher(BaseModel):
    id: str
    voucherId: str = ""
    userId: str = ""
    title: str = ""
    description: str = ""
    imageUrl: str = ""
    code: str = ""
    purchasedAt: Optional[datetime] = None
    usedAt: Optional[datetime] = None
    isUsed: bool = False


# ---------------- Notifications -----------------

class NotificationRequest(Payload):
    title: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    imageUrl: Optional[str] = None
    topic: str = "all_users"


class NotificationRecord(BaseModel):
    id: str
    title: str
    body: str
    imageUrl: Optional[str] = None
    topic: str
    sentAt: Optional[datetime] = None
    successful: bool
    error: Optional[str] = None
