"""
Redeemable vouchers.

Voucher codes are unique. Creating or re-coding a voucher first looks for an
existing voucher with the same code; the unique index on "code" catches the
writes that race past that check. A code collision is not raised to the
caller: the operation returns False and leaves the message in
``registry.error`` so it can be shown inline.

Issued vouchers live under each user ("users/{userId}/vouchers") and are
written by the consumer app; this side only reads them.
"""
import logging
import secrets
import string
import time
from dataclasses import dataclass
from typing import List, Optional

from pymongo.errors import DuplicateKeyError

from database import DocumentNotFoundError, Store, utcnow
from schemas import UserVoucher, Voucher, VoucherCreate, VoucherUpdate
from storage import BlobStore

logger = logging.getLogger(__name__)

VOUCHERS = "vouchers"
CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 8
DUPLICATE_CODE_MESSAGE = "This voucher code already exists. Please use a different code."


class DuplicateCodeError(Exception):
    pass


@dataclass
class ImageFile:
    filename: str
    content: bytes
    content_type: Optional[str] = None


def generate_code(length: int = CODE_LENGTH) -> str:
    # not checked against stored codes; writes still go through the uniqueness check
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


class VoucherRegistry:
    def __init__(self, store: Store, blobs: Optional[BlobStore] = None):
        self.store = store
        self.blobs = blobs
        self.error: Optional[str] = None
        self.last_id: Optional[str] = None

    def list(self) -> List[Voucher]:
        return [Voucher(**doc) for doc in self.store.list_collection(VOUCHERS)]

    def get(self, voucher_id: str) -> Optional[Voucher]:
        doc = self.store.get_document(VOUCHERS, voucher_id)
        return Voucher(**doc) if doc else None

    def list_for_user(self, user_id: str) -> List[UserVoucher]:
        return [UserVoucher(**doc) for doc in self.store.list_collection(f"users/{user_id}/vouchers")]

    def _ensure_unique(self, code: str) -> None:
        if self.store.exists(VOUCHERS, {"code": code}):
            raise DuplicateCodeError(DUPLICATE_CODE_MESSAGE)

    def _upload(self, image: ImageFile) -> str:
        if self.blobs is None:
            raise RuntimeError("No blob store configured for voucher images")
        path = f"vouchers/{int(time.time() * 1000)}-{image.filename}"
        return self.blobs.upload(image.content, path, image.content_type)

    def _fail(self, exc: DuplicateCodeError) -> bool:
        self.error = str(exc)
        logger.info("Voucher rejected: %s", exc)
        return False

    def create(self, data: VoucherCreate, image: Optional[ImageFile] = None) -> bool:
        self.error = None
        self.last_id = None
        uploaded = None
        try:
            if data.code:
                self._ensure_unique(data.code)
            fields = data.model_dump()
            if image is not None:
                uploaded = fields["imageUrl"] = self._upload(image)
            fields["createdAt"] = utcnow()
            try:
                self.last_id = self.store.create_document(VOUCHERS, fields)
            except DuplicateKeyError as e:
                raise DuplicateCodeError(DUPLICATE_CODE_MESSAGE) from e
        except DuplicateCodeError as e:
            if uploaded:
                self.blobs.delete(uploaded)
            return self._fail(e)
        logger.info("Created voucher %s", self.last_id)
        return True

    def update(self, voucher_id: str, patch: VoucherUpdate, image: Optional[ImageFile] = None) -> bool:
        self.error = None
        updates = patch.patch()
        uploaded = None
        try:
            code = updates.get("code")
            if code:
                current = self.store.get_document(VOUCHERS, voucher_id)
                if current is None or current.get("code") != code:
                    self._ensure_unique(code)
            if image is not None:
                uploaded = updates["imageUrl"] = self._upload(image)
            updates["updatedAt"] = utcnow()
            try:
                self.store.update_document(VOUCHERS, voucher_id, updates)
            except DuplicateKeyError as e:
                raise DuplicateCodeError(DUPLICATE_CODE_MESSAGE) from e
        except DocumentNotFoundError:
            if uploaded:
                self.blobs.delete(uploaded)
            raise
        except DuplicateCodeError as e:
            if uploaded:
                self.blobs.delete(uploaded)
            return self._fail(e)
        return True

    def delete(self, voucher_id: str) -> bool:
        # issued copies under users/*/vouchers are left alone
        self.error = None
        self.store.delete_document(VOUCHERS, voucher_id)
        return True
