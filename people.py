"""
Blood donors and app users.

Donors are managed here in full. User accounts are created by the consumer
mobile app, so the admin side only reads and deletes them.
"""
import logging
from typing import List, Optional

from database import Store, as_aware, utcnow
from schemas import Donor, DonorCreate, DonorUpdate

logger = logging.getLogger(__name__)

DONORS = "Donors"
USERS = "users"

DONOR_SORT_KEYS = ("name", "bloodGroup", "city", "date")


def _contains(value: Optional[str], query: str) -> bool:
    return bool(value) and query in value.lower()


class DonorRepository:
    def __init__(self, store: Store):
        self.store = store

    def list(self) -> List[Donor]:
        return [Donor(**doc) for doc in self.store.list_collection(DONORS)]

    def get(self, donor_id: str) -> Optional[Donor]:
        doc = self.store.get_document(DONORS, donor_id)
        return Donor(**doc) if doc else None

    def create(self, data: DonorCreate) -> str:
        fields = data.model_dump()
        fields["createdAt"] = utcnow()
        return self.store.create_document(DONORS, fields)

    def update(self, donor_id: str, data: DonorUpdate) -> None:
        patch = data.patch()
        patch["updatedAt"] = utcnow()
        self.store.update_document(DONORS, donor_id, patch)

    def delete(self, donor_id: str) -> None:
        self.store.delete_document(DONORS, donor_id)

    def search(
        self,
        query: Optional[str] = None,
        blood_group: Optional[str] = None,
        city: Optional[str] = None,
        contact_preference: Optional[str] = None,
        sort_by: str = "name",
    ) -> List[Donor]:
        """Filter and sort the donor list the way the dashboard table does."""
        if sort_by not in DONOR_SORT_KEYS:
            raise ValueError(f"sort_by must be one of {', '.join(DONOR_SORT_KEYS)}")
        donors = self.list()
        if query:
            q = query.lower()
            donors = [
                d for d in donors
                if _contains(d.name, q)
                or _contains(d.email, q)
                or (d.contactNumber and query in d.contactNumber)
                or _contains(d.bloodGroup, q)
                or _contains(d.city, q)
            ]
        if blood_group:
            donors = [d for d in donors if d.bloodGroup == blood_group]
        if city:
            donors = [d for d in donors if d.city.lower() == city.lower()]
        if contact_preference:
            donors = [d for d in donors if d.contactPreference == contact_preference]

        if sort_by == "date":
            return sorted(donors, key=lambda d: as_aware(d.createdAt), reverse=True)
        return sorted(donors, key=lambda d: getattr(d, sort_by).lower())


class UserRepository:
    def __init__(self, store: Store):
        self.store = store

    def list(self) -> List[dict]:
        return self.store.list_collection(USERS)

    def get(self, user_id: str) -> Optional[dict]:
        return self.store.get_document(USERS, user_id)

    def delete(self, user_id: str) -> None:
        self.store.delete_document(USERS, user_id)
        logger.info("Deleted user %s", user_id)

    def search(self, query: Optional[str] = None) -> List[dict]:
        users = self.list()
        if not query:
            return users
        q = query.lower()
        return [
            u for u in users
            if _contains(u.get("name"), q)
            or _contains(u.get("email"), q)
            or (u.get("number") and query in str(u["number"]))
            or _contains(u.get("institution"), q)
        ]
