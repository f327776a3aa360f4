import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from catalog import (
    CategoryRegistry,
    LabReportRepository,
    MedicineRepository,
    PrescriptionRepository,
    SubCategoryRegistry,
)
from database import Store


class FakeBlobStore:
    def __init__(self):
        self.files = {}
        self.deleted = []

    def upload(self, data, path, content_type=None):
        url = f"/files/fake{len(self.files)}"
        self.files[url] = (path, data, content_type)
        return url

    def delete(self, url):
        self.deleted.append(url)
        self.files.pop(url, None)

    def open(self, file_id):
        return None


class FakeMessenger:
    def __init__(self):
        self.sent = []
        self.fail_with = None

    def send(self, title, body, topic, image_url=None):
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append({"title": title, "body": body, "topic": topic, "image": image_url})
        return f"projects/medisow/messages/{len(self.sent)}"


@pytest.fixture
def store():
    return Store(mongomock.MongoClient()["medisow_test"])


@pytest.fixture
def blobs():
    return FakeBlobStore()


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def categories(store):
    return CategoryRegistry(store)


@pytest.fixture
def subcategories(store):
    return SubCategoryRegistry(store, strict=False)


@pytest.fixture
def medicines(store, categories, subcategories):
    return MedicineRepository(store, categories, subcategories)


@pytest.fixture
def prescriptions(store, categories, subcategories):
    return PrescriptionRepository(store, categories, subcategories)


@pytest.fixture
def lab_reports(store, categories, subcategories):
    return LabReportRepository(store, categories, subcategories)


@pytest.fixture
def client(store, blobs, messenger):
    main.app.dependency_overrides[main.get_store] = lambda: store
    main.app.dependency_overrides[main.get_blobs] = lambda: blobs
    main.app.dependency_overrides[main.get_messenger] = lambda: messenger
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()
