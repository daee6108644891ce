from datetime import datetime, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from access import AccessGate
from activity_log import LogBuffer, collection_writer
from auth import create_token
from database import get_db, optional_db


@pytest.fixture
def db():
    return mongomock.MongoClient()["ecowaste_test"]


@pytest.fixture
def log_buffer(db):
    # long interval: tests flush explicitly or wake the flush thread by size
    return LogBuffer(collection_writer(lambda: db["log"]), flush_interval=3600, max_queue_size=100)


@pytest.fixture
def gate(db):
    return AccessGate(db)


@pytest.fixture
def client(db, log_buffer, monkeypatch):
    monkeypatch.setattr(main, "log_buffer", log_buffer)
    main.app.dependency_overrides[get_db] = lambda: db
    main.app.dependency_overrides[optional_db] = lambda: db
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def add_user(db):
    def _add(external_id, role="user", **fields):
        doc = {
            "externalId": external_id,
            "firstName": fields.pop("firstName", "Test"),
            "lastName": fields.pop("lastName", external_id),
            "email": fields.pop("email", f"{external_id}@example.com"),
            "role": role,
            "createdAt": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "updatedAt": datetime(2024, 1, 1, tzinfo=timezone.utc),
        }
        doc.update(fields)
        db["user"].insert_one(doc)
        return external_id
    return _add


@pytest.fixture
def add_project(db):
    def _add(owner="owner-1", **fields):
        doc = {
            "title": "Ward 12 compost bins",
            "description": "Shared compost bins for the market street",
            "category": "segregation",
            "location": "Market Street",
            "budget": 1200.0,
            "timeline": "3 months",
            "contactName": "Asha",
            "contactEmail": "asha@example.com",
            "visibility": "public",
            "status": "pending",
            "userId": owner,
            "userEmail": f"{owner}@example.com",
            "createdAt": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "updatedAt": datetime(2024, 1, 1, tzinfo=timezone.utc),
        }
        doc.update(fields)
        return str(db["project"].insert_one(doc).inserted_id)
    return _add


@pytest.fixture
def add_comment(db):
    def _add(project_id, author="commenter-1", status="pending", content="Great idea", day=1):
        doc = {
            "projectId": project_id,
            "userId": author,
            "userEmail": f"{author}@example.com",
            "userName": author,
            "content": content,
            "status": status,
            "createdAt": datetime(2024, 1, day, tzinfo=timezone.utc),
            "updatedAt": datetime(2024, 1, day, tzinfo=timezone.utc),
        }
        return str(db["comment"].insert_one(doc).inserted_id)
    return _add


@pytest.fixture
def add_feedback(db):
    def _add(owner="reporter-1", status="pending"):
        doc = {
            "title": "Overflowing bin",
            "description": "Bin at the bus stop has not been emptied for a week",
            "location": {"address": "Bus stand", "coordinates": {"lat": 12.97, "lng": 77.59}},
            "imageUrl": "/feedback-images/abc.jpg",
            "userId": owner,
            "userEmail": f"{owner}@example.com",
            "severity": "high",
            "status": status,
            "createdAt": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "updatedAt": datetime(2024, 1, 1, tzinfo=timezone.utc),
        }
        return str(db["feedback"].insert_one(doc).inserted_id)
    return _add


@pytest.fixture
def headers():
    def _headers(external_id, email=None):
        token = create_token(external_id, email or f"{external_id}@example.com", "Test", external_id)
        return {"Authorization": f"Bearer {token}"}
    return _headers
