"""
Integration test fixtures for testing with real local Supabase database.

These fixtures connect to a local Supabase instance and perform real database operations.
Run `supabase start` (which applies supabase/migrations) before running integration tests.
All tests in this directory are automatically marked as integration tests.
"""
import os
import subprocess
import warnings
from pathlib import Path
from unittest.mock import patch
from uuid import uuid4

import pytest
from dotenv import load_dotenv
from fastapi.testclient import TestClient
from supabase import create_client, Client

# Path to the project root (where supabase/ folder is located)
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent


def pytest_collection_modifyitems(items):
    """Automatically mark all tests in this directory as integration tests."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


@pytest.fixture(scope="session")
def setup_test_environment():
    """Load .env.test at session start."""
    env_test_path = Path(__file__).parent.parent.parent / ".env.test"
    load_dotenv(env_test_path, override=True)
    yield


@pytest.fixture(scope="session")
def supabase_client(setup_test_environment) -> Client:
    """Create a real Supabase client connected to local instance."""
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SERVICE_ROLE_KEY")

    if not url or not key:
        pytest.skip("SUPABASE_URL and SERVICE_ROLE_KEY must be set in .env.test")

    return create_client(url, key)


@pytest.fixture(scope="session")
def reset_database(setup_test_environment):
    """
    Reset the database before the test session.

    Optional: if the supabase CLI is unavailable the reset is skipped with a warning.
    """
    try:
        result = subprocess.run(
            ["supabase", "db", "reset", "--no-seed"],
            cwd=str(PROJECT_ROOT),
            capture_output=True,
            text=True,
            timeout=60
        )
        if result.returncode != 0:
            warnings.warn(f"Could not reset database: {result.stderr}")
    except FileNotFoundError:
        warnings.warn("supabase CLI not found. Skipping database reset.")
    except subprocess.TimeoutExpired:
        warnings.warn("Database reset timed out. Continuing anyway.")

    yield


@pytest.fixture
def integration_client(supabase_client, reset_database):
    """FastAPI TestClient whose Supabase client points at the local instance."""
    from main import app

    with patch("main.supabase", supabase_client):
        yield TestClient(app)


def _delete_transactions_of(client, user_id: str):
    # transaction_items, conversations and messages cascade from transactions.
    client.table("transactions").delete().eq("buyer_id", user_id).execute()
    client.table("transactions").delete().eq("seller_id", user_id).execute()


@pytest.fixture
def make_profile(supabase_client, catalog_card):
    """Factory creating profiles; each is removed with its data after the test.

    Depends on catalog_card so the card outlives the owned cards pointing at it.
    """
    created = []

    def _make(display_name: str = "Test User") -> dict:
        profile_id = str(uuid4())
        result = supabase_client.table("profiles").insert({
            "id": profile_id,
            "display_name": f"{display_name} {profile_id[:8]}",
        }).execute()
        if not result.data:
            pytest.fail("Failed to create test profile")
        created.append(profile_id)
        return result.data[0]

    yield _make

    for profile_id in created:
        _delete_transactions_of(supabase_client, profile_id)
    for profile_id in created:
        supabase_client.table("user_cards").delete().eq("user_id", profile_id).execute()
        supabase_client.table("profiles").delete().eq("id", profile_id).execute()


@pytest.fixture
def buyer(make_profile):
    return make_profile("Buyer")


@pytest.fixture
def seller(make_profile):
    return make_profile("Seller")


@pytest.fixture
def catalog_card(supabase_client):
    """A catalog card unique to this test."""
    set_code = f"t{uuid4().hex[:6]}"
    result = supabase_client.table("default_cards").insert({
        "name": "Lightning Bolt",
        "set": set_code,
        "set_name": "Integration Test Set",
    }).execute()
    if not result.data:
        pytest.fail("Failed to create catalog card")

    yield result.data[0]

    supabase_client.table("default_cards").delete().eq("id", result.data[0]["id"]).execute()


@pytest.fixture
def make_listing(supabase_client, seller, catalog_card):
    """Factory creating for-sale owned cards for the seller."""
    languages = iter(["english", "spanish", "french", "german", "italian", "japanese"])

    def _make(price: str = "10.00") -> dict:
        result = supabase_client.table("user_cards").insert({
            "user_id": seller["id"],
            "card_id": catalog_card["id"],
            "quantity": 1,
            "condition": "near_mint",
            "language": next(languages),
            "is_for_sale": True,
            "sale_price": price,
        }).execute()
        if not result.data:
            pytest.fail("Failed to create listing")
        return result.data[0]

    return _make


@pytest.fixture
def headers():
    return lambda profile: {"X-User-Id": profile["id"]}
