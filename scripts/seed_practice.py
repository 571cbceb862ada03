"""
Seed script — sets up a small practice for demo purposes.

Usage:
    python -m scripts.seed_practice

This creates:
- session prices (PKR for domestic, USD for international clients)
- 3 clients
- a weekly, a biweekly and a monthly recurring series, enrolled through
  the API so the initial buffers and refresh jobs are created the normal way

Run this with the API running (uvicorn api.main:app).
Running it twice is harmless: existing clients are reused and already
enrolled clients are reported as such.
"""

import httpx
from sqlalchemy import select

from models.base import Base, SyncSessionLocal, sync_engine
from models.config_entry import ConfigEntry
from models.enums import AccountType
from models import tables  # noqa: F401
from models.user import User

BASE_URL = "http://localhost:8000"

PRICES = {"sessionPrice": 8000, "intlSessionPrice": 60}

CLIENTS = [
    {
        "name": "Ayesha Khan",
        "email": "ayesha@example.com",
        "account_type": AccountType.DOMESTIC.value,
        "series": {"interval": "weekly", "day_of_week": 1, "time_of_day": "17:00"},
    },
    {
        "name": "Omar Siddiqui",
        "email": "omar@example.com",
        "account_type": AccountType.DOMESTIC.value,
        "series": {
            "interval": "biweekly",
            "day_of_week": 3,
            "time_of_day": "11:00",
            "location_type": "in-person",
            "in_person_location": "Clinic, Room 2",
        },
    },
    {
        "name": "Sara Malik",
        "email": "sara@example.com",
        "account_type": AccountType.INTERNATIONAL.value,
        "series": {"interval": "monthly", "day_of_week": 5, "time_of_day": "20:00"},
    },
]


def seed_database() -> dict[str, str]:
    Base.metadata.create_all(sync_engine)
    session = SyncSessionLocal()
    try:
        for key, value in PRICES.items():
            session.merge(ConfigEntry(key=key, value=value))

        user_ids = {}
        for client in CLIENTS:
            user = session.scalar(select(User).where(User.email == client["email"]))
            if user is None:
                user = User(
                    name=client["name"],
                    email=client["email"],
                    account_type=client["account_type"],
                )
                session.add(user)
                session.flush()
            user_ids[client["email"]] = str(user.id)
        session.commit()
        return user_ids
    finally:
        session.close()


def seed():
    user_ids = seed_database()
    client = httpx.Client(base_url=BASE_URL, timeout=30.0)

    print(f"Enrolling {len(CLIENTS)} clients via {BASE_URL}...\n")

    for entry in CLIENTS:
        user_id = user_ids[entry["email"]]
        resp = client.post(f"/recurring/{user_id}", json=entry["series"])
        if resp.status_code == 409:
            print(f"  [already enrolled] {entry['name']}")
            continue
        resp.raise_for_status()
        data = resp.json()
        print(
            f"  [{data['series']['interval']}] {entry['name']}: "
            f"{data['created']} sessions booked, {data['skipped']} skipped, "
            f"next refresh {data['next_refresh']}"
        )

    print("\nDone! Recurring buffers are in place.")
    print("Check jobs:    curl http://localhost:8000/jobs/stats")
    print("Check series:  curl http://localhost:8000/recurring/<user_id>")


if __name__ == "__main__":
    seed()
