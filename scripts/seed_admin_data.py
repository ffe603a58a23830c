"""Seed the console with an admin account and demo catalogue data.

Creates an admin user plus a handful of categories, courses, services,
offers, FAQs, contacts and newsletter subscribers so the dashboard and the
resource tables have something to show. Runs against Supabase when
``SUPABASE_URL`` and a service key are configured, otherwise against the local
JSON store under ``STORAGE_DATA_DIR``.

Usage:
    SEED_ADMIN_EMAIL=admin@example.com SEED_ADMIN_PASSWORD=... \
    python scripts/seed_admin_data.py

``SEED_ADMIN_ROLE`` defaults to ``super_admin``. Re-running the script skips
the admin account when it already exists.
"""
from __future__ import annotations

import os
import random
import sys
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Dict, List

from dotenv import load_dotenv

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from fringe_admin.services.auth_service import AuthService  # noqa: E402
from fringe_admin.services.database_service import DatabaseService  # noqa: E402
from fringe_admin.utils.dates import to_iso, utcnow  # noqa: E402


@dataclass
class SeedConfig:
    admin_email: str
    admin_password: str
    admin_role: str = "super_admin"
    days: int = 60  # cover the current and previous month on the dashboard


def _resolve_config() -> SeedConfig:
    load_dotenv()
    email = os.getenv("SEED_ADMIN_EMAIL")
    password = os.getenv("SEED_ADMIN_PASSWORD")
    missing = [
        name
        for name, value in (("SEED_ADMIN_EMAIL", email), ("SEED_ADMIN_PASSWORD", password))
        if not value
    ]
    if missing:
        raise SystemExit(f"Missing required environment variables: {', '.join(missing)}")
    return SeedConfig(
        admin_email=email,
        admin_password=password,
        admin_role=os.getenv("SEED_ADMIN_ROLE", "super_admin"),
    )


def _timestamp(days_ago: int) -> str:
    return to_iso(utcnow() - timedelta(days=days_ago, hours=random.randint(0, 23)))


def _seed_admin(auth: AuthService, config: SeedConfig) -> None:
    try:
        admin = auth.create_admin(config.admin_email, config.admin_password, config.admin_role)
    except ValueError as exc:
        print(f"Skipping admin: {exc}")
        return
    print(f"Created {admin['role']} {admin['email']}")


def _seed_catalogue(db: DatabaseService, config: SeedConfig) -> None:
    categories = db.insert_many(
        "courses_categories",
        [
            {"name": "Hair", "slug": "hair", "description": "Cutting and styling courses", "is_active": True},
            {"name": "Colour", "slug": "colour", "description": "Colour theory and technique", "is_active": True},
        ],
    )
    courses: List[Dict] = []
    for index, title in enumerate(("Precision Cutting", "Balayage Masterclass", "Bridal Styling")):
        courses.append(
            {
                "title": title,
                "slug": title.lower().replace(" ", "-"),
                "description": f"{title} with hands-on practice.",
                "price": random.choice((149, 249, 399)),
                "duration": random.choice((6, 12, 24)),
                "level": random.choice(("beginner", "intermediate", "advanced")),
                "category_id": categories[index % len(categories)]["id"],
                "is_active": True,
                "is_featured": index == 0,
                "created_at": _timestamp(random.randint(0, config.days)),
            }
        )
    db.insert_many("courses", courses)

    service_categories = db.insert_many(
        "service_categories",
        [{"name": "Salon", "slug": "salon", "description": "In-salon services", "is_active": True}],
    )
    db.insert_many(
        "services",
        [
            {
                "title": name,
                "slug": name.lower().replace(" ", "-"),
                "description": f"{name} by our senior team.",
                "price": price,
                "duration": duration,
                "category_id": service_categories[0]["id"],
                "is_active": True,
            }
            for name, price, duration in (
                ("Cut and Finish", 65, 60),
                ("Full Head Colour", 120, 120),
            )
        ],
    )

    now = utcnow()
    db.insert_many(
        "offers",
        [
            {
                "title": "Spring Course Discount",
                "description": "10% off every course booked this month.",
                "discount_type": "percentage",
                "discount_value": 10,
                "valid_from": to_iso(now - timedelta(days=3)),
                "valid_until": to_iso(now + timedelta(days=27)),
                "is_active": True,
            }
        ],
    )
    db.insert_many(
        "faqs",
        [
            {"question": "Do I need experience?", "answer": "Beginner courses assume none.", "category": "courses", "sort_order": 1, "is_active": True},
            {"question": "Can I reschedule?", "answer": "Yes, up to 48 hours before.", "category": "bookings", "sort_order": 2, "is_active": True},
        ],
    )


def _seed_audience(db: DatabaseService, config: SeedConfig) -> None:
    names = ("Alex", "Sam", "Jordan", "Riley", "Casey", "Morgan")
    db.insert_many(
        "contact_submissions",
        [
            {
                "name": name,
                "email": f"{name.lower()}@example.com",
                "subject": "Course enquiry",
                "message": "Could you tell me more about upcoming dates?",
                "is_read": random.random() > 0.5,
                "created_at": _timestamp(random.randint(0, config.days)),
            }
            for name in names
        ],
    )
    db.insert_many(
        "newsletter_subscriptions",
        [
            {
                "email": f"{name.lower()}.news@example.com",
                "first_name": name,
                "status": "subscribed",
                "interests": random.sample(["courses", "offers", "events"], 2),
                "subscribed_at": _timestamp(random.randint(0, config.days)),
                "created_at": _timestamp(random.randint(0, config.days)),
            }
            for name in names
        ],
    )


def main() -> None:
    config = _resolve_config()
    db = DatabaseService()
    print(f"Seeding {db.backend} backend")
    _seed_admin(AuthService(db), config)
    _seed_catalogue(db, config)
    _seed_audience(db, config)
    print("Seed complete.")


if __name__ == "__main__":
    main()
