#!/usr/bin/env python
"""Seed the development database with a fixture user and explanation.

Gives local UI work a user with one explanation and a short chat thread.

Constraints:
- Refuses to run in staging or prod (EXPLAINER_ENV check)
- Idempotent: rows with the fixture ids are left alone
- Never runs automatically (manual invocation only)

Usage:
    cd python && DATABASE_URL=... python ../scripts/seed_dev.py [--tier pro]
"""

import argparse
import os
import sys
from uuid import UUID

FIXTURE_USER_ID = UUID("00000000-0000-4000-8000-000000000001")
FIXTURE_EMAIL = "dev@example.com"
FIXTURE_IMAGE_HASH = "0" * 64


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--tier", choices=["free", "pro", "developer"], default="free")
    args = parser.parse_args()

    # 1. Environment check (hard fail in staging/prod)
    explainer_env = os.getenv("EXPLAINER_ENV", "local")
    if explainer_env not in ("local", "test"):
        print(f"ERROR: seed_dev.py refuses to run in EXPLAINER_ENV={explainer_env}")
        sys.exit(1)

    # 2. Check DATABASE_URL
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("ERROR: DATABASE_URL environment variable must be set")
        sys.exit(1)

    from explainer.db.engine import create_db_engine
    from explainer.db.models import MessageRole, SubscriptionTier
    from explainer.db.session import create_session_factory
    from explainer.services import chat, explanations
    from explainer.services.bootstrap import ensure_user
    from explainer.services.explanations import NewExplanation

    db = create_session_factory(create_db_engine(database_url))()
    try:
        # 3. Idempotent seeding
        user = ensure_user(db, FIXTURE_USER_ID, FIXTURE_EMAIL)
        user.subscription_tier = SubscriptionTier(args.tier)
        db.commit()

        existing = explanations.find_duplicate(db, FIXTURE_USER_ID, FIXTURE_IMAGE_HASH)
        explanation_created = existing is None
        if explanation_created:
            row, _ = explanations.create_explanation(
                db,
                FIXTURE_USER_ID,
                NewExplanation(
                    image_url="https://example.com/dev/image.jpg",
                    thumbnail_url="https://example.com/dev/thumbnail.jpg",
                    image_hash=FIXTURE_IMAGE_HASH,
                    prompt=None,
                    explanation_text="A ceramic mug on a wooden desk next to a laptop.",
                    model_used="gpt-4o",
                    processing_time_ms=1200,
                    confidence_score=0.9,
                    category="object",
                    tags=["mug", "desk", "laptop"],
                    language="en",
                    is_developer_mode=False,
                ),
            )
            chat.append_message(
                db, FIXTURE_USER_ID, row.id, MessageRole.user, "What is the mug made of?",
                model=None, tokens_used=None,
            )
            chat.append_message(
                db, FIXTURE_USER_ID, row.id, MessageRole.assistant,
                "It looks like glazed stoneware.", model="gpt-4o-mini", tokens_used=42,
            )
    finally:
        db.close()

    # 4. Report
    db_display = database_url.split("@")[1] if "@" in database_url else database_url
    print(f"Database: {db_display}")
    print(f"EXPLAINER_ENV: {explainer_env}")
    print()
    print(f"User {FIXTURE_USER_ID} ({args.tier})")
    print(f"{'Created' if explanation_created else 'Exists'}: fixture explanation")


if __name__ == "__main__":
    main()
