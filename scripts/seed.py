"""Seed a client, a freelancer and a job with two milestones."""
from __future__ import annotations

from decimal import Decimal

from app import models
from app.config import get_settings
from app.db import create_all, init_engine, session_scope


def main() -> None:
    settings = get_settings()
    print(f"Using database: {settings.database_url}")

    init_engine()
    create_all()
    with session_scope() as session:
        alice = models.User(name="Alice Client", email="alice@example.com")
        bob = models.User(name="Bob Freelancer", email="bob@example.com")
        session.add_all([alice, bob])
        session.flush()

        job = models.Job(title="Landing page redesign", client_id=alice.id, freelancer_id=bob.id)
        session.add(job)
        session.flush()
        session.add_all(
            [
                models.Milestone(job_id=job.id, title="Wireframes", amount=Decimal("500.00"), sort_order=0),
                models.Milestone(job_id=job.id, title="Final design", amount=Decimal("1500.00"), sort_order=1),
            ]
        )
        session.commit()
        print(f"Seed data inserted (job {job.id}).")


if __name__ == "__main__":
    main()
