"""
Create the tables and seed reference data: an admin user, the in-store
service catalog and the reward catalog. Safe to run more than once.

    ADMIN_PASSWORD=... python seed_rewards.py
"""

import os

import bcrypt
from sqlalchemy import select

from barbershop.extensions import db
from barbershop.models import Base, LoyaltyReward, Offer, User
from main import create_app

ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL", "admin@barbershop.local")

OFFERS = [
    ("Haircut + Beard", 30),
    ("Haircut + Beard Line-up", 25),
    ("Men's Haircut", 20),
    ("Beard Only", 15),
    ("Student Rate", 15),
    ("Haircut + Beard + Full Care", 48),
]

REWARDS = [
    ("Free beard trim", 100, "One beard trim on the house"),
    ("Free haircut", 150, "One men's haircut on the house"),
    ("Full care session", 400, "Haircut, beard and face care"),
]


def seed():
    Base.metadata.create_all(bind=db.engine)

    if not db.session.scalar(select(User).where(User.email == ADMIN_EMAIL)):
        password = os.environ.get("ADMIN_PASSWORD")
        if not password:
            raise ValueError("ADMIN_PASSWORD environment variable is required to create the admin user")
        hashed_pw = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")
        db.session.add(User(email=ADMIN_EMAIL, password_hash=hashed_pw, full_name="Admin", role="ADMIN"))
        print(f"Admin user created: {ADMIN_EMAIL}")

    for title, price in OFFERS:
        if not db.session.scalar(select(Offer).where(Offer.title == title)):
            db.session.add(Offer(title=title, price=price, is_active=True))

    for name, cost, description in REWARDS:
        if not db.session.scalar(select(LoyaltyReward).where(LoyaltyReward.name == name)):
            db.session.add(LoyaltyReward(name=name, cost_points=cost, description=description, is_active=True))

    db.session.commit()


if __name__ == "__main__":
    app = create_app()
    with app.app_context():
        seed()
    print("Seed completed successfully!")
