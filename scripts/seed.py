#!/usr/bin/env python3
"""Script to seed demo users and rooms. Wipes existing bookings, rooms and users."""
from common.auth import get_password_hash
from common.database import Base, SessionLocal, engine
from common.models import Booking, RoleEnum, Room, User

USERS = [
    {"name": "Admin User", "username": "admin", "email": "admin@test.com", "password": "admin123", "role": RoleEnum.ADMIN},
    {"name": "User One", "username": "user1", "email": "user1@test.com", "password": "user1234", "role": RoleEnum.USER},
    {"name": "User Two", "username": "user2", "email": "user2@test.com", "password": "user1234", "role": RoleEnum.USER},
]

ROOMS = [
    {"name": "Conference Room A", "capacity": 10},
    {"name": "Meeting Room B", "capacity": 6},
    {"name": "Boardroom", "capacity": 20},
    {"name": "Small Huddle", "capacity": 4},
]


def seed():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        print("Clearing existing data...")
        db.query(Booking).delete()
        db.query(Room).delete()
        db.query(User).delete()

        print("\nCreating seed users...")
        for data in USERS:
            user = User(
                name=data["name"],
                username=data["username"],
                email=data["email"],
                role=data["role"],
                hashed_password=get_password_hash(data["password"]),
            )
            db.add(user)
            print(f"  Created: {user.username} ({user.role.value})")

        print("\nCreating seed rooms...")
        for data in ROOMS:
            db.add(Room(**data))
            print(f"  Created: {data['name']} (capacity: {data['capacity']})")

        db.commit()
    finally:
        db.close()

    print("\nTest credentials:")
    for data in USERS:
        print(f"  {data['username']} / {data['password']}")


if __name__ == "__main__":
    seed()
