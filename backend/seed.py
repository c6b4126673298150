"""
Seed script for the Beneficiary Allocation Service.

Creates:
- 4 users: admin, government, vendor, super vendor
- 3 payment types: TRICYCLE, OKADA, TAXI (empty rosters)
- Indexes used by the beneficiary lifecycle

Run: python seed.py
"""

import asyncio
from motor.motor_asyncio import AsyncIOMotorClient
from datetime import datetime
import os
from pathlib import Path
from dotenv import load_dotenv
import sys

# Add parent directory to path for imports
sys.path.append(str(Path(__file__).parent))

from core.ledger_store import USERS, PAYMENT_TYPES, ensure_indexes
from models import RoleName

# Load environment
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB connection
mongo_url = os.environ.get('MONGO_URL', 'mongodb://localhost:27017/?replicaSet=rs0')
db_name = os.environ.get('DB_NAME', 'beneficiary_allocation')

SEED_USERS = [
    {"full_name": "System Admin", "email": "admin@example.com", "role": RoleName.ADMIN.value},
    {"full_name": "State Revenue Office", "email": "government@example.com", "role": RoleName.GOVERNMENT.value},
    {"full_name": "Park Vendor", "email": "vendor@example.com", "role": RoleName.VENDOR.value},
    {"full_name": "Regional Super Vendor", "email": "supervendor@example.com", "role": RoleName.SUPER_VENDOR.value},
]

SEED_PAYMENT_TYPES = [
    {"name": "TRICYCLE", "amount": 500, "payment_cycle": 1, "renewal_cycle": 365},
    {"name": "OKADA", "amount": 300, "payment_cycle": 1, "renewal_cycle": 365},
    {"name": "TAXI", "amount": 1000, "payment_cycle": 7, "renewal_cycle": 365},
]


async def seed_database():
    """Seed the database with initial data"""

    client = AsyncIOMotorClient(mongo_url)
    db = client[db_name]

    print("🌱 Starting database seeding...")

    try:
        # ============================================
        # 1. CREATE USERS
        # ============================================
        print("👤 Creating users...")

        for user in SEED_USERS:
            existing_user = await db[USERS].find_one({"email": user["email"]})
            if existing_user:
                print(f"   ⚠️  {user['email']} already exists. Skipping...")
                continue

            result = await db[USERS].insert_one({
                **user,
                "status": "ACTIVE",
                "created_at": datetime.utcnow(),
                "updated_at": datetime.utcnow()
            })
            print(f"   ✅ {user['role']} user created: {result.inserted_id}")

        # ============================================
        # 2. CREATE PAYMENT TYPES
        # ============================================
        print("💳 Creating payment types...")

        for payment_type in SEED_PAYMENT_TYPES:
            existing_type = await db[PAYMENT_TYPES].find_one({"name": payment_type["name"]})
            if existing_type:
                print(f"   ⚠️  {payment_type['name']} already exists. Skipping...")
                continue

            result = await db[PAYMENT_TYPES].insert_one({
                **payment_type,
                "beneficiaries": [],
                "allocation_lock_sequence": 0,
                "created_at": datetime.utcnow()
            })
            print(f"   ✅ Payment type {payment_type['name']} created: {result.inserted_id}")

        # ============================================
        # 3. INDEXES
        # ============================================
        print("🗂️  Ensuring indexes...")
        await ensure_indexes(db)

        print("\n✨ Database seeding completed successfully!")

    except Exception as e:
        print(f"\n❌ Error during seeding: {str(e)}")
        raise
    finally:
        client.close()


if __name__ == "__main__":
    asyncio.run(seed_database())
