import os
from motor.motor_asyncio import AsyncIOMotorClient
from typing import Optional
from dotenv import load_dotenv
from pymongo import ASCENDING

# Load environment variables
load_dotenv()

class Database:
    client: Optional[AsyncIOMotorClient] = None

    @classmethod
    async def connect_db(cls):
        """Connect to MongoDB"""
        mongodb_url = os.getenv("MONGODB_URL", "mongodb://localhost:27017")
        cls.client = AsyncIOMotorClient(mongodb_url)
        print("[OK] Connected to MongoDB")

        # Create indexes
        await cls.create_indexes()

    @classmethod
    async def create_indexes(cls):
        """Create database indexes"""
        db = cls.get_db()

        # Payment gateway indexes
        try:
            await db.payment_gateways.create_index([("gateway_id", ASCENDING)], unique=True)
            await db.payment_gateways.create_index([("provider", ASCENDING), ("is_enabled", ASCENDING)])
            print("[OK] Created indexes on payment_gateways")
        except Exception as e:
            print(f"[WARN] Indexes on payment_gateways may already exist: {e}")

        # Currency indexes
        try:
            await db.currencies.create_index([("code", ASCENDING)], unique=True)
            await db.currencies.create_index([("currency_id", ASCENDING)], unique=True)
            await db.supported_currencies.create_index(
                [("gateway_id", ASCENDING), ("currency_id", ASCENDING)],
                unique=True
            )
            print("[OK] Created indexes on currencies and supported_currencies")
        except Exception as e:
            print(f"[WARN] Indexes on currencies may already exist: {e}")

        # Order indexes
        try:
            await db.orders.create_index([("order_id", ASCENDING)], unique=True)
            await db.orders.create_index([("status", ASCENDING), ("updated_at", -1)])
            print("[OK] Created indexes on orders")
        except Exception as e:
            print(f"[WARN] Indexes on orders may already exist: {e}")

        # One completion event per order
        try:
            await db.order_events.create_index(
                [("order_id", ASCENDING), ("event", ASCENDING)],
                unique=True
            )
            print("[OK] Created unique index on order_events")
        except Exception as e:
            print(f"[WARN] Index on order_events may already exist: {e}")

        # Catalog and settings lookups
        try:
            await db.packages.create_index([("package_id", ASCENDING)], unique=True)
            await db.settings.create_index([("key", ASCENDING)], unique=True)
            await db.vouchers.create_index([("code", ASCENDING)], sparse=True)
            await db.gift_cards.create_index([("code", ASCENDING)], sparse=True)
            print("[OK] Created indexes on packages, settings, vouchers and gift_cards")
        except Exception as e:
            print(f"[WARN] Catalog indexes may already exist: {e}")

    @classmethod
    async def close_db(cls):
        """Close MongoDB connection"""
        if cls.client:
            cls.client.close()
            print("[OK] Disconnected from MongoDB")

    @classmethod
    def get_db(cls):
        """Get database instance"""
        database_name = os.getenv("DATABASE_NAME", "esim_store")
        return cls.client[database_name]
