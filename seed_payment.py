"""
Payment System Seeder
Seeds currencies, payment gateways, sample packages and platform settings
Run: python seed_payment.py
"""
import asyncio
from datetime import datetime
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os

from app.database import Database

load_dotenv()

# MongoDB connection
MONGODB_URL = os.getenv("MONGODB_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "esim_store")


CURRENCIES = [
    # code, units per 1 USD
    ("USD", 1.0),
    ("EUR", 0.92),
    ("GBP", 0.79),
    ("INR", 83.2),
    ("NGN", 1550.0),
    ("CAD", 1.36),
    ("AUD", 1.52),
]

# provider, display name, currencies
GATEWAYS = [
    ("stripe", "Card / Apple Pay / Google Pay", ["USD", "EUR", "GBP", "CAD", "AUD", "INR"]),
    ("razorpay", "UPI / NetBanking", ["INR"]),
    ("paypal", "PayPal", ["USD", "EUR", "GBP", "CAD", "AUD"]),
    ("paystack", "Paystack", ["NGN", "USD"]),
    ("powertranz", "Credit / Debit Card", ["USD", "EUR", "GBP", "CAD", "AUD"]),
]


async def seed_currencies(db):
    """Seed currency conversion rates"""
    now = datetime.utcnow()
    for code, rate in CURRENCIES:
        await db.currencies.update_one(
            {"code": code},
            {
                "$set": {"conversion_rate": rate, "is_enabled": True, "updated_at": now},
                "$setOnInsert": {"currency_id": f"cur_{code.lower()}", "created_at": now},
            },
            upsert=True
        )
    print(f"[OK] Seeded {len(CURRENCIES)} currencies")


async def seed_gateways(db):
    """
    Seed payment gateways.
    Keys come from <PROVIDER>_PUBLIC_KEY / <PROVIDER>_SECRET_KEY; a gateway
    without a secret key is left disabled.
    """
    now = datetime.utcnow()
    for provider, display_name, currencies in GATEWAYS:
        prefix = provider.upper()
        secret_key = os.getenv(f"{prefix}_SECRET_KEY")
        gateway_id = f"gw_{provider}"

        await db.payment_gateways.update_one(
            {"gateway_id": gateway_id},
            {
                "$set": {
                    "provider": provider,
                    "display_name": display_name,
                    "public_key": os.getenv(f"{prefix}_PUBLIC_KEY"),
                    "secret_key": secret_key,
                    "webhook_secret": os.getenv(f"{prefix}_WEBHOOK_SECRET"),
                    "is_enabled": bool(secret_key),
                    "config": {"mode": os.getenv(f"{prefix}_MODE", "test")},
                    "updated_at": now,
                },
                "$setOnInsert": {"created_at": now},
            },
            upsert=True
        )

        for code in currencies:
            await db.supported_currencies.update_one(
                {"gateway_id": gateway_id, "currency_id": f"cur_{code.lower()}"},
                {"$set": {"gateway_id": gateway_id, "currency_id": f"cur_{code.lower()}"}},
                upsert=True
            )

        state = "enabled" if secret_key else "disabled (no secret key)"
        print(f"[OK] Gateway {gateway_id} {state}")


async def seed_packages(db):
    """Seed a few sample eSIM packages (retail prices in USD)"""
    packages = [
        {"package_id": "eu-5gb-30d", "name": "Europe 5GB / 30 days", "retail_price": 12.0},
        {"package_id": "us-10gb-30d", "name": "USA 10GB / 30 days", "retail_price": 19.0},
        {"package_id": "global-1gb-7d", "name": "Global 1GB / 7 days", "retail_price": 6.5},
    ]
    now = datetime.utcnow()
    for package in packages:
        await db.packages.update_one(
            {"package_id": package["package_id"]},
            {"$set": {**package, "status": "active", "updated_at": now}, "$setOnInsert": {"created_at": now}},
            upsert=True
        )
    print(f"[OK] Seeded {len(packages)} packages")


async def seed_settings(db):
    """Seed platform settings without overwriting edited values"""
    defaults = {"in_app_purchase_enabled": False, "topup_margin": 40}
    for key, value in defaults.items():
        await db.settings.update_one({"key": key}, {"$setOnInsert": {"key": key, "value": value}}, upsert=True)

    await db.referral_settings.update_one(
        {},
        {"$setOnInsert": {
            "enabled": False,
            "reward_type": "percentage",
            "referred_user_discount": 10,
            "min_order_amount": 0,
        }},
        upsert=True
    )
    print("[OK] Seeded platform settings")


async def main():
    """Main seeder function"""
    print("=" * 50)
    print("Payment System Seeder")
    print("=" * 50)

    # Connect to MongoDB
    client = AsyncIOMotorClient(MONGODB_URL)
    db = client[DATABASE_NAME]
    Database.client = client

    try:
        print("\n[1/5] Creating indexes...")
        await Database.create_indexes()

        print("\n[2/5] Seeding currencies...")
        await seed_currencies(db)

        print("\n[3/5] Seeding payment gateways...")
        await seed_gateways(db)

        print("\n[4/5] Seeding packages...")
        await seed_packages(db)

        print("\n[5/5] Seeding settings...")
        await seed_settings(db)

        print("\n" + "=" * 50)
        print("[SUCCESS] Payment system seeded successfully!")
        print("=" * 50)

    except Exception as e:
        print(f"\n[ERROR] Seeding failed: {str(e)}")
        raise
    finally:
        client.close()


if __name__ == "__main__":
    asyncio.run(main())
