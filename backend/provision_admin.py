"""
One-time bootstrap of the first admin account.

    DATABASE_URL=... DATABASE_NAME=... python provision_admin.py --email admin@example.com --name Admin

The password is read from ADMIN_PASSWORD or prompted for. Once an admin
exists the command refuses to run again unless --force is given.
"""
import argparse
import getpass
import logging
import os
import sys

import database
from auth import new_user
from database import create_document, ensure_indexes

logger = logging.getLogger("marketplace.provision")


def provision_admin(db, email: str, name: str, password: str, force: bool = False) -> str:
    """Create the admin account, or promote an existing user with that email.

    Returns the admin's id. Raises RuntimeError if an admin already exists and
    force is not set.
    """
    email = email.lower().strip()
    existing_admin = db["user"].find_one({"role": "admin"})
    if existing_admin and not force:
        raise RuntimeError(f"An admin account already exists ({existing_admin['email']})")

    template = new_user(name, email, password, role="admin")
    user = db["user"].find_one({"email": email})
    if user:
        db["user"].update_one(
            {"_id": user["_id"]},
            {"$set": {
                "role": "admin",
                "is_active": True,
                "password_hash": template.password_hash,
                "salt": template.salt,
            }},
        )
        logger.info("Promoted %s to admin", email)
        return str(user["_id"])

    uid = create_document("user", template, database=db)
    logger.info("Created admin %s", email)
    return uid


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create the first marketplace admin account")
    parser.add_argument("--email", required=True)
    parser.add_argument("--name", default="Admin")
    parser.add_argument("--force", action="store_true", help="run even if an admin already exists")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    if database.db is None:
        logger.error("DATABASE_URL and DATABASE_NAME must be set")
        return 1

    password = os.getenv("ADMIN_PASSWORD") or getpass.getpass("Admin password: ")
    if len(password) < 8:
        logger.error("Admin password must be at least 8 characters")
        return 1

    ensure_indexes(database.db)
    try:
        uid = provision_admin(database.db, args.email, args.name, password, force=args.force)
    except RuntimeError as exc:
        logger.error("%s", exc)
        return 1
    print(f"Admin ready: {args.email} ({uid})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
