"""
Seed the local database with a branch, staff, a client with one site, and stock.

Usage:
  python scripts/seed_test_data.py

This script is idempotent: running it multiple times will upsert the same
records based on unique fields (email for users and clients, code for branches).
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fieldtask.config import settings
from fieldtask.db import SessionLocal, init_db
from fieldtask.models.models import Branch, Client, InventoryItem, Site, SiteSection, User


def ensure_branch(session, code: str, name: str) -> Branch:
    branch = session.query(Branch).filter(Branch.code == code).first()
    if branch:
        return branch
    branch = Branch(code=code, name=name)
    session.add(branch)
    session.flush()
    return branch


def ensure_user(session, name: str, email: str, role: str, phone: str | None, branch: Branch) -> User:
    user = session.query(User).filter(User.email == email).first()
    if user:
        user.name = name
        user.role = role
        user.phone = phone
        session.add(user)
        return user
    user = User(name=name, email=email, role=role, phone=phone, branch_id=branch.id)
    session.add(user)
    session.flush()
    return user


def ensure_client(session, name: str, email: str, whatsapp: str | None, branch: Branch) -> Client:
    client = session.query(Client).filter(Client.email == email).first()
    if client:
        return client
    client = Client(name=name, email=email, phone=whatsapp, whatsapp=whatsapp, branch_id=branch.id)
    session.add(client)
    session.flush()
    return client


def ensure_site(session, client: Client, branch: Branch, name: str, sections: list[str]) -> Site:
    site = session.query(Site).filter(Site.client_id == client.id, Site.name == name).first()
    if site:
        return site
    site = Site(client_id=client.id, branch_id=branch.id, name=name, city="Vancouver", site_type="residential")
    site.sections = [SiteSection(name=s, sort_index=i) for i, s in enumerate(sections)]
    session.add(site)
    session.flush()
    return site


def ensure_item(session, branch: Branch, name: str, unit: str, qty: float, minimum: float = 10) -> InventoryItem:
    item = session.query(InventoryItem).filter(InventoryItem.branch_id == branch.id, InventoryItem.name == name).first()
    if item:
        return item
    item = InventoryItem(branch_id=branch.id, name=name, unit=unit, quantity_current=qty, quantity_minimum=minimum)
    session.add(item)
    session.flush()
    return item


def main():
    if settings.auto_create_db:
        init_db()
    session = SessionLocal()
    try:
        branch = ensure_branch(session, "VAN", "Vancouver")
        ensure_user(session, "Admin", "admin@example.com", "admin", None, branch)
        ensure_user(session, "Field Worker", "worker@example.com", "worker", "+16045550100", branch)
        client = ensure_client(session, "Green Acres Strata", "strata@example.com", "+16045550199", branch)
        ensure_site(session, client, branch, "Green Acres Main", ["Front lawn", "Back garden", "Hedges"])
        ensure_item(session, branch, "Fertilizer", "kg", 120)
        ensure_item(session, branch, "Herbicide", "liter", 40)
        ensure_item(session, branch, "Trimmer line", "piece", 25)
        session.commit()
        print("Seed data ready.")
    finally:
        session.close()


if __name__ == "__main__":
    main()
