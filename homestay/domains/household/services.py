"""Household service layer: the home registry used by the mapping engine."""

from __future__ import annotations

from typing import List, Optional

from homestay.domains.household.models import Child, Home
from homestay.extensions import db


def get_child(child_id: str) -> Optional[Child]:
    return db.session.get(Child, child_id)


def get_home(home_id: str) -> Optional[Home]:
    return db.session.get(Home, home_id)


def list_homes(include_inactive: bool = False) -> List[Home]:
    query = Home.query
    if not include_inactive:
        query = query.filter(Home.is_active.is_(True))
    return query.order_by(Home.name).all()


def create_child(name: str) -> Child:
    name = (name or "").strip()
    if not name:
        raise ValueError("invalid_name")
    child = Child(name=name)
    db.session.add(child)
    db.session.commit()
    return child


def create_home(name: str, address: Optional[str] = None) -> Home:
    name = (name or "").strip()
    if not name:
        raise ValueError("invalid_name")
    home = Home(name=name, address=address)
    db.session.add(home)
    db.session.commit()
    return home


def deactivate_home(home_id: str) -> Home:
    """Retire a home; existing rules keep it, new rules cannot use it."""
    home = get_home(home_id)
    if home is None:
        raise ValueError("not_found")
    home.is_active = False
    db.session.commit()
    return home
