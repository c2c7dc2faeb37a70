from typing import Any, Dict, List, Optional, Tuple

# Datastore proxy
# Callers import from here; every operation delegates to datastore_pg at call
# time so the PostgreSQL module can be swapped out wholesale (e.g. in tests).

from . import datastore_pg as _pg


def apply_schema() -> None:
    _pg.apply_schema()


def fetch_rows(
    table: str,
    filters: Optional[Dict[str, Any]] = None,
    order_by: Optional[str] = "date",
    descending: bool = False,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    return _pg.fetch_rows(table, filters=filters, order_by=order_by, descending=descending, limit=limit)


def list_seasons(table: str) -> List[Any]:
    return _pg.list_seasons(table)


def count_rows(table: str) -> int:
    return _pg.count_rows(table)


def insert_rows(table: str, rows: List[Dict[str, Any]]) -> int:
    return _pg.insert_rows(table, rows)


def link_member(table: str, player_name: str, user_id: str) -> Dict[str, Any]:
    return _pg.link_member(table, player_name, user_id)


def unlink_member(table: str, member_id: int) -> int:
    return _pg.unlink_member(table, member_id)


def list_member_links(table: str) -> List[Dict[str, Any]]:
    return _pg.list_member_links(table)


def create_profile(
    user_id: str, email: str, full_name: Optional[str] = None, role: str = "user"
) -> Tuple[Dict[str, Any], bool]:
    return _pg.create_profile(user_id, email, full_name=full_name, role=role)


def get_profile(user_id: str) -> Optional[Dict[str, Any]]:
    return _pg.get_profile(user_id)


def list_profiles() -> List[Dict[str, Any]]:
    return _pg.list_profiles()


def update_profile(user_id: str, fields: Dict[str, Any]) -> int:
    return _pg.update_profile(user_id, fields)


def list_clubs() -> List[Dict[str, Any]]:
    return _pg.list_clubs()


def get_club(club_id: str) -> Optional[Dict[str, Any]]:
    return _pg.get_club(club_id)


def create_club(name: str, description: Optional[str], database_prefix: str) -> Dict[str, Any]:
    return _pg.create_club(name, description, database_prefix)


def delete_club(club_id: str) -> int:
    return _pg.delete_club(club_id)


def list_user_clubs(user_id: str) -> List[Dict[str, Any]]:
    return _pg.list_user_clubs(user_id)


def add_membership(user_id: str, club_id: str) -> bool:
    return _pg.add_membership(user_id, club_id)


def remove_membership(user_id: str, club_id: str) -> int:
    return _pg.remove_membership(user_id, club_id)


def replace_memberships(user_id: str, club_ids: List[str]) -> int:
    return _pg.replace_memberships(user_id, club_ids)


def recent_notifications(limit: int = 10) -> List[Dict[str, Any]]:
    return _pg.recent_notifications(limit)


def insert_notification(
    type_: str,
    message: str,
    user_id: Optional[str] = None,
    user_email: Optional[str] = None,
    user_name: Optional[str] = None,
) -> Dict[str, Any]:
    return _pg.insert_notification(type_, message, user_id=user_id, user_email=user_email, user_name=user_name)


def mark_notifications_read(ids: List[Any]) -> int:
    return _pg.mark_notifications_read(ids)
