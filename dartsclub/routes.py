from flask import Blueprint, abort, current_app, request
import os

from . import stats
from .clubs import CLUB_KINDS, kind_for_club
from .datastore import (
    apply_schema as ds_apply_schema,
    count_rows as ds_count_rows,
    create_club as ds_create_club,
    create_profile as ds_create_profile,
    delete_club as ds_delete_club,
    fetch_rows as ds_fetch_rows,
    get_club as ds_get_club,
    link_member as ds_link_member,
    list_clubs as ds_list_clubs,
    list_member_links as ds_list_member_links,
    list_profiles as ds_list_profiles,
    list_user_clubs as ds_list_user_clubs,
    add_membership as ds_add_membership,
    remove_membership as ds_remove_membership,
    replace_memberships as ds_replace_memberships,
    unlink_member as ds_unlink_member,
    update_profile as ds_update_profile,
)
from .errors import EmptyDatasetError, IngestionFailedError, ParseError, UnknownClubKindError
from .ingest import SCHEMAS, ingest_csv, normalize_player_name
from .notifications import NotificationFeed, create_signup_notification


bp = Blueprint('main', __name__)

_ROLES = ('user', 'admin')


def _club_and_kind(club_id: str):
    club = ds_get_club(club_id)
    if not club:
        abort(404)
    try:
        kind = kind_for_club(club)
    except UnknownClubKindError:
        abort(404)
    return club, kind


def _json_body() -> dict:
    return request.get_json(silent=True) or {}


@bp.route('/health/db')
def health_db():
    """Database connectivity health check.

    Always returns HTTP 200 with a JSON body describing connection status.
    """
    url = os.environ.get('DATABASE_URL')
    if not url:
        return {
            'connected': False,
            'status': 'no_database_url',
            'message': 'DATABASE_URL is not set.',
        }
    try:
        import psycopg2  # type: ignore
        with psycopg2.connect(url, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute('SELECT current_user, current_database(), version()')
                user, db, ver = cur.fetchone()
        return {
            'connected': True,
            'status': 'ok',
            'user': user,
            'database': db,
            'server_version': (ver or '').split('\n')[0],
        }
    except Exception as e:  # pragma: no cover - best-effort health output
        return {'connected': False, 'status': 'error', 'error': str(e)}


@bp.route('/admin/schema/apply', methods=['POST'])
def schema_apply():
    """Create missing tables, constraints and indexes."""
    ds_apply_schema()
    current_app.logger.info('schema applied')
    return {'ok': True}


#<clubs>
@bp.route('/api/clubs')
def clubs_index():
    return {'clubs': ds_list_clubs()}


@bp.route('/api/clubs', methods=['POST'])
def create_club():
    payload = _json_body()
    name = (payload.get('name') or '').strip()
    prefix = (payload.get('database_prefix') or '').strip().lower()
    if not name:
        return {'error': 'Club name is required'}, 400
    if prefix not in CLUB_KINDS:
        return {'error': f"database_prefix must be one of: {', '.join(sorted(CLUB_KINDS))}"}, 400
    club = ds_create_club(name, payload.get('description') or None, prefix)
    current_app.logger.info('club created id=%s prefix=%s', club.get('id'), prefix)
    return {'club': club}, 201


@bp.route('/api/clubs/<club_id>', methods=['DELETE'])
def delete_club(club_id):
    if not ds_delete_club(club_id):
        abort(404)
    return {'status': 'ok'}


@bp.route('/api/users/<user_id>/clubs')
def user_clubs(user_id):
    return {'clubs': ds_list_user_clubs(user_id)}


@bp.route('/api/memberships', methods=['POST'])
def add_membership():
    payload = _json_body()
    user_id = payload.get('user_id')
    if not user_id:
        return {'error': 'user_id is required'}, 400
    if 'club_ids' in payload:
        count = ds_replace_memberships(user_id, list(payload.get('club_ids') or []))
        return {'status': 'ok', 'memberships': count}
    club_id = payload.get('club_id')
    if not club_id:
        return {'error': 'club_id is required'}, 400
    created = ds_add_membership(user_id, club_id)
    return {'status': 'ok', 'created': created}


@bp.route('/api/memberships', methods=['DELETE'])
def remove_membership():
    payload = _json_body()
    user_id = payload.get('user_id')
    club_id = payload.get('club_id')
    if not user_id or not club_id:
        return {'error': 'user_id and club_id are required'}, 400
    removed = ds_remove_membership(user_id, club_id)
    return {'status': 'ok', 'removed': removed}
#</clubs>


#<profiles>
@bp.route('/api/profiles', methods=['POST'])
def create_profile():
    """Record a new account and tell the admins about it."""
    payload = _json_body()
    user_id = payload.get('id')
    email = (payload.get('email') or '').strip()
    if not user_id or not email:
        return {'error': 'id and email are required'}, 400
    role = payload.get('role') or 'user'
    if role not in _ROLES:
        return {'error': f'Unknown role: {role}'}, 400
    profile, created = ds_create_profile(user_id, email, full_name=payload.get('full_name') or None, role=role)
    if not created:
        return {'profile': profile}
    create_signup_notification(profile)
    return {'profile': profile}, 201


@bp.route('/api/profiles/<user_id>/role', methods=['POST'])
def update_role(user_id):
    role = _json_body().get('role')
    if role not in _ROLES:
        return {'error': f'Unknown role: {role}'}, 400
    if not ds_update_profile(user_id, {'role': role}):
        abort(404)
    return {'status': 'ok'}
#</profiles>


#<club-stats>
@bp.route('/api/clubs/<club_id>/dashboard')
def club_dashboard(club_id):
    club, kind = _club_and_kind(club_id)
    season = kind.resolve_season(request.args.get('season'))
    rows = kind.fetch_raw_rows(season=season)
    return {'club': club, 'season': season, **kind.compute_aggregates(rows)}


@bp.route('/api/clubs/<club_id>/players/<path:player>')
def player_stats(club_id, player):
    player = normalize_player_name(player) or player
    _club, kind = _club_and_kind(club_id)
    season = kind.resolve_season(request.args.get('season'))
    return kind.player_profile(player, season=season)


@bp.route('/api/clubs/<club_id>/rankings')
def rankings(club_id):
    _club, kind = _club_and_kind(club_id)
    season = kind.resolve_season(request.args.get('season'))
    return {'season': season, 'rankings': kind.rankings(season=season)}


@bp.route('/api/clubs/<club_id>/handicaps')
def handicaps(club_id):
    _club, kind = _club_and_kind(club_id)
    season = kind.resolve_season(request.args.get('season'))
    min_sessions = request.args.get('min_sessions', type=int)
    return {'season': season, 'handicaps': kind.handicaps(season=season, min_sessions=min_sessions)}


@bp.route('/api/clubs/<club_id>/members')
def member_links(club_id):
    _club, kind = _club_and_kind(club_id)
    return {'members': ds_list_member_links(kind.members_table)}


@bp.route('/api/clubs/<club_id>/members/link', methods=['POST'])
def link_member(club_id):
    _club, kind = _club_and_kind(club_id)
    payload = _json_body()
    player = normalize_player_name(payload.get('player'))
    user_id = payload.get('user_id')
    if not player or not user_id:
        return {'error': 'player and user_id are required'}, 400
    member = ds_link_member(kind.members_table, player, user_id)
    return {'member': member}


@bp.route('/api/clubs/<club_id>/members/<int:member_id>/unlink', methods=['POST'])
def unlink_member(club_id, member_id):
    _club, kind = _club_and_kind(club_id)
    if not ds_unlink_member(kind.members_table, member_id):
        abort(404)
    return {'status': 'ok'}
#</club-stats>


#<upload>
@bp.route('/api/upload', methods=['POST'])
def upload_csv():
    """Load one CSV file into a club statistic table."""
    table = request.form.get('table') or ''
    upload = request.files.get('file')
    if table not in SCHEMAS:
        return {'error': 'Please select a valid table'}, 400
    if upload is None:
        return {'error': 'Please select a file'}, 400
    try:
        result = ingest_csv(upload.read(), table)
    except ParseError as e:
        return {'error': f'CSV parsing error: {e}'}, 400
    except EmptyDatasetError as e:
        return {'error': str(e)}, 400
    except IngestionFailedError as e:
        current_app.logger.error('upload failed table=%s warnings=%d', table, len(e.warnings))
        return {'error': str(e), 'warnings': e.warnings}, 502
    return result.to_dict()


@bp.route('/api/upload/tables')
def upload_tables():
    return {
        'tables': [
            {'value': s.table, 'label': s.label, 'club': s.club, 'columns': s.headers}
            for s in SCHEMAS.values()
        ]
    }
#</upload>


#<notifications>
@bp.route('/api/notifications')
def notifications():
    return NotificationFeed.load().to_dict()


@bp.route('/api/notifications/<notification_id>/read', methods=['POST'])
def notification_read(notification_id):
    feed = NotificationFeed.load()
    feed.mark_read(notification_id)
    return feed.to_dict()


@bp.route('/api/notifications/read-all', methods=['POST'])
def notifications_read_all():
    feed = NotificationFeed.load()
    feed.mark_all_read()
    return feed.to_dict()
#</notifications>


@bp.route('/api/analytics')
def analytics():
    """Record counts, signups per month and single-night leaderboards."""
    counts = {name: ds_count_rows(name) for name in ('profiles', 'clubs')}
    for kind in CLUB_KINDS.values():
        for table in kind.tables:
            counts[table] = ds_count_rows(table)
    leaderboards = {}
    for prefix, kind in CLUB_KINDS.items():
        raw = ds_fetch_rows(kind.session_table, order_by='average', descending=True, limit=10)
        leaderboards[prefix] = stats.top_averages([kind.session_row(r) for r in raw])
    return {
        'counts': counts,
        'user_growth': stats.user_growth(ds_list_profiles()),
        'top_players': leaderboards,
    }
