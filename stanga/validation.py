"""
Request payload validation.

Every parser takes the decoded JSON body (or query args) and either returns
clean Python values or raises :class:`ValidationError`, which the app turns
into a ``400`` response.
"""

import copy
import logging
from datetime import date, datetime, timezone

logger = logging.getLogger(__name__)


GROUP_ROLES = ('admin', 'member')
GENDERS = ('male', 'female', 'other', 'prefer_not_to_say')
MATCHDAY_STATUSES = ('upcoming', 'active', 'completed', 'cancelled')
GAME_STATUSES = ('pending', 'active', 'completed', 'cancelled')
END_REASONS = ('regulation', 'extra_time', 'penalties', 'early_finish')
EVENT_TYPES = ('goal', 'assist', 'penalty_goal', 'penalty_miss', 'yellow_card', 'red_card')
KICK_RESULTS = ('goal', 'miss', 'save')

DEFAULT_RULES = {
    'team_size': 6,
    'game_minutes': 8,
    'extra_minutes': 2,
    'max_goals_to_win': 2,
    'penalties_on_tie': True,
    'penalty_win_weight': 0.5,
    'points': {
        'loss': 0,
        'draw': 1,
        'penalty_bonus_win': 2,
        'regulation_win': 3,
    },
}

MATCHDAY_LIST_STATUSES = ('upcoming', 'past', 'active', 'completed', 'cancelled')
MIN_BIRTH_DATE = date(1900, 1, 1)


class ValidationError(ValueError):
    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details or []


def require_text(value, field, min_len=1, max_len=None, required=True):
    """
    Normalise a free-text field.

    Blank strings count as missing. Returns the stripped value or ``None``
    when the field is optional and absent.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f'{field} is required')
        return None
    if not isinstance(value, str):
        raise ValidationError(f'{field} must be a string')
    value = value.strip()
    if len(value) < min_len:
        raise ValidationError(f'{field} must be at least {min_len} characters')
    if max_len is not None and len(value) > max_len:
        raise ValidationError(f'{field} must be at most {max_len} characters')
    return value


def parse_int(value, field, minimum=None, maximum=None, default=None):
    if value is None or value == '':
        if default is None:
            raise ValidationError(f'{field} is required')
        return default
    if isinstance(value, bool):
        raise ValidationError(f'{field} must be an integer')
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be an integer')
    if isinstance(value, float) and number != value:
        raise ValidationError(f'{field} must be an integer')
    if minimum is not None and number < minimum:
        raise ValidationError(f'{field} must be at least {minimum}')
    if maximum is not None and number > maximum:
        raise ValidationError(f'{field} must be at most {maximum}')
    return number


def optional_int(value, field, minimum=None, maximum=None):
    if value is None or value == '':
        return None
    return parse_int(value, field, minimum=minimum, maximum=maximum)


def parse_number(value, field, minimum=None, maximum=None):
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise ValidationError(f'{field} must be a number')
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be a number')
    if minimum is not None and number < minimum:
        raise ValidationError(f'{field} must be at least {minimum}')
    if maximum is not None and number > maximum:
        raise ValidationError(f'{field} must be at most {maximum}')
    return number


def parse_bool(value, default=None):
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ('1', 'true', 'yes', 'on'):
        return True
    if text in ('0', 'false', 'no', 'off'):
        return False
    raise ValidationError(f'Invalid boolean value: {value}')


def parse_datetime(value, field='scheduled_at'):
    """Parse an ISO 8601 timestamp into a naive UTC ``datetime``."""
    if not value or not isinstance(value, str):
        raise ValidationError(f'{field} must be an ISO 8601 datetime')
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(f'{field} must be an ISO 8601 datetime')
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_date(value, field):
    if not value or not isinstance(value, str):
        raise ValidationError(f'{field} must be a date (YYYY-MM-DD)')
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    # a full timestamp is accepted and truncated to its date
    if 'T' not in text:
        raise ValidationError(f'{field} must be a date (YYYY-MM-DD)')
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        raise ValidationError(f'{field} must be a date (YYYY-MM-DD)')


def parse_pagination(args, default_limit=20, max_limit=100):
    page = parse_int(args.get('page'), 'page', minimum=1, default=1)
    limit = parse_int(args.get('limit'), 'limit', minimum=1, maximum=max_limit, default=default_limit)
    return page, limit


def pagination_dict(page, limit, total):
    total_pages = (total + limit - 1) // limit if total else 0
    return {
        'page': page,
        'limit': limit,
        'total': total,
        'total_pages': total_pages,
        'has_next': page < total_pages,
        'has_prev': page > 1,
    }


def merge_rules(raw, base=None):
    """Overlay a (possibly partial) rules mapping onto ``base``.

    ``base`` defaults to ``DEFAULT_RULES``; unknown keys are dropped.
    """
    rules = copy.deepcopy(DEFAULT_RULES)
    for layer in (base, raw):
        if not isinstance(layer, dict):
            continue
        for key, value in layer.items():
            if key == 'points':
                if isinstance(value, dict):
                    rules['points'].update(value)
            elif key in rules:
                rules[key] = value
    return rules


def validate_rules(raw, base=None):
    rules = merge_rules(raw, base)
    errors = []

    def check(field, ok, message):
        if not ok:
            errors.append({'field': field, 'message': message})

    def is_number(v):
        return isinstance(v, (int, float)) and not isinstance(v, bool)

    ts = rules['team_size']
    check('team_size', isinstance(ts, int) and not isinstance(ts, bool) and 1 <= ts <= 11,
          'team_size must be an integer between 1 and 11')
    check('game_minutes', is_number(rules['game_minutes']) and rules['game_minutes'] > 0,
          'game_minutes must be positive')
    check('extra_minutes', is_number(rules['extra_minutes']) and rules['extra_minutes'] >= 0,
          'extra_minutes must not be negative')
    mg = rules['max_goals_to_win']
    check('max_goals_to_win', isinstance(mg, int) and not isinstance(mg, bool) and mg > 0,
          'max_goals_to_win must be a positive integer')
    check('penalties_on_tie', isinstance(rules['penalties_on_tie'], bool),
          'penalties_on_tie must be a boolean')
    w = rules['penalty_win_weight']
    check('penalty_win_weight', is_number(w) and 0 <= w <= 1,
          'penalty_win_weight must be between 0 and 1')
    if isinstance(raw, dict) and 'points' in raw and not isinstance(raw['points'], dict):
        check('points', False, 'points must be an object')
    else:
        for key in ('loss', 'draw', 'penalty_bonus_win', 'regulation_win'):
            check(f'points.{key}', is_number(rules['points'].get(key)),
                  f'points.{key} must be a number')
    if errors:
        logger.debug('rejected rules %s: %s', raw, errors)
        raise ValidationError('Invalid rules', details=errors)
    return rules


def parse_player_payload(data, partial=False):
    out = {}
    if not partial or 'name' in data:
        out['name'] = require_text(data.get('name'), 'name', min_len=2, max_len=100)
    if 'user_id' in data:
        out['user_id'] = optional_int(data.get('user_id'), 'user_id', minimum=1)
    return out


def parse_matchday_payload(data, partial=False, base_rules=None):
    """
    Validate a matchday create/update body.

    With ``partial`` only the keys present are validated and returned.
    Optional text fields that arrive blank are stored as ``None``. Partial
    ``rules`` are layered over ``base_rules`` (the matchday's current rules).
    """
    out = {}
    if not partial or 'scheduled_at' in data:
        out['scheduled_at'] = parse_datetime(data.get('scheduled_at'))
    if 'name' in data:
        out['name'] = require_text(data.get('name'), 'name', min_len=2, max_len=100, required=False)
    if 'description' in data:
        out['description'] = require_text(data.get('description'), 'description', max_len=500,
                                          required=False)
    if 'location' in data:
        out['location'] = require_text(data.get('location'), 'location', min_len=2, max_len=200,
                                       required=False)
    if 'is_public' in data:
        out['is_public'] = parse_bool(data.get('is_public'), default=True)
    elif not partial:
        out['is_public'] = True
    if 'number_of_teams' in data:
        out['number_of_teams'] = parse_int(data.get('number_of_teams'), 'number_of_teams',
                                           minimum=2, maximum=7)
    elif not partial:
        out['number_of_teams'] = 3
    if 'status' in data:
        if data.get('status') not in MATCHDAY_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(MATCHDAY_STATUSES)}")
        out['status'] = data['status']
    if 'rules' in data and data.get('rules') is not None:
        if not isinstance(data['rules'], dict):
            raise ValidationError('rules must be an object')
        out['rules'] = validate_rules(data['rules'], base_rules)
    elif not partial:
        out['rules'] = merge_rules({})
    return out


def parse_profile_payload(data, today=None):
    today = today or date.today()
    out = {'full_name': require_text(data.get('full_name'), 'full_name', min_len=1, max_len=100)}
    if 'gender' in data:
        gender = data.get('gender') or None
        if gender is not None and gender not in GENDERS:
            raise ValidationError(f"gender must be one of {', '.join(GENDERS)}")
        out['gender'] = gender
    if 'date_of_birth' in data:
        raw = data.get('date_of_birth')
        if raw:
            dob = parse_date(raw, 'date_of_birth')
            if dob < MIN_BIRTH_DATE or dob > today:
                raise ValidationError('date_of_birth must be between 1900-01-01 and today')
            out['date_of_birth'] = dob
        else:
            out['date_of_birth'] = None
    return out
