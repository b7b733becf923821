from collections import OrderedDict

# token -> (display name, hex); order is the auto-generation order
TEAM_COLORS = OrderedDict([
    ('black', ('Black', '#000000')),
    ('white', ('White', '#ffffff')),
    ('red', ('Red', '#ef4444')),
    ('green', ('Green', '#10b981')),
    ('orange', ('Orange', '#f97316')),
    ('yellow', ('Yellow', '#eab308')),
    ('blue', ('Blue', '#3b82f6')),
])


def is_valid_color(token):
    return isinstance(token, str) and token in TEAM_COLORS


def color_name(token):
    return TEAM_COLORS[token][0]


def color_hex(token):
    return TEAM_COLORS[token][1]


def default_team_specs(number_of_teams):
    """Return ``(token, name, hex)`` for the first ``number_of_teams`` colours."""
    specs = []
    for token, (name, hex_value) in list(TEAM_COLORS.items())[:number_of_teams]:
        specs.append((token, name, hex_value))
    return specs


def renamed_for_color(current_name, old_token, new_token):
    # a team still carrying its colour's default name follows the new colour
    if old_token in TEAM_COLORS and current_name == color_name(old_token):
        return color_name(new_token)
    return current_name


def matchday_display_name(scheduled_at, location=None):
    if not scheduled_at:
        return 'Matchday'
    day = f"{scheduled_at.day}/{scheduled_at.month}"
    if location:
        return f"{day} at {location}"
    return f"{day} Matchday"


def _finished_order(game):
    return (game.ended_at or game.started_at or game.created_at, game.queue_position or 0, game.id)


def suggest_next_game(teams, games):
    """Winner-stays rotation for the next game of a matchday.

    ``teams`` are the live teams, ``games`` every game of the matchday.
    Returns a dict with ``home``, ``away`` and ``waiting`` teams plus a short
    ``reason``, or ``None`` when fewer than two teams exist.
    """
    ordered = sorted(teams, key=lambda t: (t.name or '', t.id))
    if len(ordered) < 2:
        return None
    by_id = {t.id: t for t in ordered}
    completed = sorted(
        [g for g in games if g.status == 'completed'
         and g.home_team_id in by_id and g.away_team_id in by_id],
        key=_finished_order,
    )
    if not completed:
        return {'home': ordered[0], 'away': ordered[1], 'waiting': ordered[2:],
                'reason': 'first_game'}
    last = completed[-1]
    if not last.winner_team_id or last.winner_team_id not in last.team_ids():
        return {'home': ordered[0], 'away': ordered[1], 'waiting': ordered[2:],
                'reason': 'no_previous_winner'}

    winner = by_id[last.winner_team_id]
    loser_id = last.away_team_id if last.winner_team_id == last.home_team_id else last.home_team_id
    loser = by_id[loser_id]

    # longest idle first; teams that never played go before anyone who has
    last_played = {}
    for idx, g in enumerate(completed):
        last_played[g.home_team_id] = idx
        last_played[g.away_team_id] = idx
    bench = [t for t in ordered if t.id not in (winner.id, loser.id)]
    bench.sort(key=lambda t: last_played.get(t.id, -1))

    if not bench:
        return {'home': winner, 'away': loser, 'waiting': [], 'reason': 'winner_stays'}
    return {'home': winner, 'away': bench[0], 'waiting': bench[1:] + [loser],
            'reason': 'winner_stays'}
