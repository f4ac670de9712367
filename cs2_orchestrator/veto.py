"""Map veto (ban/pick/side selection) for best-of series."""
from typing import List, Optional

from .errors import ValidationError, ConflictError

VETO_POOL_SIZE = 7


def _steps(*spec):
    return [{'step': i + 1, 'team': team, 'action': action} for i, (team, action) in enumerate(spec)]


VETO_ORDERS = {
    'bo1': _steps(
        ('team1', 'ban'), ('team2', 'ban'), ('team1', 'ban'),
        ('team2', 'ban'), ('team1', 'ban'), ('team2', 'ban'),
        ('team1', 'side_pick'),
    ),
    'bo3': _steps(
        ('team1', 'ban'), ('team2', 'ban'),
        ('team1', 'pick'), ('team2', 'side_pick'),
        ('team2', 'pick'), ('team1', 'side_pick'),
        ('team1', 'ban'), ('team2', 'ban'),
    ),
    'bo5': _steps(
        ('team1', 'ban'), ('team2', 'ban'),
        ('team1', 'pick'), ('team2', 'side_pick'),
        ('team2', 'pick'), ('team1', 'side_pick'),
        ('team1', 'pick'), ('team2', 'side_pick'),
        ('team2', 'pick'), ('team1', 'side_pick'),
    ),
}


def get_veto_order(series_format: str) -> List[dict]:
    return VETO_ORDERS.get(series_format, VETO_ORDERS['bo1'])


def new_veto_state() -> dict:
    return {'step': 0, 'banned': [], 'picked': [], 'sides': {}, 'history': []}


def remaining_maps(pool: List[str], state: dict) -> List[str]:
    taken = set(state['banned']) | set(state['picked'])
    return [m for m in pool if m not in taken]


def _side_target(pool: List[str], state: dict) -> Optional[str]:
    """Map a side pick applies to: the latest pick, else the decider."""
    if state['picked'] and state['picked'][-1] not in state['sides']:
        return state['picked'][-1]
    left = remaining_maps(pool, state)
    return left[0] if len(left) == 1 else None


def apply_veto_action(series_format: str, pool: List[str], state: Optional[dict],
                      team: str, action: str, map_name: str = None, side: str = None) -> dict:
    """Apply one veto step and return the new state. Raises ValidationError on an illegal step."""
    if len(pool) != VETO_POOL_SIZE:
        raise ValidationError(f'Veto requires exactly {VETO_POOL_SIZE} maps in the map pool')

    order = get_veto_order(series_format)
    state = dict(state or new_veto_state())
    state['banned'] = list(state['banned'])
    state['picked'] = list(state['picked'])
    state['sides'] = dict(state['sides'])
    state['history'] = list(state['history'])

    if state['step'] >= len(order):
        raise ConflictError('Veto already completed')

    expected = order[state['step']]
    if team != expected['team']:
        raise ValidationError(f"It is {expected['team']}'s turn")
    if action != expected['action']:
        raise ValidationError(f"Expected action '{expected['action']}', got '{action}'")

    entry = {'step': expected['step'], 'team': team, 'action': action}
    if action in ('ban', 'pick'):
        if map_name not in remaining_maps(pool, state):
            raise ValidationError(f"Map '{map_name}' is not available")
        (state['banned'] if action == 'ban' else state['picked']).append(map_name)
        entry['map'] = map_name
    else:
        if side not in ('ct', 't'):
            raise ValidationError("side must be 'ct' or 't'")
        target = _side_target(pool, state)
        if target is None:
            raise ValidationError('No map to pick a side for')
        team1_ct = (team == 'team1') == (side == 'ct')
        state['sides'][target] = 'team1_ct' if team1_ct else 'team2_ct'
        entry.update({'map': target, 'side': side})

    state['history'].append(entry)
    state['step'] += 1
    return state


def is_veto_complete(series_format: str, state: Optional[dict]) -> bool:
    return bool(state) and state['step'] >= len(get_veto_order(series_format))


def final_map_list(series_format: str, pool: List[str], state: dict) -> List[str]:
    num_maps = {'bo1': 1, 'bo3': 3, 'bo5': 5}.get(series_format, 1)
    return (state['picked'] + remaining_maps(pool, state))[:num_maps]
