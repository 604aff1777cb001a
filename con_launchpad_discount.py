# con_launchpad_discount.py
# Discount phases and the deposit allocation engine. Stateless: callers pass the
# sale config and a per-account view of the discount ledger.

MULTIPLIER = 10000 # Basis points
U128_MAX = 340282366920938463463374607431768211455
U256_MAX = 115792089237316195423570985008687907853269984665640564039457584007913129639935


def checked(value):
    assert value <= U128_MAX, 'Value too large'
    return value

def checked_mul_div(a, b, c):
    assert c > 0, 'Division by zero'
    product = a * b
    assert product <= U256_MAX, 'Multiplication overflow'
    return checked(product // c)

def with_discount(amount, percentage):
    return checked_mul_div(amount, MULTIPLIER + percentage, MULTIPLIER)

def without_discount(weight, percentage):
    return checked_mul_div(weight, MULTIPLIER, MULTIPLIER + percentage)

def to_sale_tokens(amount, mechanics):
    assert mechanics['kind'] == 'FixedPrice', 'FixedPrice mechanic expected'
    return checked_mul_div(amount, mechanics['sale_unit'], mechanics['deposit_unit'])

def to_deposit_tokens(amount, mechanics):
    assert mechanics['kind'] == 'FixedPrice', 'FixedPrice mechanic expected'
    return checked_mul_div(amount, mechanics['deposit_unit'], mechanics['sale_unit'])

def ledger_field(ledger, name):
    field = ledger.get(name)
    if field is None:
        return {}
    return field

def phases_by_id(phases):
    by_id = {}
    for phase in phases:
        by_id[phase['id']] = phase
    return by_id

def chronological_ids(phases):
    keys = []
    for phase in phases:
        keys.append([phase['start_time'], phase['id']])
    ordered = []
    for key in sorted(keys):
        ordered.append(key[1])
    return ordered

def successor_of(phase, chronology):
    # Explicit link wins, otherwise unsold capacity rolls into the next phase in time
    if phase.get('remaining_go_to_phase_id') is not None:
        return phase['remaining_go_to_phase_id']
    position = chronology.index(phase['id'])
    if position + 1 < len(chronology):
        return chronology[position + 1]
    return None

def starts_before(candidate, target):
    if candidate['start_time'] != target['start_time']:
        return candidate['start_time'] < target['start_time']
    return candidate['id'] < target['id']

def pool_members(phases, phase_id):
    by_id = phases_by_id(phases)
    assert phase_id in by_id, f'Phase not found: {phase_id}'
    target = by_id[phase_id]
    chronology = chronological_ids(phases)

    members = [phase_id]
    for phase in phases:
        if phase['id'] == phase_id or not starts_before(phase, target):
            continue

        visited = {phase['id']: True}
        current = successor_of(phase, chronology)
        for step in range(len(phases)):
            # A revisit means the links cycle: no further rollover
            if current is None or current in visited:
                break
            if current == phase_id:
                members.append(phase['id'])
                break
            assert current in by_id, f'Phase not found: {current}'
            visited[current] = True
            current = successor_of(by_id[current], chronology)

    return members

def pool_state(phases, phase_id, phase_sold, sold_now):
    by_id = phases_by_id(phases)
    limit = 0
    consumed = 0
    for member in pool_members(phases, phase_id):
        member_limit = by_id[member].get('phase_sale_limit')
        if member_limit is None:
            continue
        key = str(member)
        limit += member_limit
        consumed += phase_sold.get(key, 0) + sold_now.get(key, 0)
    return {'limit': limit, 'consumed': consumed}

def active_phases(phases, timestamp):
    by_id = phases_by_id(phases)
    ids = []
    for phase in phases:
        if phase['start_time'] <= timestamp and timestamp < phase['end_time']:
            ids.append(phase['id'])
    active = []
    for phase_id in sorted(ids):
        active.append(by_id[phase_id])
    return active

def is_eligible(phase, phases, ledger):
    key = str(phase['id'])
    if not ledger_field(ledger, 'whitelisted').get(key, True):
        return False

    max_limit = phase.get('max_limit_per_account')
    if max_limit is not None and ledger_field(ledger, 'account_sold').get(key, 0) >= max_limit:
        return False

    if phase.get('phase_sale_limit') is not None:
        pool = pool_state(phases, phase['id'], ledger_field(ledger, 'phase_sold'), {})
        if pool['consumed'] >= pool['limit']:
            return False

    return True

def public_sale_started(discounts, timestamp):
    start = discounts.get('public_sale_start_time')
    return start is None or start <= timestamp

def fixed_price_distribution(eligible, phases, ledger, mechanics, deposit, available, public_sale):
    phase_sold = ledger_field(ledger, 'phase_sold')
    account_sold = ledger_field(ledger, 'account_sold')

    remaining_deposit = deposit
    remaining_available = available
    sold_now = {} # Sale tokens taken by each phase earlier in this deposit
    phase_weights = []

    for phase in eligible:
        key = str(phase['id'])
        percentage = phase['percentage']
        weight = with_discount(remaining_deposit, percentage)
        sale_tokens = to_sale_tokens(weight, mechanics)
        bought = account_sold.get(key, 0)

        min_limit = phase.get('min_limit_per_account')
        if min_limit is not None and bought == 0 and sale_tokens < min_limit:
            continue

        exceeded = max(sale_tokens - remaining_available, 0)

        max_limit = phase.get('max_limit_per_account')
        if max_limit is not None:
            exceeded = max(exceeded, bought + sale_tokens - max_limit)

        if phase.get('phase_sale_limit') is not None:
            pool = pool_state(phases, phase['id'], phase_sold, sold_now)
            exceeded = max(exceeded, pool['consumed'] + sale_tokens - pool['limit'])

        if exceeded > 0:
            sale_tokens = sale_tokens - exceeded
            weight = to_deposit_tokens(sale_tokens, mechanics)
            remaining_deposit = max(remaining_deposit - without_discount(weight, percentage), 0)
        else:
            remaining_deposit = 0

        if weight > 0:
            phase_weights.append([phase['id'], weight])
            sold_now[key] = sold_now.get(key, 0) + sale_tokens
        remaining_available = max(remaining_available - sale_tokens, 0)

        if remaining_deposit == 0 or remaining_available == 0:
            break

    public_sale_weight = 0
    refund = 0
    if remaining_deposit > 0:
        if public_sale and remaining_available > 0:
            exceeded = to_sale_tokens(remaining_deposit, mechanics) - remaining_available
            if exceeded > 0:
                refund = min(to_deposit_tokens(exceeded, mechanics), remaining_deposit)
            public_sale_weight = remaining_deposit - refund
        else:
            refund = remaining_deposit

    return {
        'kind': 'WithDiscount',
        'phase_weights': phase_weights,
        'public_sale_weight': public_sale_weight,
        'refund': refund
    }

def price_discovery_distribution(eligible, deposit):
    # Only the first eligible phase counts, the sold total is known at settlement
    phase = eligible[0]
    return {
        'kind': 'WithDiscount',
        'phase_weights': [[phase['id'], with_discount(deposit, phase['percentage'])]],
        'public_sale_weight': 0,
        'refund': 0
    }

@export
def get_deposit_distribution(config: dict, ledger: dict, deposit: int, timestamp: int, total_sold_tokens: int):
    checked(deposit)
    discounts = config.get('discounts')
    if discounts is None:
        return {'kind': 'WithoutDiscount', 'weight': deposit}

    phases = discounts['phases']
    public_sale = public_sale_started(discounts, timestamp)

    eligible = []
    for phase in active_phases(phases, timestamp):
        if is_eligible(phase, phases, ledger):
            eligible.append(phase)

    if len(eligible) == 0:
        if public_sale:
            return {'kind': 'WithoutDiscount', 'weight': deposit}
        return {'kind': 'Refund', 'amount': deposit}

    mechanics = config['mechanics']
    if mechanics['kind'] == 'FixedPrice':
        available = max(config['sale_amount'] - total_sold_tokens, 0)
        if available == 0:
            return {'kind': 'Refund', 'amount': deposit}
        return fixed_price_distribution(eligible, phases, ledger, mechanics, deposit, available, public_sale)

    return price_discovery_distribution(eligible, deposit)

@export
def phase_consumption(distribution: dict, config: dict):
    # Sale tokens each phase hands out, only tracked for fixed price sales
    if distribution['kind'] != 'WithDiscount' or config['mechanics']['kind'] != 'FixedPrice':
        return []

    consumption = []
    for entry in distribution['phase_weights']:
        consumption.append([entry[0], to_sale_tokens(entry[1], config['mechanics'])])
    return consumption

@export
def linked_phases(phases: list, phase_id: int):
    return sorted(pool_members(phases, phase_id))

@export
def validate_phases(phases: list, mechanics: dict):
    by_id = {}
    for phase in phases:
        phase_id = phase['id']
        assert phase_id not in by_id, f'Duplicate phase id: {phase_id}'
        assert phase_id >= 0 and phase_id <= 65535, f'Phase id out of range: {phase_id}'
        assert phase['start_time'] < phase['end_time'], f'Phase {phase_id} ends before it starts'
        assert phase['percentage'] > 0, f'Phase {phase_id} has no discount'

        min_limit = phase.get('min_limit_per_account')
        max_limit = phase.get('max_limit_per_account')
        if min_limit is not None and max_limit is not None:
            assert min_limit <= max_limit, f'Phase {phase_id} minimum exceeds its maximum per account'

        if mechanics['kind'] == 'PriceDiscovery':
            assert phase.get('phase_sale_limit') is None and min_limit is None and max_limit is None, \
                'Phase limits are not supported for price discovery'

        by_id[phase_id] = phase

    for phase in phases:
        successor = phase.get('remaining_go_to_phase_id')
        if successor is not None:
            assert successor in by_id, f'Phase not found: {successor}'
            assert successor != phase['id'], f'Phase {successor} cannot roll over into itself'

    return True

@export
def mul_div(a: int, b: int, c: int):
    return checked_mul_div(a, b, c)
