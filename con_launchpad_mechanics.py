# con_launchpad_mechanics.py
# Deposit/withdraw bookkeeping and vesting math. Pure: every function takes the
# current investment and totals as values and returns new ones.
I = importlib

DISCOUNT_CONTRACT = 'con_launchpad_discount'
MULTIPLIER = 10000
U128_MAX = 340282366920938463463374607431768211455
U256_MAX = 115792089237316195423570985008687907853269984665640564039457584007913129639935


def mul_div(a, b, c):
    assert c > 0, 'Division by zero'
    product = a * b
    assert product <= U256_MAX, 'Multiplication overflow'
    result = product // c
    assert result <= U128_MAX, 'Value too large'
    return result

def is_fixed_price(config):
    return config['mechanics']['kind'] == 'FixedPrice'

def to_sale_tokens(amount, config):
    mechanics = config['mechanics']
    assert mechanics['kind'] == 'FixedPrice', 'FixedPrice mechanic expected'
    return mul_div(amount, mechanics['sale_unit'], mechanics['deposit_unit'])

def to_deposit_tokens(amount, config):
    mechanics = config['mechanics']
    assert mechanics['kind'] == 'FixedPrice', 'FixedPrice mechanic expected'
    return mul_div(amount, mechanics['deposit_unit'], mechanics['sale_unit'])

def copy_investment(investment):
    if investment is None:
        return {'amount': 0, 'weight': 0, 'claimed': 0}
    return {'amount': investment['amount'], 'weight': investment['weight'], 'claimed': investment['claimed']}

def copy_totals(totals):
    return {
        'total_deposited': totals.get('total_deposited', 0),
        'total_sold_tokens': totals.get('total_sold_tokens', 0)
    }

def distribution_weight(distribution):
    if distribution['kind'] == 'WithDiscount':
        weight = distribution['public_sale_weight']
        for entry in distribution['phase_weights']:
            weight += entry[1]
        return weight
    if distribution['kind'] == 'WithoutDiscount':
        return distribution['weight']
    return distribution['amount']

def start_of_vesting(config):
    if config.get('tge') is not None:
        return config['tge']
    return config['end_date']

def allocation_for(weight, total_sold_tokens, config):
    if is_fixed_price(config):
        return weight
    if weight == 0 or total_sold_tokens == 0:
        return 0
    return mul_div(weight, config['sale_amount'], total_sold_tokens)

def vested(total, vesting, start, timestamp):
    if vesting is None:
        return total

    percentage = vesting.get('instant_claim_percentage')
    instant = 0
    if percentage is not None:
        instant = mul_div(total, percentage, MULTIPLIER)

    if timestamp < start + vesting['cliff_period']:
        return instant
    if timestamp >= start + vesting['vesting_period']:
        return total

    if vesting['vesting_scheme'] == 'AfterCliff':
        begin = start + vesting['cliff_period']
        period = vesting['vesting_period'] - vesting['cliff_period']
    else:
        begin = start
        period = vesting['vesting_period']

    return instant + mul_div(total - instant, timestamp - begin, period)

def released_for(investment, total_sold_tokens, config, timestamp):
    total = allocation_for(investment['weight'], total_sold_tokens, config)
    return vested(total, config.get('vesting_schedule'), start_of_vesting(config), timestamp)

@export
def deposit(investment: Any, amount: int, totals: dict, config: dict, ledger: dict, timestamp: int):
    assert amount > 0, 'Deposit amount must be positive'
    current = copy_investment(investment)
    updated = copy_totals(totals)

    discount = I.import_module(DISCOUNT_CONTRACT)
    distribution = discount.get_deposit_distribution(
        config=config,
        ledger=ledger,
        deposit=amount,
        timestamp=timestamp,
        total_sold_tokens=updated['total_sold_tokens']
    )

    if distribution['kind'] == 'Refund':
        return {'investment': current, 'totals': updated, 'refund': amount, 'distribution': distribution,
                'consumption': []}

    consumption = discount.phase_consumption(distribution=distribution, config=config)

    weight = distribution_weight(distribution)
    refund = 0
    if distribution['kind'] == 'WithDiscount':
        refund = distribution['refund']
    elif is_fixed_price(config):
        exceeded = updated['total_sold_tokens'] + to_sale_tokens(weight, config) - config['sale_amount']
        if exceeded > 0:
            refund = min(to_deposit_tokens(exceeded, config), amount)
            weight = weight - refund

    net_deposit = amount - refund
    added = weight
    if is_fixed_price(config):
        added = to_sale_tokens(weight, config)
        # Rounding across phases can still overshoot the cap, clip and refund the excess
        exceeded = updated['total_sold_tokens'] + added - config['sale_amount']
        if exceeded > 0 and added > 0:
            extra_refund = mul_div(exceeded, net_deposit, added)
            added = added - exceeded
            net_deposit = net_deposit - extra_refund
            refund = refund + extra_refund
            if distribution['kind'] == 'WithDiscount':
                public_tokens = to_sale_tokens(distribution['public_sale_weight'], config)
                consumption = clip_consumption(consumption, exceeded, public_tokens)

    current['amount'] += net_deposit
    current['weight'] += added
    updated['total_deposited'] += net_deposit
    updated['total_sold_tokens'] += added

    return {'investment': current, 'totals': updated, 'refund': refund, 'distribution': distribution,
            'consumption': consumption}

def clip_consumption(consumption, excess, public_tokens):
    # The public part absorbs the excess first, then the latest phases give tokens back
    excess = max(excess - public_tokens, 0)
    clipped = []
    for entry in consumption:
        clipped.append([entry[0], entry[1]])
    for offset in range(len(clipped)):
        if excess == 0:
            break
        index = len(clipped) - 1 - offset
        taken = min(clipped[index][1], excess)
        clipped[index][1] -= taken
        excess -= taken
    return clipped

@export
def withdraw(investment: dict, amount: int, totals: dict, config: dict, ledger: dict, timestamp: int):
    assert amount > 0, 'Withdraw amount must be positive'
    current = copy_investment(investment)
    updated = copy_totals(totals)
    assert amount <= current['amount'], 'insufficient funds'
    assert current['claimed'] == 0, 'Claimed investments cannot be withdrawn'

    if is_fixed_price(config):
        assert amount == current['amount'], 'partial withdrawal only allowed in price discovery'
        updated['total_deposited'] = max(updated['total_deposited'] - amount, 0)
        updated['total_sold_tokens'] = max(updated['total_sold_tokens'] - current['weight'], 0)
        current['amount'] = 0
        current['weight'] = 0
        return {'investment': current, 'totals': updated}

    current['amount'] -= amount
    updated['total_deposited'] = max(updated['total_deposited'] - amount, 0)

    # The remaining amount is re-weighted with the discount active right now
    new_weight = 0
    if current['amount'] > 0:
        discount = I.import_module(DISCOUNT_CONTRACT)
        new_weight = distribution_weight(discount.get_deposit_distribution(
            config=config,
            ledger=ledger,
            deposit=current['amount'],
            timestamp=timestamp,
            total_sold_tokens=updated['total_sold_tokens']
        ))

    # A higher weight is never granted on withdrawal
    if new_weight < current['weight']:
        updated['total_sold_tokens'] = max(updated['total_sold_tokens'] - (current['weight'] - new_weight), 0)
        current['weight'] = new_weight

    return {'investment': current, 'totals': updated}

@export
def user_allocation(weight: int, total_sold_tokens: int, config: dict):
    return allocation_for(weight, total_sold_tokens, config)

@export
def available_for_claim(investment: dict, total_sold_tokens: int, config: dict, timestamp: int):
    return released_for(investment, total_sold_tokens, config, timestamp)

@export
def claimable(investment: dict, total_sold_tokens: int, config: dict, timestamp: int):
    return max(released_for(investment, total_sold_tokens, config, timestamp) - investment['claimed'], 0)

@export
def available_for_individual_vesting_claim(allocation: int, vesting: Any, vesting_start: int, timestamp: int):
    return vested(allocation, vesting, vesting_start, timestamp)
