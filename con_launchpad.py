I = importlib

MULTIPLIER = 10000 # Basis points
DISTRIBUTION_BATCH_LIMIT = 7 # Recipients per distribution call
U128_MAX = 340282366920938463463374607431768211455
U256_MAX = 115792089237316195423570985008687907853269984665640564039457584007913129639935
EPOCH = datetime.datetime(year=1970, month=1, day=1)

metadata = Hash()
sale_config = Variable()
sale_state = Hash(default_value=0) # total_deposited, total_sold_tokens, participants_count, pending_refunds_total, admin_withdrawals_in_flight
sale_flags = Hash(default_value=False) # initialized, locked

investments = Hash() # account -> {"amount": X, "weight": Y, "claimed": Z}
individual_vesting_claimed = Hash(default_value=0)
pending_refunds = Hash(default_value=0)

# Discount ledger
phase_sold = Hash(default_value=0)
account_phase_sold = Hash(default_value=0)
whitelist_enabled = Hash(default_value=False)
phase_whitelist = Hash(default_value=False)

# Settlement bookkeeping
settlements = Hash()
settlement_nonce = Variable(default_value=0)
settlement_lock = Hash(default_value=False)
settlement_refunds = Hash(default_value=0) # solver_refund, designator_refund
distribution_progress = Hash() # account -> {"distributed": X, "busy": False}

# Standard XSC001 (Fungible Token) interface
token_interface = [
    I.Func('transfer_from', args=('amount', 'to', 'main_account')),
    I.Func('transfer', args=('amount', 'to')),
    importlib.Func('balance_of', args=('address',)),
    I.Func('approve', args=('amount', 'to')),
]

relay_interface = [
    I.Func('dispatch', args=('token', 'to', 'amount', 'note', 'settlement_id')),
    I.Func('dispatch_batch', args=('token', 'transfers', 'note', 'settlement_id')),
]

# Events
SaleInitialized = LogEvent(
    event="sale_initialized",
    params={
        "sale_token": {'type':str, 'idx':True},
        "total_sale_amount": {'type':int}
    })

Deposit = LogEvent(
    event="deposit",
    params={
        "account": {'type':str, 'idx':True},
        "amount": {'type':int},
        "refund": {'type':int},
        "weight": {'type':int}
    })

Withdraw = LogEvent(
    event="withdraw",
    params={
        "account": {'type':str, 'idx':True},
        "amount": {'type':int}
    })

Claim = LogEvent(
    event="claim",
    params={
        "account": {'type':str, 'idx':True},
        "amount": {'type':int}
    })

SettlementDispatched = LogEvent(
    event="settlement_dispatched",
    params={
        "settlement_id": {'type':str, 'idx':True},
        "kind": {'type':str, 'idx':True},
        "account": {'type':str, 'idx':True},
        "amount": {'type':int}
    })

SettlementReconciled = LogEvent(
    event="settlement_reconciled",
    params={
        "settlement_id": {'type':str, 'idx':True},
        "outcome": {'type':str, 'idx':False},
        "accepted": {'type':int}
    })

@construct
def seed(config: dict, relay: str):
    validate_config(config)
    sale_config.set(config)

    metadata['operator'] = ctx.caller
    metadata['relay'] = relay
    metadata['discount_contract'] = 'con_launchpad_discount'
    metadata['mechanics_contract'] = 'con_launchpad_mechanics'
    metadata['batch_distribution'] = True

    if config.get('discounts') is not None:
        for phase in config['discounts']['phases']:
            if phase.get('whitelist') is not None:
                key = str(phase['id'])
                whitelist_enabled[key] = True
                for account in phase['whitelist']:
                    phase_whitelist[key, account] = True

    for recipient in distribution_recipients(config):
        distribution_progress[recipient['account']] = {"distributed": 0, "busy": False}

def validate_config(config):
    mechanics = config['mechanics']
    if mechanics['kind'] == 'FixedPrice':
        assert mechanics['deposit_unit'] > 0 and mechanics['sale_unit'] > 0, \
            'Deposit and sale token units must be positive.'
    else:
        assert mechanics['kind'] == 'PriceDiscovery', f"Unknown mechanics: {mechanics['kind']}"

    assert config['start_date'] < config['end_date'], 'Sale must end after it starts.'
    assert config['sale_amount'] > 0, 'Sale amount must be positive.'
    assert config['soft_cap'] >= 0, 'Soft cap cannot be negative.'
    assert config['min_deposit'] >= 0, 'Minimum deposit cannot be negative.'
    if config.get('tge') is not None:
        assert config['tge'] > config['end_date'], 'TGE must be after the sale end date.'

    proportions = config['distribution_proportions']
    allocated = config['sale_amount'] + proportions['solver_allocation']
    accounts = {proportions['solver_account_id']: True}
    for entry in proportions['stakeholder_proportions']:
        assert entry['account'] not in accounts, f"Duplicate distribution account: {entry['account']}"
        accounts[entry['account']] = True
        allocated += entry['allocation']
        if entry.get('vesting') is not None:
            validate_vesting(entry['vesting'])

    assert allocated == config['total_sale_amount'], \
        'Total sale amount must equal the sale amount plus all distribution allocations.'

    if config.get('vesting_schedule') is not None:
        validate_vesting(config['vesting_schedule'])

    deposits = proportions.get('deposits')
    if deposits is not None:
        assert deposits['designated_percentage'] <= MULTIPLIER, 'Designated percentage exceeds 100%.'

def validate_vesting(vesting):
    assert vesting['cliff_period'] <= vesting['vesting_period'], 'Cliff period exceeds the vesting period.'
    percentage = vesting.get('instant_claim_percentage')
    assert percentage is None or percentage <= MULTIPLIER, 'Instant claim percentage exceeds 100%.'
    assert vesting['vesting_scheme'] == 'Immediate' or vesting['vesting_scheme'] == 'AfterCliff', \
        f"Unknown vesting scheme: {vesting['vesting_scheme']}"

def mul_div(a, b, c):
    assert c > 0, 'Division by zero'
    product = a * b
    assert product <= U256_MAX, 'Multiplication overflow'
    result = product // c
    assert result <= U128_MAX, 'Value too large'
    return result

def current_time():
    # Config times are unix seconds
    return int((now - EPOCH).seconds)

def is_fixed_price(config):
    return config['mechanics']['kind'] == 'FixedPrice'

def start_of_vesting(config):
    if config.get('tge') is not None:
        return config['tge']
    return config['end_date']

def sale_status():
    config = sale_config.get()
    if not sale_flags['initialized']:
        return 'NotInitialized'
    if sale_flags['locked']:
        return 'Locked'

    timestamp = current_time()
    if timestamp < config['start_date']:
        return 'NotStarted'

    tge_pending = config.get('tge') is not None and timestamp < config['tge']
    if timestamp < config['end_date']:
        # Selling out only ends the sale early once the soft cap is also reached
        sold_out = sale_state['total_sold_tokens'] >= config['sale_amount']
        if is_fixed_price(config) and sold_out and sale_state['total_deposited'] >= config['soft_cap']:
            return 'PreTGE' if tge_pending else 'Success'
        return 'Ongoing'

    if sale_state['total_deposited'] >= config['soft_cap']:
        return 'PreTGE' if tge_pending else 'Success'
    return 'Failed'

def current_totals():
    return {
        "total_deposited": sale_state['total_deposited'],
        "total_sold_tokens": sale_state['total_sold_tokens']
    }

def discount_ledger_view(config, account):
    view = {"phase_sold": {}, "account_sold": {}, "whitelisted": {}}
    if config.get('discounts') is None:
        return view

    for phase in config['discounts']['phases']:
        key = str(phase['id'])
        view['phase_sold'][key] = phase_sold[key]
        view['account_sold'][key] = account_phase_sold[key, account]
        view['whitelisted'][key] = not whitelist_enabled[key] or phase_whitelist[key, account]
    return view

def record_phase_consumption(consumption, account):
    for entry in consumption:
        key = str(entry[0])
        phase_sold[key] += entry[1]
        account_phase_sold[key, account] += entry[1]

def apply_deposit(account, amount, timestamp):
    config = sale_config.get()
    mechanics = I.import_module(metadata['mechanics_contract'])
    investment = investments[account]

    result = mechanics.deposit(
        investment=investment,
        amount=amount,
        totals=current_totals(),
        config=config,
        ledger=discount_ledger_view(config, account),
        timestamp=timestamp
    )

    if amount - result['refund'] > 0:
        if investment is None:
            sale_state['participants_count'] += 1
        investments[account] = result['investment']
        sale_state['total_deposited'] = result['totals']['total_deposited']
        sale_state['total_sold_tokens'] = result['totals']['total_sold_tokens']
        record_phase_consumption(result['consumption'], account)

    return result

def add_pending_refund(account, amount):
    pending_refunds[account] += amount
    sale_state['pending_refunds_total'] += amount

def held_balance(token_name):
    balance = I.import_module(token_name).balance_of(address=ctx.this)
    if balance is None: # Handle case where balance_of might return None for 0
        balance = 0
    return balance

def distribution_recipients(config):
    proportions = config['distribution_proportions']
    recipients = [{"account": proportions['solver_account_id'], "allocation": proportions['solver_allocation']}]
    for entry in proportions['stakeholder_proportions']:
        # Stakeholders with their own schedule claim instead
        if entry.get('vesting') is None:
            recipients.append({"account": entry['account'], "allocation": entry['allocation']})
    return recipients

def stakeholder_entry(config, account):
    for entry in config['distribution_proportions']['stakeholder_proportions']:
        if entry['account'] == account:
            return entry
    return None

# --- Settlement protocol ---

def open_settlement(kind, account, token, to, amount, snapshot, applied, recipients, locked):
    nonce = settlement_nonce.get() + 1
    settlement_nonce.set(nonce)
    settlement_id = str(nonce)

    settlements[settlement_id] = {
        "kind": kind,
        "account": account,
        "token": token,
        "to": to,
        "requested": amount,
        "amount": amount, # What the relay holds in escrow, set on dispatch
        "escrowed": recipients,
        "snapshot": snapshot, # Pre-mutation values, never modified afterwards
        "applied": applied,
        "recipients": recipients,
        "relay": metadata['relay'],
        "locked": locked,
        "status": "PENDING",
        "outcome": None,
        "accepted": 0
    }
    if locked:
        settlement_lock[account] = True
    if kind == 'admin_withdraw' or kind == 'designated':
        sale_state['admin_withdrawals_in_flight'] += 1
    return settlement_id

def mark_dispatched(settlement_id, escrow):
    # A relay may already have reported back during dispatch
    record = settlements[settlement_id]
    if record['status'] == 'PENDING':
        record['status'] = 'DISPATCHED'
        # Transfer fees can leave less in escrow than requested
        record['amount'] = escrow['amount']
        if escrow.get('recipients') is not None:
            record['escrowed'] = escrow['recipients']
        settlements[settlement_id] = record

    account = record['account']
    if account is None:
        account = ''
    SettlementDispatched({
        "settlement_id": settlement_id,
        "kind": record['kind'],
        "account": account,
        "amount": record['amount']
    })

def dispatch_settlement(kind, account, token, to, amount, snapshot, applied, locked):
    settlement_id = open_settlement(kind, account, token, to, amount, snapshot, applied, None, locked)
    relay_name = metadata['relay']

    # The relay pulls the escrow, forwards what the destination accepts and returns the rest
    I.import_module(token).approve(amount=amount, to=relay_name)
    escrow = I.import_module(relay_name).dispatch(
        token=token,
        to=to,
        amount=amount,
        note=kind,
        settlement_id=settlement_id
    )

    mark_dispatched(settlement_id, escrow)
    return settlement_id

def dispatch_distribution_batch(token, batch):
    total = 0
    for entry in batch:
        total += entry['amount']

    settlement_id = open_settlement('distribution_batch', None, token, None, total, {}, {}, batch, False)
    relay_name = metadata['relay']

    I.import_module(token).approve(amount=total, to=relay_name)
    escrow = I.import_module(relay_name).dispatch_batch(
        token=token,
        transfers=batch,
        note='distribution',
        settlement_id=settlement_id
    )

    mark_dispatched(settlement_id, escrow)
    return settlement_id

def dispatch_refund(account, config):
    amount = pending_refunds[account]
    pending_refunds[account] = 0
    sale_state['pending_refunds_total'] -= amount
    return dispatch_settlement('refund', account, config['deposit_token'], account, amount,
        {"pending_refund": amount}, {}, True)

def top_up(account, amount):
    # Unused withdrawal funds re-enter the sale as a deposit
    result = apply_deposit(account, amount, current_time())
    if result['refund'] > 0:
        add_pending_refund(account, result['refund'])

def rollback_withdraw(record):
    snapshot = record['snapshot']
    applied = record['applied']
    investments[record['account']] = snapshot['investment']
    # Revert by delta so that other accounts' changes since dispatch survive
    for field in ['total_deposited', 'total_sold_tokens']:
        sale_state[field] += snapshot['totals'][field] - applied['totals'][field]

def reconcile(record, accepted):
    kind = record['kind']
    account = record['account']
    unused = record['amount'] - accepted
    if accepted == 0:
        # A failed transfer owes back what was taken from the ledger, not what reached escrow
        unused = record['requested']

    if kind == 'claim':
        if accepted == 0:
            investments[account] = record['snapshot']['investment']
        elif unused > 0:
            investment = investments[account]
            investment['claimed'] -= unused
            investments[account] = investment
    elif kind == 'individual_claim':
        if accepted == 0:
            individual_vesting_claimed[account] = record['snapshot']['claimed']
        else:
            individual_vesting_claimed[account] -= unused
    elif kind == 'withdraw':
        if accepted == 0:
            rollback_withdraw(record)
        elif unused > 0:
            top_up(account, unused)
    elif kind == 'refund':
        add_pending_refund(account, unused)
    elif kind == 'admin_withdraw':
        settlement_refunds['solver_refund'] += unused
    elif kind == 'designated':
        settlement_refunds['designator_refund'] += unused
    elif kind == 'distribution':
        progress = distribution_progress[account]
        progress['distributed'] += distributed_share(record['requested'], record['amount'], accepted)
        progress['busy'] = False
        distribution_progress[account] = progress

def distributed_share(requested, escrowed, accepted):
    # The transfer fee counts as delivered once the recipient accepted anything
    if accepted == 0:
        return 0
    return accepted + requested - escrowed

def finish_settlement(settlement_id, record, accepted):
    if accepted == 0:
        outcome = 'FAILED'
    elif accepted < record['amount']:
        outcome = 'PARTIAL'
    else:
        outcome = 'FULL'

    record['status'] = 'RECONCILED'
    record['outcome'] = outcome
    record['accepted'] = accepted
    settlements[settlement_id] = record

    if record['locked']:
        settlement_lock[record['account']] = False
    if record['kind'] == 'admin_withdraw' or record['kind'] == 'designated':
        sale_state['admin_withdrawals_in_flight'] -= 1

    SettlementReconciled({"settlement_id": settlement_id, "outcome": outcome, "accepted": accepted})

def open_record(settlement_id):
    record = settlements[settlement_id]
    assert record, 'Settlement does not exist.'
    assert ctx.caller == record['relay'], 'Only the transfer relay can report transfer outcomes.'
    assert record['status'] != 'RECONCILED', 'Settlement already reconciled.'
    return record

@export
def on_transfer_resolved(settlement_id: str, accepted_amount: int, failed: bool):
    record = open_record(settlement_id)
    assert record['kind'] != 'distribution_batch', 'Batch settlements are reported with on_batch_resolved.'

    accepted = 0 if failed else accepted_amount
    assert accepted >= 0 and accepted <= record['amount'], 'Accepted amount is out of range.'

    reconcile(record, accepted)
    finish_settlement(settlement_id, record, accepted)

@export
def on_batch_resolved(settlement_id: str, accepted: list, failed: bool):
    record = open_record(settlement_id)
    assert record['kind'] == 'distribution_batch', 'Only batch settlements are reported with on_batch_resolved.'

    recipients = record['recipients']
    escrowed = record['escrowed']
    if not failed:
        assert len(accepted) == len(recipients), 'Accepted amounts do not match the batch.'

    total_accepted = 0
    for index in range(len(recipients)):
        entry = recipients[index]
        progress = distribution_progress[entry['account']]
        if not failed:
            amount = accepted[index]
            assert amount >= 0 and amount <= escrowed[index]['amount'], 'Accepted amount is out of range.'
            progress['distributed'] += distributed_share(entry['amount'], escrowed[index]['amount'], amount)
            total_accepted += amount
        progress['busy'] = False
        distribution_progress[entry['account']] = progress

    finish_settlement(settlement_id, record, total_accepted)

# --- Participant operations ---

@export
def deposit(amount: int):
    account = ctx.caller
    config = sale_config.get()

    assert amount > 0, 'Deposit amount must be positive.'
    assert sale_status() == 'Ongoing', 'Launchpad is not ongoing.'
    assert not settlement_lock[account], 'Settlement for this account is still in progress.'

    deposit_token = I.import_module(config['deposit_token'])
    balance_before = held_balance(config['deposit_token'])
    deposit_token.transfer_from(amount=amount, to=ctx.this, main_account=account)

    # Tokens with transfer fees deliver less than requested
    received = held_balance(config['deposit_token']) - balance_before
    assert received > 0, 'No deposit tokens were received.'
    assert received >= config['min_deposit'], f"Deposit amount is below the minimum of {config['min_deposit']}."

    result = apply_deposit(account, received, current_time())

    Deposit({
        "account": account,
        "amount": received,
        "refund": result['refund'],
        "weight": result['investment']['weight']
    })

    if result['refund'] > 0:
        add_pending_refund(account, result['refund'])
        dispatch_refund(account, config)

    return result['refund']

@export
def withdraw(amount: int):
    account = ctx.caller
    config = sale_config.get()
    status = sale_status()

    assert (status == 'Ongoing' and not is_fixed_price(config)) or status == 'Failed' or status == 'Locked', \
        f'Withdraw is not allowed in {status} status.'
    assert not settlement_lock[account], 'Settlement for this account is still in progress.'

    investment = investments[account]
    assert investment, 'No deposits were found for the account.'

    mechanics = I.import_module(metadata['mechanics_contract'])
    totals_before = current_totals()
    result = mechanics.withdraw(
        investment=investment,
        amount=amount,
        totals=totals_before,
        config=config,
        ledger=discount_ledger_view(config, account),
        timestamp=current_time()
    )

    investments[account] = result['investment']
    sale_state['total_deposited'] = result['totals']['total_deposited']
    sale_state['total_sold_tokens'] = result['totals']['total_sold_tokens']

    dispatch_settlement('withdraw', account, config['deposit_token'], account, amount,
        {"investment": investment, "totals": totals_before},
        {"totals": result['totals']},
        True)

    Withdraw({"account": account, "amount": amount})

@export
def claim(account: str):
    config = sale_config.get()
    assert sale_status() == 'Success', 'Launchpad is not in success status.'
    assert not settlement_lock[account], 'Settlement for this account is still in progress.'

    investment = investments[account]
    assert investment, 'No deposits were found for the account.'

    mechanics = I.import_module(metadata['mechanics_contract'])
    amount = mechanics.claimable(
        investment=investment,
        total_sold_tokens=sale_state['total_sold_tokens'],
        config=config,
        timestamp=current_time()
    )
    assert amount > 0, 'No assets to claim.'

    snapshot = {"amount": investment['amount'], "weight": investment['weight'], "claimed": investment['claimed']}
    investments[account] = {"amount": investment['amount'], "weight": investment['weight'], "claimed": investment['claimed'] + amount}

    dispatch_settlement('claim', account, config['sale_token'], account, amount, {"investment": snapshot}, {}, True)

    Claim({"account": account, "amount": amount})
    return amount

@export
def claim_individual_vesting(account: str):
    config = sale_config.get()
    assert sale_status() == 'Success', 'Launchpad is not in success status.'
    assert not settlement_lock[account], 'Settlement for this account is still in progress.'

    entry = stakeholder_entry(config, account)
    assert entry is not None and entry.get('vesting') is not None, 'The account has no individual vesting schedule.'

    mechanics = I.import_module(metadata['mechanics_contract'])
    available = mechanics.available_for_individual_vesting_claim(
        allocation=entry['allocation'],
        vesting=entry['vesting'],
        vesting_start=start_of_vesting(config),
        timestamp=current_time()
    )
    claimed = individual_vesting_claimed[account]
    amount = available - claimed
    assert amount > 0, 'No assets to claim.'

    individual_vesting_claimed[account] = claimed + amount
    dispatch_settlement('individual_claim', account, config['sale_token'], account, amount, {"claimed": claimed}, {}, True)

    Claim({"account": account, "amount": amount})
    return amount

@export
def retry_refund(account: str):
    assert not settlement_lock[account], 'Settlement for this account is still in progress.'
    assert pending_refunds[account] > 0, 'No pending refund for the account.'
    return dispatch_refund(account, sale_config.get())

@export
def distribute_sale_tokens():
    config = sale_config.get()
    assert sale_status() == 'Success', 'Distribution is allowed only after a successful sale.'

    batch = []
    for recipient in distribution_recipients(config):
        progress = distribution_progress[recipient['account']]
        if recipient['allocation'] == 0 or progress['busy'] or progress['distributed'] >= recipient['allocation']:
            continue
        batch.append({"account": recipient['account'], "amount": recipient['allocation'] - progress['distributed']})
        if len(batch) == DISTRIBUTION_BATCH_LIMIT:
            break

    assert len(batch) > 0, 'Tokens have been already distributed.'

    for entry in batch:
        progress = distribution_progress[entry['account']]
        progress['busy'] = True
        distribution_progress[entry['account']] = progress

    if metadata['batch_distribution']:
        dispatch_distribution_batch(config['sale_token'], batch)
    else:
        for entry in batch:
            dispatch_settlement('distribution', entry['account'], config['sale_token'], entry['account'],
                entry['amount'], {}, {}, False)

    return len(batch)

# --- Administration ---

@export
def change_metadata(key: str, value: Any):
    assert ctx.caller == metadata['operator'], 'Only operator can set metadata!'
    if key == 'relay':
        assert I.enforce_interface(I.import_module(value), relay_interface), \
            'relay contract does not implement the transfer relay interface'
    metadata[key] = value

@export
def init_sale():
    assert ctx.caller == metadata['operator'], 'Only operator can initialize the sale.'
    assert not sale_flags['initialized'], 'Sale is already initialized.'
    config = sale_config.get()

    for token_name in [config['deposit_token'], config['sale_token']]:
        assert I.enforce_interface(I.import_module(token_name), token_interface), \
            f'{token_name} contract not XSC001-compliant'
    assert I.enforce_interface(I.import_module(metadata['relay']), relay_interface), \
        'relay contract does not implement the transfer relay interface'

    if config.get('discounts') is not None:
        discount = I.import_module(metadata['discount_contract'])
        discount.validate_phases(phases=config['discounts']['phases'], mechanics=config['mechanics'])

    balance_before = held_balance(config['sale_token'])
    I.import_module(config['sale_token']).transfer_from(
        amount=config['total_sale_amount'],
        to=ctx.this,
        main_account=ctx.caller
    )
    assert held_balance(config['sale_token']) - balance_before == config['total_sale_amount'], \
        'Received sale tokens do not match the total sale amount.'

    sale_flags['initialized'] = True
    SaleInitialized({"sale_token": config['sale_token'], "total_sale_amount": config['total_sale_amount']})

@export
def lock():
    assert ctx.caller == metadata['operator'], 'Only operator can lock the sale.'
    status = sale_status()
    assert status == 'NotStarted' or status == 'Ongoing' or status == 'PreTGE', \
        f'The sale cannot be locked in {status} status.'
    sale_flags['locked'] = True

@export
def unlock():
    assert ctx.caller == metadata['operator'], 'Only operator can unlock the sale.'
    assert sale_status() == 'Locked', 'The sale is not locked.'
    sale_flags['locked'] = False

@export
def update_tge(tge: int):
    assert ctx.caller == metadata['operator'], 'Only operator can update the TGE.'
    status = sale_status()
    assert status != 'Success' and status != 'Failed', f'TGE cannot be updated in {status} status.'

    config = sale_config.get()
    assert tge > config['end_date'], 'TGE must be after the sale end date.'
    assert tge > current_time(), 'TGE must be in the future.'
    config['tge'] = tge
    sale_config.set(config)

@export
def extend_whitelist(phase_id: int, accounts: list):
    assert ctx.caller == metadata['operator'], 'Only operator can change whitelists.'
    key = phase_key(phase_id)
    whitelist_enabled[key] = True
    for account in accounts:
        phase_whitelist[key, account] = True

@export
def remove_from_whitelist(phase_id: int, accounts: list):
    assert ctx.caller == metadata['operator'], 'Only operator can change whitelists.'
    key = phase_key(phase_id)
    assert whitelist_enabled[key], f'Phase {phase_id} has no whitelist.'
    for account in accounts:
        phase_whitelist[key, account] = False

def phase_key(phase_id):
    config = sale_config.get()
    assert config.get('discounts') is not None, 'The sale has no discount phases.'
    for phase in config['discounts']['phases']:
        if phase['id'] == phase_id:
            return str(phase_id)
    assert False, f'Phase not found: {phase_id}'

@export
def admin_withdraw(token_kind: str, to: str, amount: Any):
    assert ctx.caller == metadata['operator'], 'Only operator can withdraw.'
    config = sale_config.get()
    status = sale_status()

    if token_kind == 'deposit':
        assert status == 'Success', 'Deposit tokens can be withdrawn only after a successful sale.'
        token_name = config['deposit_token']
        reserved = sale_state['pending_refunds_total'] # Owed to participants
    else:
        assert token_kind == 'sale', f'Unknown token kind: {token_kind}'
        assert status == 'Failed' or status == 'Locked', \
            'Sale tokens can be withdrawn only after a failed or locked sale.'
        token_name = config['sale_token']
        reserved = 0

    assert sale_state['admin_withdrawals_in_flight'] == 0, 'Admin withdrawal is still in progress.'

    available = held_balance(token_name) - reserved
    if amount is None:
        amount = available
    assert amount > 0, 'Nothing to withdraw.'
    assert amount <= available, 'Withdraw amount exceeds the available balance.'

    designation = config['distribution_proportions'].get('deposits')
    if token_kind == 'deposit' and designation is not None:
        # Amounts that bounced in earlier rounds go back to their own destination unsplit
        designator_carry = min(settlement_refunds['designator_refund'], amount)
        solver_carry = min(settlement_refunds['solver_refund'], amount - designator_carry)
        settlement_refunds['designator_refund'] -= designator_carry
        settlement_refunds['solver_refund'] -= solver_carry

        fresh = amount - designator_carry - solver_carry
        designated = mul_div(fresh, designation['designated_percentage'], MULTIPLIER) + designator_carry
        if designated > 0:
            dispatch_settlement('designated', None, token_name, designation['designated_account'],
                designated, {}, {}, False)
        amount = amount - designated

    if amount > 0:
        dispatch_settlement('admin_withdraw', None, token_name, to, amount, {}, {}, False)

# --- Helper/View functions ---

@export
def get_status():
    return sale_status()

@export
def get_config():
    return sale_config.get()

@export
def get_totals():
    return {
        "total_deposited": sale_state['total_deposited'],
        "total_sold_tokens": sale_state['total_sold_tokens'],
        "participants_count": sale_state['participants_count'],
        "pending_refunds_total": sale_state['pending_refunds_total']
    }

@export
def get_investment(account: str):
    return investments[account]

@export
def get_user_allocation(account: str):
    investment = investments[account]
    if investment is None:
        return 0
    mechanics = I.import_module(metadata['mechanics_contract'])
    return mechanics.user_allocation(
        weight=investment['weight'],
        total_sold_tokens=sale_state['total_sold_tokens'],
        config=sale_config.get()
    )

@export
def get_available_for_claim(account: str):
    investment = investments[account]
    if investment is None:
        return 0
    mechanics = I.import_module(metadata['mechanics_contract'])
    return mechanics.available_for_claim(
        investment=investment,
        total_sold_tokens=sale_state['total_sold_tokens'],
        config=sale_config.get(),
        timestamp=current_time()
    )

@export
def get_claimable(account: str):
    investment = investments[account]
    if investment is None:
        return 0
    mechanics = I.import_module(metadata['mechanics_contract'])
    return mechanics.claimable(
        investment=investment,
        total_sold_tokens=sale_state['total_sold_tokens'],
        config=sale_config.get(),
        timestamp=current_time()
    )

@export
def get_individual_vesting_claimable(account: str):
    config = sale_config.get()
    entry = stakeholder_entry(config, account)
    if entry is None or entry.get('vesting') is None:
        return 0
    mechanics = I.import_module(metadata['mechanics_contract'])
    available = mechanics.available_for_individual_vesting_claim(
        allocation=entry['allocation'],
        vesting=entry['vesting'],
        vesting_start=start_of_vesting(config),
        timestamp=current_time()
    )
    return max(available - individual_vesting_claimed[account], 0)

@export
def get_phase_state(phase_id: int):
    key = phase_key(phase_id)
    return {"sold": phase_sold[key], "whitelist_enabled": whitelist_enabled[key]}

@export
def is_whitelisted(phase_id: int, account: str):
    key = phase_key(phase_id)
    return not whitelist_enabled[key] or phase_whitelist[key, account]

@export
def is_settlement_in_progress(account: str):
    return settlement_lock[account]

@export
def get_settlement(settlement_id: str):
    return settlements[settlement_id]

@export
def get_pending_refund(account: str):
    return pending_refunds[account]

@export
def get_distribution_progress(account: str):
    return distribution_progress[account]

@export
def get_settlement_refunds():
    return {
        "solver_refund": settlement_refunds['solver_refund'],
        "designator_refund": settlement_refunds['designator_refund']
    }
