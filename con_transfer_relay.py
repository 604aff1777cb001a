# con_transfer_relay.py
# Holds escrowed tokens for outbound transfers until the operator reports how much
# the destination accepted, then settles and calls the origin contract back.
I = importlib

queued_transfers = Hash() # transfer_id -> transfer details and status
transfer_count = Variable(default_value=0)
metadata = Hash()

TransferQueued = LogEvent(
    event="transfer_queued",
    params={
        "transfer_id": {'type':str, 'idx':True},
        "origin": {'type':str, 'idx':True},
        "token": {'type':str, 'idx':False},
        "amount": {'type':int}
    })

TransferResolved = LogEvent(
    event="transfer_resolved",
    params={
        "transfer_id": {'type':str, 'idx':True},
        "status": {'type':str, 'idx':False},
        "accepted": {'type':int}
    })

@construct
def seed():
    metadata['operator'] = ctx.caller

@export
def change_metadata(key: str, value: Any):
    assert ctx.caller == metadata['operator'], 'Only operator can set metadata!'
    metadata[key] = value

def queue_transfer(token, to, amount, note, settlement_id, recipients):
    count = transfer_count.get() + 1
    transfer_count.set(count)
    transfer_id = str(count)

    queued_transfers[transfer_id] = {
        "origin": ctx.caller,
        "token": token,
        "to": to,
        "amount": amount,
        "note": note,
        "settlement_id": settlement_id,
        "recipients": recipients,
        "status": "QUEUED",
        "accepted": 0
    }

    TransferQueued({"transfer_id": transfer_id, "origin": ctx.caller, "token": token, "amount": amount})
    return transfer_id

def open_transfer(transfer_id):
    assert ctx.caller == metadata['operator'], 'Only operator can resolve transfers.'
    entry = queued_transfers[transfer_id]
    assert entry, 'Transfer does not exist.'
    assert entry['status'] == 'QUEUED', 'Transfer already resolved.'
    return entry

def close_transfer(transfer_id, entry, status, accepted):
    entry['status'] = status
    entry['accepted'] = accepted
    queued_transfers[transfer_id] = entry
    TransferResolved({"transfer_id": transfer_id, "status": status, "accepted": accepted})

def send(token_contract, amount, to):
    if amount > 0:
        token_contract.transfer(amount=amount, to=to)

def held(token_contract):
    balance = token_contract.balance_of(address=ctx.this)
    if balance is None:
        balance = 0
    return balance

def escrow(token, amount):
    # Pull from the origin's approval, fee tokens deliver less than requested
    token_contract = I.import_module(token)
    balance_before = held(token_contract)
    token_contract.transfer_from(amount=amount, to=ctx.this, main_account=ctx.caller)
    received = held(token_contract) - balance_before
    assert received > 0, 'No tokens were escrowed.'
    return received

@export
def dispatch(token: str, to: str, amount: int, note: str, settlement_id: str):
    assert amount > 0, 'Cannot transfer zero or negative!'
    received = escrow(token, amount)
    transfer_id = queue_transfer(token, to, received, note, settlement_id, None)
    return {"transfer_id": transfer_id, "amount": received}

@export
def dispatch_batch(token: str, transfers: list, note: str, settlement_id: str):
    assert len(transfers) > 0, 'Batch has no transfers.'
    total = 0
    for entry in transfers:
        assert entry['amount'] > 0, 'Cannot transfer zero or negative!'
        total += entry['amount']

    received = escrow(token, total)

    # A transfer fee is shared pro rata, the last recipient takes the rounding remainder
    recipients = []
    remaining = received
    for index in range(len(transfers)):
        share = remaining
        if index < len(transfers) - 1:
            share = transfers[index]['amount'] * received // total
        remaining -= share
        recipients.append({"account": transfers[index]['account'], "amount": share})

    transfer_id = queue_transfer(token, None, received, note, settlement_id, recipients)
    return {"transfer_id": transfer_id, "amount": received, "recipients": recipients}

@export
def resolve(transfer_id: str, accepted_amount: int):
    entry = open_transfer(transfer_id)
    assert entry['recipients'] is None, 'Use resolve_batch for batch transfers.'
    assert accepted_amount >= 0 and accepted_amount <= entry['amount'], 'Accepted amount is out of range.'

    close_transfer(transfer_id, entry, 'RESOLVED', accepted_amount)

    token_contract = I.import_module(entry['token'])
    send(token_contract, accepted_amount, entry['to'])
    send(token_contract, entry['amount'] - accepted_amount, entry['origin'])

    I.import_module(entry['origin']).on_transfer_resolved(
        settlement_id=entry['settlement_id'],
        accepted_amount=accepted_amount,
        failed=False
    )

@export
def resolve_batch(transfer_id: str, accepted: list):
    entry = open_transfer(transfer_id)
    recipients = entry['recipients']
    assert recipients is not None, 'Use resolve for single transfers.'
    assert len(accepted) == len(recipients), 'Accepted amounts do not match the batch.'

    token_contract = I.import_module(entry['token'])
    total_accepted = 0
    for index in range(len(recipients)):
        amount = accepted[index]
        assert amount >= 0 and amount <= recipients[index]['amount'], 'Accepted amount is out of range.'
        total_accepted += amount

    close_transfer(transfer_id, entry, 'RESOLVED', total_accepted)

    for index in range(len(recipients)):
        send(token_contract, accepted[index], recipients[index]['account'])
    send(token_contract, entry['amount'] - total_accepted, entry['origin'])

    I.import_module(entry['origin']).on_batch_resolved(
        settlement_id=entry['settlement_id'],
        accepted=accepted,
        failed=False
    )

@export
def fail(transfer_id: str):
    entry = open_transfer(transfer_id)
    close_transfer(transfer_id, entry, 'FAILED', 0)

    # Nothing reached the destination, everything goes back
    send(I.import_module(entry['token']), entry['amount'], entry['origin'])

    origin = I.import_module(entry['origin'])
    if entry['recipients'] is None:
        origin.on_transfer_resolved(settlement_id=entry['settlement_id'], accepted_amount=0, failed=True)
    else:
        origin.on_batch_resolved(settlement_id=entry['settlement_id'], accepted=[], failed=True)

@export
def get_transfer(transfer_id: str):
    return queued_transfers[transfer_id]
