balances = Hash(default_value=0)
metadata = Hash()

@construct
def seed(token_name: str, token_symbol: str, total_supply: int):
    balances[ctx.caller] = total_supply
    metadata['token_name'] = token_name
    metadata['token_symbol'] = token_symbol
    metadata['total_supply'] = total_supply
    metadata['operator'] = ctx.caller
    metadata['fee_rate'] = 0 # Basis points burned on every transfer, receiver gets the rest

@export
def change_metadata(key: str, value: Any):
    assert ctx.caller == metadata['operator'], 'Only operator can set metadata!'
    metadata[key] = value

def after_fee(amount):
    return amount - amount * metadata['fee_rate'] // 10000

@export
def transfer(amount: int, to: str):
    assert amount > 0, 'Cannot transfer zero or negative!'
    sender = ctx.caller

    sender_bal = balances[sender]
    assert sender_bal >= amount, f'Transfer amount exceeds balance for sender {sender}!'

    balances[sender] = sender_bal - amount
    balances[to] += after_fee(amount)

@export
def approve(amount: int, to: str):
    assert amount >= 0, 'Cannot approve negative!' # Allow 0 for clearing approval
    balances[ctx.caller, to] = amount

@export
def transfer_from(amount: int, to: str, main_account: str):
    assert amount > 0, 'Cannot transfer zero or negative!'
    spender = ctx.caller

    allowance = balances[main_account, spender]
    assert allowance >= amount, \
        f'Transfer amount {amount} exceeds allowance {allowance} for {main_account} by spender {spender}!'

    main_account_bal = balances[main_account]
    assert main_account_bal >= amount, f'Transfer amount {amount} exceeds balance {main_account_bal} for main_account {main_account}!'

    balances[main_account, spender] = allowance - amount
    balances[main_account] = main_account_bal - amount
    balances[to] += after_fee(amount)

@export
def balance_of(address: str):
    return balances[address]

# Helper for testing to check allowance
@export
def allowance(owner: str, spender: str):
    return balances[owner, spender]
