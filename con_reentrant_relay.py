# con_reentrant_relay.py
# A transfer relay that calls back into the launchpad while a settlement is being
# dispatched, to check that the per-account lock holds.
I = importlib

re_entry_owner = Variable() # To control sensitive operations
re_entry_target_launchpad = Variable()
re_entry_account = Variable()
re_entry_attempt_count = Variable()
re_entry_max_attempts = Variable() # To prevent infinite loops in complex scenarios

@construct
def seed():
    re_entry_attempt_count.set(0)
    re_entry_max_attempts.set(1) # Only re-enter once for this test
    re_entry_owner.set(ctx.caller)

@export
def configure_re_entrancy(launchpad_name: str, account: str):
    assert ctx.caller == re_entry_owner.get(), "Only owner can configure re-entrancy."
    re_entry_target_launchpad.set(launchpad_name)
    re_entry_account.set(account)
    re_entry_attempt_count.set(0)

def should_re_enter():
    if not re_entry_target_launchpad.get():
        return False
    return re_entry_attempt_count.get() < re_entry_max_attempts.get()

@export
def dispatch(token: str, to: str, amount: int, note: str, settlement_id: str):
    if should_re_enter():
        re_entry_attempt_count.set(re_entry_attempt_count.get() + 1)
        launchpad = I.import_module(re_entry_target_launchpad.get())
        # Same account, second settlement while the first one is still open
        launchpad.claim(account=re_entry_account.get())
    return {"transfer_id": settlement_id, "amount": amount}

@export
def dispatch_batch(token: str, transfers: list, note: str, settlement_id: str):
    if should_re_enter():
        re_entry_attempt_count.set(re_entry_attempt_count.get() + 1)
        launchpad = I.import_module(re_entry_target_launchpad.get())
        launchpad.distribute_sale_tokens()
    total = 0
    for entry in transfers:
        total += entry['amount']
    return {"transfer_id": settlement_id, "amount": total, "recipients": transfers}
