import unittest
from datetime import datetime, timezone
from contracting.stdlib.bridge.time import Datetime
from contracting.client import ContractingClient
from pathlib import Path

HOUR = 3600
DAY = 24 * HOUR
START = 1704067200 # 2024-01-01 00:00:00 UTC
END = START + 10 * DAY


def at(timestamp):
    # Environment override for a unix timestamp
    value = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return {"now": Datetime(year=value.year, month=value.month, day=value.day,
                            hour=value.hour, minute=value.minute, second=value.second)}


class TestLaunchpadSale(unittest.TestCase):
    def setUp(self):
        self.client = ContractingClient()
        self.client.flush() # Ensures a clean state

        # Define user accounts
        self.operator = 'sys' # Submits contracts, runs the sale and resolves relay transfers
        self.alice = 'alice'
        self.bob = 'bob'
        self.charlie = 'charlie'

        self.launchpad_name = "con_launchpad"
        self.relay_name = "con_transfer_relay"
        self.deposit_token_name = "con_deposit_token"
        self.sale_token_name = "con_sale_token"

        current_dir = Path(__file__).resolve().parent

        with open(current_dir / "con_launch_token.py") as f:
            token_code = f.read()
        self.client.submit(token_code, name=self.deposit_token_name, signer=self.operator,
                           constructor_args={'token_name': 'Deposit Token', 'token_symbol': 'DPT',
                                             'total_supply': 100_000_000})
        self.client.submit(token_code, name=self.sale_token_name, signer=self.operator,
                           constructor_args={'token_name': 'Sale Token', 'token_symbol': 'SLT',
                                             'total_supply': 100_000_000})
        with open(current_dir / "con_launchpad_discount.py") as f:
            self.client.submit(f.read(), name="con_launchpad_discount", signer=self.operator)
        with open(current_dir / "con_launchpad_mechanics.py") as f:
            self.client.submit(f.read(), name="con_launchpad_mechanics", signer=self.operator)
        with open(current_dir / "con_transfer_relay.py") as f:
            self.client.submit(f.read(), name=self.relay_name, signer=self.operator)

        self.con_deposit_token = self.client.get_contract(self.deposit_token_name)
        self.con_sale_token = self.client.get_contract(self.sale_token_name)
        self.con_transfer_relay = self.client.get_contract(self.relay_name)

        # 1 deposit token buys 2 sale tokens, two discount phases share their unsold capacity
        self.config = {
            'deposit_token': self.deposit_token_name,
            'sale_token': self.sale_token_name,
            'start_date': START,
            'end_date': END,
            'soft_cap': 10_000,
            'min_deposit': 100,
            'mechanics': {'kind': 'FixedPrice', 'deposit_unit': 1, 'sale_unit': 2},
            'sale_amount': 100_000,
            'total_sale_amount': 115_000,
            'vesting_schedule': {
                'cliff_period': DAY,
                'vesting_period': 4 * DAY,
                'instant_claim_percentage': 2500,
                'vesting_scheme': 'AfterCliff',
            },
            'distribution_proportions': {
                'solver_account_id': 'solver',
                'solver_allocation': 10_000,
                'stakeholder_proportions': [{'account': 'treasury', 'allocation': 5000, 'vesting': None}],
                'deposits': None,
            },
            'discounts': {
                'phases': [
                    self.phase(0, START, START + DAY, 2000, 24_000),
                    self.phase(1, START + DAY, START + 2 * DAY, 1000, 11_000),
                ],
                'public_sale_start_time': None,
            },
            'tge': None,
        }

        with open(current_dir / "con_launchpad.py") as f:
            self.client.submit(f.read(), name=self.launchpad_name, signer=self.operator,
                               constructor_args={'config': self.config, 'relay': self.relay_name})
        self.con_launchpad = self.client.get_contract(self.launchpad_name)

        # Fund participants
        for account in [self.alice, self.bob, self.charlie]:
            self.con_deposit_token.transfer(amount=100_000, to=account, signer=self.operator)
            self.con_deposit_token.approve(amount=100_000, to=self.launchpad_name, signer=account)

        self.con_sale_token.approve(amount=115_000, to=self.launchpad_name, signer=self.operator)
        self.con_launchpad.init_sale(signer=self.operator, environment=at(START - DAY))
        print("Setup complete.")
        print(f"Launchpad status before start: {self.con_launchpad.get_status(environment=at(START - 1))}")

    def tearDown(self):
        self.client.flush()

    def phase(self, phase_id, start_time, end_time, percentage, limit):
        return {
            'id': phase_id,
            'start_time': start_time,
            'end_time': end_time,
            'percentage': percentage,
            'whitelist': None,
            'phase_sale_limit': limit,
            'min_limit_per_account': None,
            'max_limit_per_account': None,
            'remaining_go_to_phase_id': None,
        }

    def resolve_latest(self):
        transfer_id = str(self.con_transfer_relay.transfer_count.get())
        entry = self.con_transfer_relay.get_transfer(transfer_id=transfer_id)
        if entry['recipients'] is None:
            self.con_transfer_relay.resolve(transfer_id=transfer_id, accepted_amount=entry['amount'],
                                            signer=self.operator, environment=at(END + 5 * DAY))
        else:
            self.con_transfer_relay.resolve_batch(transfer_id=transfer_id,
                                                  accepted=[r['amount'] for r in entry['recipients']],
                                                  signer=self.operator, environment=at(END + 5 * DAY))
        return entry

    def claim(self, account, timestamp):
        amount = self.con_launchpad.claim(account=account, environment=at(timestamp))
        self.resolve_latest()
        return amount

    def test_full_sale_lifecycle(self):
        print("\n--- Test: Full Sale Lifecycle ---")

        # Phase 0: 20% discount, 24_000 sale tokens available
        self.con_launchpad.deposit(amount=10_000, signer=self.alice, environment=at(START + HOUR))
        self.assertEqual(self.con_launchpad.get_investment(account=self.alice),
                         {'amount': 10_000, 'weight': 24_000, 'claimed': 0})
        print(f"Alice bought {self.con_launchpad.get_investment(account=self.alice)['weight']} sale tokens")

        # Phase 0 is sold out, bob pays the public price
        self.con_launchpad.deposit(amount=10_000, signer=self.bob, environment=at(START + 2 * HOUR))
        self.assertEqual(self.con_launchpad.get_investment(account=self.bob)['weight'], 20_000)

        # Phase 1 shares its pool with phase 0: 11_000 left at 10%, the rest at the public price
        self.con_launchpad.deposit(amount=10_000, signer=self.charlie, environment=at(START + DAY + HOUR))
        self.assertEqual(self.con_launchpad.get_investment(account=self.charlie)['weight'], 21_000)
        self.assertEqual(self.con_launchpad.get_phase_state(phase_id=1)['sold'], 11_000)

        totals = self.con_launchpad.get_totals()
        self.assertEqual(totals['total_deposited'], 30_000)
        self.assertEqual(totals['total_sold_tokens'], 65_000)
        self.assertEqual(totals['participants_count'], 3)
        print(f"Totals at the end of the sale: {totals}")

        self.assertEqual(self.con_launchpad.get_status(environment=at(END)), 'Success')

        print("\n--- Claims follow the vesting schedule ---")
        # 25% right away, the rest vests linearly over three days after a one day cliff
        self.assertEqual(self.con_launchpad.get_available_for_claim(account=self.alice, environment=at(END + HOUR)), 6000)
        self.assertEqual(self.claim(self.alice, END + HOUR), 6000)
        with self.assertRaisesRegex(AssertionError, 'No assets to claim.'):
            self.con_launchpad.claim(account=self.alice, environment=at(END + 2 * HOUR))

        self.assertEqual(self.claim(self.alice, END + DAY + 3 * DAY // 2), 9000)
        self.assertEqual(self.claim(self.alice, END + 4 * DAY), 9000)
        self.assertEqual(self.claim(self.bob, END + 4 * DAY), 20_000)
        self.assertEqual(self.claim(self.charlie, END + 5 * DAY), 21_000)

        self.assertEqual(self.con_sale_token.balance_of(address=self.alice), 24_000)
        self.assertEqual(self.con_sale_token.balance_of(address=self.bob), 20_000)
        self.assertEqual(self.con_sale_token.balance_of(address=self.charlie), 21_000)
        print(f"Alice claimed in total: {self.con_sale_token.balance_of(address=self.alice)}")

        print("\n--- Solver and stakeholders receive their allocations ---")
        self.assertEqual(self.con_launchpad.distribute_sale_tokens(environment=at(END + DAY)), 2)
        self.resolve_latest()
        self.assertEqual(self.con_sale_token.balance_of(address='solver'), 10_000)
        self.assertEqual(self.con_sale_token.balance_of(address='treasury'), 5000)

        print("\n--- Operator collects the deposits ---")
        operator_before = self.con_deposit_token.balance_of(address=self.operator)
        self.con_launchpad.admin_withdraw(token_kind='deposit', to=self.operator, amount=None,
                                          signer=self.operator, environment=at(END + DAY))
        self.resolve_latest()
        self.assertEqual(self.con_deposit_token.balance_of(address=self.operator), operator_before + 30_000)
        self.assertEqual(self.con_deposit_token.balance_of(address=self.launchpad_name), 0)

        # Unsold sale tokens stay with the launchpad
        self.assertEqual(self.con_sale_token.balance_of(address=self.launchpad_name), 35_000)

    def test_failed_sale_returns_everything(self):
        print("\n--- Test: Failed Sale ---")
        self.con_launchpad.deposit(amount=2000, signer=self.alice, environment=at(START + HOUR))
        self.assertEqual(self.con_launchpad.get_status(environment=at(END)), 'Failed')

        self.con_launchpad.withdraw(amount=2000, signer=self.alice, environment=at(END + HOUR))
        self.resolve_latest()
        self.assertEqual(self.con_deposit_token.balance_of(address=self.alice), 100_000)

        self.con_launchpad.admin_withdraw(token_kind='sale', to=self.operator, amount=None,
                                          signer=self.operator, environment=at(END + HOUR))
        entry = self.resolve_latest()
        self.assertEqual(entry['amount'], 115_000)
        self.assertEqual(self.con_sale_token.balance_of(address=self.launchpad_name), 0)
        print(f"Sale tokens returned to the operator: {entry['amount']}")

if __name__ == '__main__':
    unittest.main()
