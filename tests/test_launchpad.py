import unittest

from launchpad_fixtures import (
    LaunchpadTestCase, make_config, make_phase, env,
    LAUNCHPAD, START, END, DAY, HOUR, PARTICIPANT_FUNDS
)


class LaunchpadLifecycleTests(LaunchpadTestCase):

    # --- Initialization ---

    def test_status_before_and_after_init(self):
        self.deploy_launchpad(make_config())
        self.assertEqual(self.launchpad.get_status(environment=env(START + HOUR)), 'NotInitialized')

        with self.assertRaisesRegex(AssertionError, 'Launchpad is not ongoing.'):
            self.deposit(self.alice, 1000)

        self.init_launchpad()
        self.assertEqual(self.launchpad.get_status(environment=env(START - 1)), 'NotStarted')
        self.assertEqual(self.launchpad.get_status(environment=env(START)), 'Ongoing')
        self.assertEqual(self.launchpad.get_status(environment=env(END - 1)), 'Ongoing')
        self.assertEqual(self.launchpad.get_status(environment=env(END)), 'Failed')

    def test_init_pulls_total_sale_amount(self):
        self.deploy_launchpad(make_config())
        self.sale_token.approve(amount=250_000, to=LAUNCHPAD, signer=self.operator)

        with self.assertRaisesRegex(AssertionError, 'Only operator can initialize the sale.'):
            self.launchpad.init_sale(signer=self.alice, environment=env(START - DAY))

        self.launchpad.init_sale(signer=self.operator, environment=env(START - DAY))
        self.assertEqual(self.sale_token.balance_of(address=LAUNCHPAD), 250_000)

        with self.assertRaisesRegex(AssertionError, 'Sale is already initialized.'):
            self.launchpad.init_sale(signer=self.operator, environment=env(START - DAY))

    def test_init_rejects_short_delivery_from_fee_token(self):
        self.deploy_launchpad(make_config())
        self.sale_token.change_metadata(key='fee_rate', value=100, signer=self.operator)
        self.sale_token.approve(amount=250_000, to=LAUNCHPAD, signer=self.operator)

        with self.assertRaisesRegex(AssertionError, 'Received sale tokens do not match the total sale amount.'):
            self.launchpad.init_sale(signer=self.operator, environment=env(START - DAY))

    def test_init_validates_discount_phases(self):
        discounts = {'phases': [make_phase(0, START, END, 1000, remaining_go_to_phase_id=9)],
                     'public_sale_start_time': None}
        self.deploy_launchpad(make_config(discounts=discounts))
        self.sale_token.approve(amount=250_000, to=LAUNCHPAD, signer=self.operator)

        with self.assertRaisesRegex(AssertionError, 'Phase not found: 9'):
            self.launchpad.init_sale(signer=self.operator, environment=env(START - DAY))

    def test_config_totals_must_add_up(self):
        with self.assertRaisesRegex(AssertionError, 'Total sale amount must equal'):
            self.deploy_launchpad(make_config(total_sale_amount=1))

    # --- Deposits ---

    def test_deposit_records_investment(self):
        self.start_launchpad(make_config())

        refund = self.deposit(self.alice, 10_000)
        self.assertEqual(refund, 0)
        self.deposit(self.alice, 5000, START + 2 * HOUR)
        self.deposit(self.bob, 20_000)

        self.assertEqual(self.launchpad.get_investment(account=self.alice),
                         {'amount': 15_000, 'weight': 15_000, 'claimed': 0})
        totals = self.launchpad.get_totals()
        self.assertEqual(totals['total_deposited'], 35_000)
        self.assertEqual(totals['total_sold_tokens'], 35_000)
        self.assertEqual(totals['participants_count'], 2)
        self.assertEqual(self.deposit_token.balance_of(address=LAUNCHPAD), 35_000)
        self.assertEqual(self.deposit_token.balance_of(address=self.alice), PARTICIPANT_FUNDS - 15_000)

    def test_deposit_limits(self):
        self.start_launchpad(make_config(min_deposit=500))

        with self.assertRaisesRegex(AssertionError, 'Deposit amount is below the minimum of 500.'):
            self.deposit(self.alice, 499)
        with self.assertRaisesRegex(AssertionError, 'Deposit amount must be positive.'):
            self.deposit(self.alice, 0)
        with self.assertRaisesRegex(AssertionError, 'Launchpad is not ongoing.'):
            self.deposit(self.alice, 1000, END)

        self.deposit(self.alice, 500)
        self.assertEqual(self.launchpad.get_investment(account=self.alice)['amount'], 500)

    def test_deposit_with_fee_token_counts_received_amount(self):
        self.start_launchpad(make_config())
        self.deposit_token.change_metadata(key='fee_rate', value=100, signer=self.operator)

        self.deposit(self.alice, 10_000)
        self.assertEqual(self.launchpad.get_investment(account=self.alice)['amount'], 9900)
        self.assertEqual(self.launchpad.get_totals()['total_deposited'], 9900)

    def test_minimum_deposit_applies_to_received_amount(self):
        self.start_launchpad(make_config(min_deposit=500))
        self.deposit_token.change_metadata(key='fee_rate', value=100, signer=self.operator)

        # 500 sent, 495 arrive
        with self.assertRaisesRegex(AssertionError, 'Deposit amount is below the minimum of 500.'):
            self.deposit(self.alice, 500)
        self.assertIsNone(self.launchpad.get_investment(account=self.alice))
        self.assertEqual(self.launchpad.get_totals()['total_deposited'], 0)
        self.assertEqual(self.deposit_token.balance_of(address=self.alice), PARTICIPANT_FUNDS)

        self.deposit(self.alice, 506)
        self.assertEqual(self.launchpad.get_investment(account=self.alice)['amount'], 501)

    def test_selling_out_ends_the_sale_early(self):
        self.start_launchpad(make_config())
        self.deposit(self.alice, 200_000)
        self.assertEqual(self.launchpad.get_status(environment=env(START + 2 * HOUR)), 'Success')

        with self.assertRaisesRegex(AssertionError, 'Launchpad is not ongoing.'):
            self.deposit(self.bob, 1000, START + 2 * HOUR)

    def test_selling_out_below_soft_cap_keeps_the_sale_open(self):
        # 80_000 deposited at a 25% bonus buys the whole 100_000 but misses the soft cap
        discounts = {'phases': [make_phase(0, START, END, 2500)], 'public_sale_start_time': None}
        self.start_launchpad(make_config(sale_amount=100_000, soft_cap=100_000, discounts=discounts))

        self.deposit(self.alice, 80_000)
        self.assertEqual(self.launchpad.get_investment(account=self.alice),
                         {'amount': 80_000, 'weight': 100_000, 'claimed': 0})
        self.assertEqual(self.launchpad.get_status(environment=env(START + 2 * HOUR)), 'Ongoing')

        with self.assertRaisesRegex(AssertionError, 'Launchpad is not in success status.'):
            self.launchpad.claim(account=self.alice, environment=env(START + 2 * HOUR))

        self.assertEqual(self.launchpad.get_status(environment=env(END + 1)), 'Failed')
        with self.assertRaisesRegex(AssertionError, 'Distribution is allowed only after a successful sale.'):
            self.launchpad.distribute_sale_tokens(environment=env(END + 1))

        self.launchpad.withdraw(amount=80_000, signer=self.alice, environment=env(END + 1))
        self.resolve(self.latest_transfer_id())
        self.assertEqual(self.deposit_token.balance_of(address=self.alice), PARTICIPANT_FUNDS)
        self.assertEqual(self.sale_token.balance_of(address=self.alice), 0)

    def test_deposit_overflowing_the_price_leaves_no_trace(self):
        self.start_launchpad(make_config(mechanics={'kind': 'FixedPrice', 'deposit_unit': 1, 'sale_unit': 2 ** 250}))

        with self.assertRaisesRegex(AssertionError, 'Multiplication overflow'):
            self.deposit(self.alice, 100)

        self.assertIsNone(self.launchpad.get_investment(account=self.alice))
        self.assertEqual(self.launchpad.get_totals(),
                         {'total_deposited': 0, 'total_sold_tokens': 0, 'participants_count': 0,
                          'pending_refunds_total': 0})
        self.assertEqual(self.deposit_token.balance_of(address=self.alice), PARTICIPANT_FUNDS)
        self.assertEqual(self.deposit_token.balance_of(address=LAUNCHPAD), 0)

    def test_discount_phase_deposit(self):
        discounts = {
            'phases': [make_phase(0, START, START + DAY, 2000, phase_sale_limit=24_000)],
            'public_sale_start_time': None,
        }
        self.start_launchpad(make_config(discounts=discounts))

        self.deposit(self.alice, 10_000)
        self.assertEqual(self.launchpad.get_investment(account=self.alice)['weight'], 12_000)
        self.assertEqual(self.launchpad.get_phase_state(phase_id=0), {'sold': 12_000, 'whitelist_enabled': False})

        # Pool has 12_000 left, the rest of bob's deposit is bought at the public price
        self.deposit(self.bob, 20_000)
        self.assertEqual(self.launchpad.get_investment(account=self.bob)['weight'], 22_000)
        self.assertEqual(self.launchpad.get_phase_state(phase_id=0)['sold'], 24_000)

        self.deposit(self.charlie, 1000)
        self.assertEqual(self.launchpad.get_investment(account=self.charlie)['weight'], 1000)

    # --- Whitelists ---

    def test_whitelisted_phase(self):
        discounts = {
            'phases': [make_phase(0, START, START + DAY, 2000, whitelist=[self.alice])],
            'public_sale_start_time': None,
        }
        self.start_launchpad(make_config(discounts=discounts))

        self.assertTrue(self.launchpad.is_whitelisted(phase_id=0, account=self.alice))
        self.assertFalse(self.launchpad.is_whitelisted(phase_id=0, account=self.bob))

        self.deposit(self.alice, 1000)
        self.deposit(self.bob, 1000)
        self.assertEqual(self.launchpad.get_investment(account=self.alice)['weight'], 1200)
        self.assertEqual(self.launchpad.get_investment(account=self.bob)['weight'], 1000)

        with self.assertRaisesRegex(AssertionError, 'Only operator can change whitelists.'):
            self.launchpad.extend_whitelist(phase_id=0, accounts=[self.bob], signer=self.bob)

        self.launchpad.extend_whitelist(phase_id=0, accounts=[self.bob, self.charlie], signer=self.operator)
        self.assertTrue(self.launchpad.is_whitelisted(phase_id=0, account=self.bob))
        self.deposit(self.bob, 1000, START + 2 * HOUR)
        self.assertEqual(self.launchpad.get_investment(account=self.bob)['weight'], 2200)

        self.launchpad.remove_from_whitelist(phase_id=0, accounts=[self.charlie], signer=self.operator)
        self.assertFalse(self.launchpad.is_whitelisted(phase_id=0, account=self.charlie))

        with self.assertRaisesRegex(AssertionError, 'Phase not found: 4'):
            self.launchpad.extend_whitelist(phase_id=4, accounts=[self.bob], signer=self.operator)

    # --- Lock, unlock and TGE ---

    def test_lock_and_unlock(self):
        self.start_launchpad(make_config())
        self.deposit(self.alice, 10_000)

        with self.assertRaisesRegex(AssertionError, 'Only operator can lock the sale.'):
            self.launchpad.lock(signer=self.alice, environment=env(START + HOUR))
        with self.assertRaisesRegex(AssertionError, 'The sale is not locked.'):
            self.launchpad.unlock(signer=self.operator, environment=env(START + HOUR))

        self.launchpad.lock(signer=self.operator, environment=env(START + HOUR))
        self.assertEqual(self.launchpad.get_status(environment=env(START + 2 * HOUR)), 'Locked')
        self.assertEqual(self.launchpad.get_status(environment=env(END + DAY)), 'Locked')

        with self.assertRaisesRegex(AssertionError, 'Launchpad is not ongoing.'):
            self.deposit(self.bob, 1000, START + 2 * HOUR)

        self.launchpad.unlock(signer=self.operator, environment=env(START + 2 * HOUR))
        self.assertEqual(self.launchpad.get_status(environment=env(START + 2 * HOUR)), 'Ongoing')
        self.deposit(self.bob, 1000, START + 2 * HOUR)

        with self.assertRaisesRegex(AssertionError, 'The sale cannot be locked in Failed status.'):
            self.launchpad.lock(signer=self.operator, environment=env(END + DAY))

    def test_locked_fixed_price_sale_allows_full_withdrawal(self):
        self.start_launchpad(make_config())
        self.deposit(self.alice, 10_000)

        with self.assertRaisesRegex(AssertionError, 'Withdraw is not allowed in Ongoing status.'):
            self.launchpad.withdraw(amount=10_000, signer=self.alice, environment=env(START + HOUR))

        self.launchpad.lock(signer=self.operator, environment=env(START + HOUR))
        self.launchpad.withdraw(amount=10_000, signer=self.alice, environment=env(START + 2 * HOUR))
        self.resolve(self.latest_transfer_id())

        self.assertEqual(self.deposit_token.balance_of(address=self.alice), PARTICIPANT_FUNDS)
        self.assertEqual(self.launchpad.get_totals()['total_deposited'], 0)

        # Unsold sale tokens go back to the operator from a locked sale
        self.launchpad.admin_withdraw(token_kind='sale', to=self.operator, amount=None,
                                      signer=self.operator, environment=env(START + 2 * HOUR))
        self.resolve(self.latest_transfer_id())
        self.assertEqual(self.sale_token.balance_of(address=LAUNCHPAD), 0)

    def test_update_tge(self):
        self.start_launchpad(make_config())
        self.deposit(self.alice, 150_000)

        with self.assertRaisesRegex(AssertionError, 'TGE must be after the sale end date.'):
            self.launchpad.update_tge(tge=END, signer=self.operator, environment=env(START + HOUR))
        with self.assertRaisesRegex(AssertionError, 'Only operator can update the TGE.'):
            self.launchpad.update_tge(tge=END + DAY, signer=self.alice, environment=env(START + HOUR))

        self.launchpad.update_tge(tge=END + DAY, signer=self.operator, environment=env(START + HOUR))
        self.assertEqual(self.launchpad.get_config()['tge'], END + DAY)
        self.assertEqual(self.launchpad.get_status(environment=env(END + 1)), 'PreTGE')

        with self.assertRaisesRegex(AssertionError, 'Launchpad is not in success status.'):
            self.launchpad.claim(account=self.alice, environment=env(END + 1))

        self.assertEqual(self.launchpad.get_status(environment=env(END + DAY)), 'Success')
        with self.assertRaisesRegex(AssertionError, 'TGE cannot be updated in Success status.'):
            self.launchpad.update_tge(tge=END + 2 * DAY, signer=self.operator, environment=env(END + DAY))

    # --- Failed sale ---

    def test_failed_sale_refunds_through_withdraw(self):
        self.start_launchpad(make_config())
        self.deposit(self.alice, 10_000)
        self.deposit(self.bob, 5000)

        self.assertEqual(self.launchpad.get_status(environment=env(END + 1)), 'Failed')
        with self.assertRaisesRegex(AssertionError, 'Launchpad is not in success status.'):
            self.launchpad.claim(account=self.alice, environment=env(END + 1))
        with self.assertRaisesRegex(AssertionError, 'Deposit tokens can be withdrawn only after a successful sale.'):
            self.launchpad.admin_withdraw(token_kind='deposit', to=self.operator, amount=None,
                                          signer=self.operator, environment=env(END + 1))

        self.launchpad.withdraw(amount=10_000, signer=self.alice, environment=env(END + 1))
        self.resolve(self.latest_transfer_id())

        self.assertEqual(self.deposit_token.balance_of(address=self.alice), PARTICIPANT_FUNDS)
        self.assertEqual(self.launchpad.get_investment(account=self.alice)['amount'], 0)
        self.assertEqual(self.launchpad.get_totals()['total_deposited'], 5000)

        with self.assertRaisesRegex(AssertionError, 'No deposits were found for the account.'):
            self.launchpad.withdraw(amount=1, signer=self.charlie, environment=env(END + 1))


class OversizedDepositTests(LaunchpadTestCase):
    token_supply = 2 ** 130

    def test_deposit_above_u128_is_rejected_without_side_effects(self):
        discounts = {'phases': [make_phase(0, START, END, 2000)], 'public_sale_start_time': None}
        self.start_launchpad(make_config(discounts=discounts))
        self.deposit_token.transfer(amount=2 ** 128, to=self.alice, signer=self.operator)
        self.deposit_token.approve(amount=2 ** 129, to=LAUNCHPAD, signer=self.alice)

        with self.assertRaisesRegex(AssertionError, 'Value too large'):
            self.deposit(self.alice, 2 ** 128)

        self.assertIsNone(self.launchpad.get_investment(account=self.alice))
        totals = self.launchpad.get_totals()
        self.assertEqual(totals['total_deposited'], 0)
        self.assertEqual(totals['total_sold_tokens'], 0)
        self.assertEqual(totals['participants_count'], 0)
        self.assertEqual(self.launchpad.get_phase_state(phase_id=0)['sold'], 0)
        self.assertEqual(self.deposit_token.balance_of(address=self.alice), PARTICIPANT_FUNDS + 2 ** 128)
        self.assertEqual(self.deposit_token.balance_of(address=LAUNCHPAD), 0)


class PriceDiscoveryTests(LaunchpadTestCase):
    def setUp(self):
        super().setUp()
        config = make_config(
            mechanics={'kind': 'PriceDiscovery'},
            soft_cap=1000,
            discounts={'phases': [make_phase(0, START, START + DAY, 2000)], 'public_sale_start_time': None}
        )
        self.start_launchpad(config)

    def test_deposit_withdraw_and_claim(self):
        self.deposit(self.alice, 1000)
        self.deposit(self.bob, 1000, START + 2 * DAY)
        self.assertEqual(self.launchpad.get_investment(account=self.alice)['weight'], 1200)
        self.assertEqual(self.launchpad.get_investment(account=self.bob)['weight'], 1000)
        self.assertEqual(self.launchpad.get_totals()['total_sold_tokens'], 2200)

        # Partial withdrawal while ongoing re-weights at the current (public) price
        self.launchpad.withdraw(amount=500, signer=self.alice, environment=env(START + 3 * DAY))
        self.assertTrue(self.launchpad.is_settlement_in_progress(account=self.alice))
        with self.assertRaisesRegex(AssertionError, 'Settlement for this account is still in progress.'):
            self.deposit(self.alice, 100, START + 3 * DAY)
        self.resolve(self.latest_transfer_id(), timestamp=START + 3 * DAY)

        self.assertEqual(self.launchpad.get_investment(account=self.alice),
                         {'amount': 500, 'weight': 500, 'claimed': 0})
        self.assertEqual(self.launchpad.get_totals()['total_sold_tokens'], 1500)
        self.assertEqual(self.deposit_token.balance_of(address=self.alice), PARTICIPANT_FUNDS - 500)

        self.assertEqual(self.launchpad.get_status(environment=env(END + 1)), 'Success')
        self.assertEqual(self.launchpad.get_user_allocation(account=self.alice), 66_666)
        self.assertEqual(self.launchpad.get_user_allocation(account=self.bob), 133_333)

        self.launchpad.claim(account=self.alice, environment=env(END + 1))
        self.launchpad.claim(account=self.bob, environment=env(END + 1))
        self.resolve_queued()

        self.assertEqual(self.sale_token.balance_of(address=self.alice), 66_666)
        self.assertEqual(self.sale_token.balance_of(address=self.bob), 133_333)

    def assert_deposits_conserved(self):
        # The ledger total, the investments and the tokens actually held all agree
        total = self.launchpad.get_totals()['total_deposited']
        invested = 0
        for account in [self.alice, self.bob, self.charlie]:
            investment = self.launchpad.get_investment(account=account)
            if investment is not None:
                invested += investment['amount']
        self.assertEqual(total, invested)
        self.assertEqual(self.deposit_token.balance_of(address=LAUNCHPAD), total)
        return total

    def test_deposits_stay_conserved_across_settlements(self):
        later = START + 2 * DAY
        self.deposit(self.alice, 5000)
        self.deposit(self.bob, 3000)
        self.deposit(self.charlie, 2000)
        self.assertEqual(self.assert_deposits_conserved(), 10_000)

        # Partially accepted, the unused 600 is deposited again
        self.launchpad.withdraw(amount=1000, signer=self.alice, environment=env(later))
        self.assertEqual(self.assert_deposits_conserved(), 9000)
        self.resolve(self.latest_transfer_id(), accepted=400, timestamp=later)
        self.assertEqual(self.assert_deposits_conserved(), 9600)

        self.launchpad.withdraw(amount=3000, signer=self.bob, environment=env(later))
        self.assertEqual(self.assert_deposits_conserved(), 6600)
        self.fail(self.latest_transfer_id(), timestamp=later)
        self.assertEqual(self.assert_deposits_conserved(), 9600)

        self.launchpad.withdraw(amount=500, signer=self.charlie, environment=env(later))
        self.resolve(self.latest_transfer_id(), timestamp=later)
        self.assertEqual(self.assert_deposits_conserved(), 9100)

        self.deposit(self.alice, 700, later)
        self.assertEqual(self.assert_deposits_conserved(), 9800)
        self.assertEqual(self.launchpad.get_investment(account=self.alice)['amount'], 5300)


if __name__ == '__main__':
    unittest.main()
