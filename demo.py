#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: A Leveraged Perpetual Market Step by Step

Walks a USDC/WBTC perpetual market through its life. Each step builds on the
previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3: Foundation  - Asset ledger, oracle, market, pooled liquidity
  4-6: Trading     - Collateral, a 10x long, PnL and borrowing fees
  7-8: Risk        - Rejections, liquidation and the keeper fee split
  9:   Keeper run  - A simulated price path swept by the MarketEngine

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import sys

from perp_ledger import (
    PRECISION,
    AssetLedger, StaticPriceOracle, TimeSeriesPriceOracle, PositionLedger, MarketConfig,
    LiquidityPoolVault, MarketEngine,
    UNLIMITED_ALLOWANCE, LedgerError,
    generate_price_path, price_path_series,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)
    feed_decimals: int = 8

    wallet_funding: int = 1_000_000
    pool_deposit: int = 100_000

    btc_price: int = 10_000
    alice_collateral: int = 1_000
    alice_notional: int = 10_000

    # Monte Carlo keeper run
    sim_volatility: float = 1.2
    sim_days: int = 90
    sim_seed: int = 42


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def whole(amount: int) -> str:
    """Render a PRECISION-scaled amount in whole units."""
    return f"{amount / PRECISION:,.4f}"


def fund_wallets(assets: AssetLedger, wallets, market_wallet: str):
    for wallet in wallets:
        assets.register_wallet(wallet)
        assets.issue(wallet, CONFIG.wallet_funding * PRECISION)
        assets.approve(wallet, market_wallet, UNLIMITED_ALLOWANCE)


# ============================================================================
# PHASE 1: FOUNDATION (Steps 1-3)
# ============================================================================

def step_01_market():
    step_header(1, "Assets, Oracle, Market",
        "See the three collaborators a position ledger is built from.")

    print("""
    A market needs:
    1. An ASSET LEDGER   - who holds how much USDC (double entry, atomic)
    2. A PRICE ORACLE    - USDC and WBTC prices with declared decimals
    3. A POSITION LEDGER - collateral, open interest and pooled liquidity
    """)

    config = MarketConfig()
    assets = AssetLedger(config.collateral_asset, CONFIG.start_time, verbose=False)
    fund_wallets(assets, ["alice", "bob", "lp", "keeper"], config.market_wallet)

    feed = 10 ** CONFIG.feed_decimals
    oracle = StaticPriceOracle(
        {"USDC": 1 * feed, "WBTC": CONFIG.btc_price * feed},
        decimals=CONFIG.feed_decimals,
    )
    ledger = PositionLedger("btc-perp", oracle, assets, config, CONFIG.start_time, verbose=True)

    section_header("Initial State")
    print(f"Market:              {ledger}")
    print(f"WBTC in USDC:        {whole(ledger.price_ref_in_collateral())}")
    print(f"Borrowing index:     {ledger.borrowing_index()}")
    print(f"Max leverage:        {config.max_leverage}x")
    return ledger, oracle, assets


def step_02_liquidity(ledger: PositionLedger):
    step_header(2, "Pooled Liquidity",
        "LPs fund the pool that pays trader profits and earns fees.")

    vault = LiquidityPoolVault(ledger)
    print(f">>> vault.deposit('lp', {CONFIG.pool_deposit:,})")
    shares = vault.deposit("lp", CONFIG.pool_deposit * PRECISION)

    section_header("Pool")
    print(f"Shares minted:       {whole(shares)}")
    print(f"Deposited liquidity: {whole(ledger.deposited_liquidity)}")
    print(f"Vault NAV:           {whole(vault.total_managed_assets())}")
    return vault


def step_03_custody(ledger: PositionLedger, assets: AssetLedger):
    step_header(3, "Custody",
        "The market wallet always holds liquidity plus collateral.")

    result = ledger.verify_invariants()
    print(f"Market wallet:       {whole(assets.get_balance('market'))}")
    print(f"Invariants valid:    {result['valid']}")


# ============================================================================
# PHASE 2: TRADING (Steps 4-6)
# ============================================================================

def step_04_open(ledger: PositionLedger):
    step_header(4, "A 10x Long",
        "Post collateral, then open ten times as much notional.")

    ledger.add_collateral("alice", CONFIG.alice_collateral * PRECISION)
    ledger.open_or_increase_position("alice", CONFIG.alice_notional * PRECISION, True)

    account = ledger.get_account("alice")
    section_header("alice")
    print(f"Collateral:          {whole(account.collateral)}")
    print(f"Long notional:       {whole(account.long_open_interest)}")
    print(f"Long tokens:         {whole(account.long_open_interest_in_tokens)} WBTC")
    print(f"Leverage:            {whole(ledger.leverage('alice'))}x")


def step_05_pnl(ledger: PositionLedger, oracle: StaticPriceOracle):
    step_header(5, "Mark to Market",
        "PnL follows the reference price; nothing settles until a close.")

    for price in (10_400, 9_800):
        oracle.update_price("WBTC", price * 10 ** CONFIG.feed_decimals)
        print(f"WBTC {price:>6,}: pnl {whole(ledger.trader_pnl('alice')):>12}  "
              f"leverage {whole(ledger.leverage('alice'))}x")
    oracle.update_price("WBTC", CONFIG.btc_price * 10 ** CONFIG.feed_decimals)


def step_06_fees(ledger: PositionLedger):
    step_header(6, "Borrowing Fees",
        "Open interest pays 10% a year through a linear index.")

    later = CONFIG.start_time + timedelta(days=73)
    ledger.advance_time(later)
    print(f"Time:                {later}")
    print(f"Borrowing index:     {ledger.borrowing_index()}")
    print(f"alice accrued fee:   {whole(ledger.trader_borrowing_fee('alice'))}")
    print(f"alice equity:        {whole(ledger.equity('alice'))}")


# ============================================================================
# PHASE 3: RISK (Steps 7-8)
# ============================================================================

def step_07_rejections(ledger: PositionLedger):
    step_header(7, "Rejections",
        "A rejected operation changes nothing and says why.")

    before = ledger.state
    for label, attempt in (
        ("open 10,000 more", lambda: ledger.open_or_increase_position("alice", 10_000 * PRECISION, False)),
        ("withdraw 900 collateral", lambda: ledger.decrease_collateral("alice", 900 * PRECISION)),
        ("bob closes alice", lambda: ledger.decrease_position("bob", "alice", 1, True)),
    ):
        print(f">>> {label}")
        try:
            attempt()
        except LedgerError as e:
            print(f"    {type(e).__name__}")
    print(f"\nState unchanged:     {ledger.state == before}")


def step_08_liquidation(ledger: PositionLedger, oracle: StaticPriceOracle, assets: AssetLedger):
    step_header(8, "Liquidation",
        "A 5% drop doubles leverage; any keeper can close the trader out.")

    oracle.update_price("WBTC", 9_500 * 10 ** CONFIG.feed_decimals)
    print(f"alice leverage:      {whole(ledger.leverage('alice'))}x")
    print(f"liquidatable:        {ledger.is_liquidatable('alice')}")

    keeper_before = assets.get_balance("keeper")
    event = ledger.liquidate("keeper", "alice")

    section_header("Outcome")
    print(f"Keeper fee:          {whole(event.fee)}")
    print(f"Keeper balance +     {whole(assets.get_balance('keeper') - keeper_before)}")
    print(f"Bad debt:            {whole(event.bad_debt)}")
    print(f"alice flat:          {ledger.get_account('alice').is_flat()}")
    print(f"Invariants valid:    {ledger.verify_invariants()['valid']}")


# ============================================================================
# PHASE 4: KEEPER RUN (Step 9)
# ============================================================================

def step_09_keeper_run():
    step_header(9, "Keeper Run",
        "Sweep a simulated GBM path and watch positions get liquidated.")

    start = CONFIG.start_time
    path = generate_price_path(
        float(CONFIG.btc_price), CONFIG.sim_volatility, CONFIG.sim_days,
        seed=CONFIG.sim_seed, decimals=CONFIG.feed_decimals,
    )
    series = price_path_series(start, timedelta(days=1), path)
    oracle = TimeSeriesPriceOracle(
        {"USDC": [(start, 10 ** CONFIG.feed_decimals)], "WBTC": series},
        decimals=CONFIG.feed_decimals,
    )

    config = MarketConfig()
    traders = [f"trader_{i}" for i in range(6)]
    assets = AssetLedger(config.collateral_asset, start, verbose=False)
    fund_wallets(assets, traders + ["lp", "keeper"], config.market_wallet)
    ledger = PositionLedger("sim", oracle, assets, config, start, verbose=False)
    ledger.deposit_liquidity("lp", CONFIG.pool_deposit * PRECISION)
    for i, trader in enumerate(traders):
        ledger.add_collateral(trader, 1_000 * PRECISION)
        ledger.open_or_increase_position(trader, (2 + 2 * i) * 1_000 * PRECISION, i % 2 == 0)

    engine = MarketEngine(ledger, "keeper")
    liquidated = engine.run([ts for ts, _ in series[1:]])

    section_header("Summary")
    print(f"Final WBTC:          {path[-1] / 10 ** CONFIG.feed_decimals:,.2f}")
    for event in liquidated:
        print(f"  {event.timestamp:%Y-%m-%d} {event.trader}: fee {whole(event.fee)}, "
              f"bad debt {whole(event.bad_debt)}")
    print(f"Keeper earned:       {whole(assets.get_balance('keeper') - CONFIG.wallet_funding * PRECISION)}")
    print(f"Invariants valid:    {ledger.verify_invariants()['valid']}")


def main():
    print("=" * 70)
    print("       PERP LEDGER - INTERACTIVE TUTORIAL")
    print("=" * 70)

    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")
    wait_for_enter()

    ledger, oracle, assets = step_01_market()
    wait_for_enter()
    step_02_liquidity(ledger)
    wait_for_enter()
    step_03_custody(ledger, assets)
    wait_for_enter()

    step_04_open(ledger)
    wait_for_enter()
    step_05_pnl(ledger, oracle)
    wait_for_enter()
    step_06_fees(ledger)
    wait_for_enter()

    step_07_rejections(ledger)
    wait_for_enter()
    step_08_liquidation(ledger, oracle, assets)
    wait_for_enter()

    step_09_keeper_run()

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - See perp_ledger/risk.py for the leverage and utilization rules
      - See perp_ledger/liquidation.py for the fee split and bad debt
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
