"""Kokitzu settlement engine CLI entry point."""

import argparse
import logging
import sys
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError

env_file = Path(__file__).parent.parent / ".env"
load_dotenv(env_file)

from kokitzu import __version__
from kokitzu.config import get_settings
from kokitzu.engine import build_engine, build_ledger
from kokitzu.recorder import record_bet
from kokitzu.scheduler import start_scheduler
from kokitzu.services.chain import ChainGatewayError, OptionNotFound
from kokitzu.services.oracle import OracleUnavailable
from kokitzu.services.rate_limit import RateLimited
from kokitzu.settlement import ResolveResult, ScanResult, failed_creation_outcome
from kokitzu.storage import BetStatus, HoldingPeriod, LedgerError, init_schema
from kokitzu.storage.database import create_ledger_engine

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger(__name__)

CONFIG_TEMPLATE = """# Kokitzu Settlement Configuration
# Operational parameters only. RPC_URL, PRIVATE_KEY and API keys belong in .env.

chain:
  chain_id: 11155111
  deployment_block: 0
  settle_gas_limit: 200000
  max_fee_per_gas_gwei: 20
  max_priority_fee_per_gas_gwei: 2
  receipt_timeout_seconds: 60
  fallback_payout_multiplier: 1.8

oracle:
  source: chainlink

rate_limit:
  min_interval_seconds: 1.0
  max_retries: 3
  base_delay_seconds: 2.0

scheduler:
  settlement_interval_seconds: 60
  resolver_interval_seconds: 60

settlement:
  stale_pending_minutes: 60
  max_bets_per_tick: 100
"""


def _init_logfire() -> None:
    """Initialize Logfire if available, without failing commands."""
    try:
        from kokitzu.observability import initialize_logfire

        initialize_logfire(get_settings())
    except Exception as e:
        logger.warning(f"Failed to initialize Logfire: {e}")


def _print_scan(result: ScanResult) -> None:
    print(f"Inspected: {result.inspected}")
    print(f"Settled: {result.settled} (won {result.won}, lost {result.lost}, draws {result.draws})")
    print(f"Invalid: {result.invalid}")
    print(f"Errors (manual follow-up): {result.errors_marked}")
    print(f"Skipped (no option id): {result.skipped_no_option_id}")
    print(f"Pending: {result.pending}")
    print(f"Failures: {result.failures}")
    if result.aborted:
        print(f"\n⚠ Tick aborted: {result.abort_reason}")
    print()


def _print_resolve(result: ResolveResult) -> None:
    print(f"Inspected: {result.inspected}")
    print(f"Resolved: {result.resolved}")
    print(f"Pending: {result.pending} ({result.stale} stale)")
    print(f"Failed creation tx: {result.failed_tx}")
    print(f"Anomalies: {result.anomalies}")
    print(f"Failures: {result.failures}")
    if result.aborted:
        print(f"\n⚠ Tick aborted: {result.abort_reason}")
    print()


def cmd_init(args: argparse.Namespace) -> int:
    """Initialize data directory, configuration template and ledger tables."""
    try:
        settings = get_settings()
        data_dir = settings.data_dir
        data_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Created data directory: {data_dir}")

        config_path = data_dir / "config.yaml"
        if not config_path.exists():
            config_path.write_text(CONFIG_TEMPLATE)
            logger.info(f"Created config template: {config_path}")
        else:
            logger.info(f"Config file already exists: {config_path}")

        init_schema(create_ledger_engine(settings.ledger_url))
        logger.info("Ledger tables ready")

        print(f"\n✓ Data directory initialized at {data_dir}")
        print("\nNext steps:")
        print("1. Copy .env.example to .env and set RPC_URL and PRIVATE_KEY")
        print("2. Review and customize data/config.yaml if needed")
        print("3. Run 'python -m kokitzu config' to verify configuration")
        print("4. Run 'python -m kokitzu run' to start the settlement loops\n")

        return 0

    except Exception as e:
        logger.error(f"Failed to initialize: {e}")
        print(f"\n❌ Initialization failed: {e}\n")
        return 1


def cmd_config(args: argparse.Namespace) -> int:
    """Display merged configuration."""
    try:
        settings = get_settings()

        print("\n=== Kokitzu Configuration ===\n")
        print(f"Data Directory: {settings.data_dir}")
        print(f"Ledger: {settings.ledger_url}\n")

        print("Chain:")
        print(f"  Contract: {settings.contract_address}")
        print(f"  Chain ID: {settings.chain.chain_id}")
        print(f"  Deployment Block: {settings.chain.deployment_block}")
        print(f"  Settle Gas Limit: {settings.chain.settle_gas_limit:,}")
        print(f"  Max Fee: {settings.chain.max_fee_per_gas_gwei} gwei")
        print(f"  Receipt Timeout: {settings.chain.receipt_timeout_seconds}s")
        print(f"  Fallback Payout: {settings.chain.fallback_payout_multiplier}x\n")

        print("Oracle:")
        print(f"  Source: {settings.oracle.source}")
        print(f"  Assets: {', '.join(sorted(settings.oracle.chainlink_feeds))}\n")

        print("Rate Limit:")
        print(f"  Min Interval: {settings.rate_limit.min_interval_seconds}s")
        print(f"  Max Retries: {settings.rate_limit.max_retries}")
        print(f"  Base Delay: {settings.rate_limit.base_delay_seconds}s\n")

        print("Scheduler (seconds):")
        print(f"  Settlement Scan: {settings.scheduler.settlement_interval_seconds}")
        print(f"  Pending ID Resolver: {settings.scheduler.resolver_interval_seconds}\n")

        print("Settlement:")
        print(f"  Stale Pending After: {settings.settlement.stale_pending_minutes} min")
        print(f"  Max Bets Per Tick: {settings.settlement.max_bets_per_tick}\n")

        print("Secrets:")
        print(f"  RPC URL: {'✓ Set' if settings.rpc_url else '✗ Not set'}")
        print(f"  Private Key: {'✓ Set' if settings.private_key else '✗ Not set'}")
        print(f"  CoinGecko: {'✓ Set' if settings.coingecko_api_key else '✗ Not set'}")
        print(f"  Logfire: {'✓ Set' if settings.logfire_token else '✗ Not set'}\n")

        return 0

    except ValidationError as e:
        print("\n❌ Configuration Error:\n")
        for error in e.errors():
            print(f"  • {'.'.join(str(x) for x in error['loc'])}: {error['msg']}")
        print()
        return 1
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        print(f"\n❌ Failed to load configuration: {e}\n")
        return 1


def cmd_status(args: argparse.Namespace) -> int:
    """Display ledger counts and contract stats."""
    try:
        settings = get_settings()
        ledger = build_ledger(settings)

        print("\n=== Kokitzu Ledger Status ===\n")

        counts = ledger.count_by_status()
        print("Bets:")
        for status in BetStatus:
            print(f"  {status.value}: {counts[status]}")
        print()

        awaiting = ledger.find_active_without_option_id(limit=6)
        print(f"Awaiting Option ID: {len(awaiting)}{'+' if len(awaiting) > 5 else ''}")
        for bet in awaiting[:5]:
            print(f"  • {bet.id} tx={bet.transaction_hash} created={bet.created_at:%Y-%m-%d %H:%M}")
        print()

        if settings.rpc_url:
            try:
                stats = build_engine(settings).gateway.get_contract_stats()
                print("Contract:")
                print(f"  Total Options: {stats.total_options}")
                print(f"  Balance: {stats.contract_balance} ETH\n")
            except (ChainGatewayError, RateLimited) as e:
                print(f"Contract: unreachable ({e})\n")

        return 0

    except Exception as e:
        logger.error(f"Failed to read status: {e}")
        print(f"\n❌ Failed to read status: {e}\n")
        return 1


def cmd_settle(args: argparse.Namespace) -> int:
    """Run one settlement scanner tick."""
    _init_logfire()

    try:
        print("\n=== Settlement Scanner ===\n")

        engine = build_engine()
        result = engine.scanner.run_tick()

        print("✓ Settlement tick complete\n")
        _print_scan(result)

        return 1 if result.aborted else 0

    except Exception as e:
        logger.error(f"Settlement failed: {e}", exc_info=True)
        print(f"\n❌ Settlement failed: {e}\n")
        return 1


def cmd_resolve(args: argparse.Namespace) -> int:
    """Run one pending-identifier resolver tick."""
    _init_logfire()

    try:
        print("\n=== Pending ID Resolver ===\n")

        engine = build_engine()
        result = engine.resolver.run_tick()

        print("✓ Resolver tick complete\n")
        _print_resolve(result)

        return 1 if result.aborted else 0

    except Exception as e:
        logger.error(f"Resolver failed: {e}", exc_info=True)
        print(f"\n❌ Resolver failed: {e}\n")
        return 1


def cmd_option(args: argparse.Namespace) -> int:
    """Print on-chain state of one option."""
    try:
        engine = build_engine()
        print(f"\n=== Option {args.option_id} ===\n")

        try:
            option = engine.gateway.read_option(args.option_id)
        except OptionNotFound as e:
            print(f"✗ {e}\n")
            return 1

        now = datetime.now(timezone.utc)
        print(f"Trader: {option.trader}")
        print(f"Asset: {option.asset}")
        print(f"Amount: {option.amount} ETH")
        print(f"Direction: {'UP (call)' if option.is_call else 'DOWN (put)'}")
        print(f"Expiry: {option.expiry:%Y-%m-%d %H:%M:%S} UTC" if option.expiry else "Expiry: -")
        if option.expiry:
            print(f"Expired: {'yes' if option.expiry <= now else 'no'}")
        print(f"Executed: {option.executed}")
        print(f"Entry Price: {option.entry_price}")
        if option.executed:
            print(f"Exit Price: {option.exit_price}")
            print(f"Result: {'PUSH' if option.is_push else 'WIN' if option.is_win else 'LOSS'}")
            print(f"Payout: {option.payout} ETH")
        print()

        return 0

    except Exception as e:
        logger.error(f"Option lookup failed: {e}")
        print(f"\n❌ Option lookup failed: {e}\n")
        return 1


def cmd_tx(args: argparse.Namespace) -> int:
    """Print a transaction's receipt status and the option id it created."""
    try:
        engine = build_engine()
        print(f"\n=== Transaction {args.hash} ===\n")

        receipt = engine.gateway.get_transaction_receipt(args.hash)
        print(f"Status: {receipt.status.value.upper()}")
        if not receipt.is_pending:
            print(f"Block: {receipt.block_number}")
            print(f"Gas Used: {receipt.gas_used}")
        if receipt.succeeded:
            option_id = engine.gateway.extract_option_id(receipt)
            print(f"Option ID: {option_id if option_id is not None else '(no OptionCreated event)'}")

        bet = engine.ledger.find_by_transaction_hash(args.hash)
        if bet is not None:
            print(f"\nLedger: {bet.id} {bet.status.value} option_id={bet.option_id}")
        else:
            print("\nLedger: no bet recorded for this transaction")
        print()

        return 0

    except Exception as e:
        logger.error(f"Transaction lookup failed: {e}")
        print(f"\n❌ Transaction lookup failed: {e}\n")
        return 1


def cmd_price(args: argparse.Namespace) -> int:
    """Print the oracle quote for an asset."""
    try:
        engine = build_engine()
        quote = engine.oracle.get_quote(args.asset)
        updated = f"{quote.updated_at:%Y-%m-%d %H:%M:%S} UTC" if quote.updated_at else "-"
        print(f"\n{quote.asset}/USD: {quote.price} (source {quote.source}, updated {updated})\n")
        return 0

    except OracleUnavailable as e:
        print(f"\n❌ Price unavailable: {e}\n")
        return 1
    except Exception as e:
        logger.error(f"Price lookup failed: {e}")
        print(f"\n❌ Price lookup failed: {e}\n")
        return 1


def cmd_record(args: argparse.Namespace) -> int:
    """Record a bet placed on-chain."""
    try:
        entry_price = Decimal(args.entry_price) if args.entry_price else None
    except InvalidOperation:
        print(f"\n❌ Invalid entry price: {args.entry_price}\n")
        return 1

    try:
        engine = build_engine()
        bet = record_bet(
            engine.ledger,
            engine.oracle,
            asset=args.asset,
            direction=args.direction,
            stake=args.stake,
            holding_period=args.period,
            transaction_hash=args.tx_hash,
            wallet_address=args.wallet,
            option_id=args.option_id,
            entry_price=entry_price,
        )

        print(f"\n✓ Bet {bet.id}")
        print(f"  {bet.asset} {bet.direction.value} {bet.stake} ETH for {bet.holding_period.value}")
        print(f"  Entry Price: {bet.entry_price}")
        print(f"  Expires: {bet.expires_at:%Y-%m-%d %H:%M:%S} UTC")
        print(f"  Option ID: {bet.option_id or '(pending)'}\n")
        return 0

    except OracleUnavailable as e:
        print(f"\n❌ Cannot record bet without an entry price: {e}\n")
        return 1
    except Exception as e:
        logger.error(f"Failed to record bet: {e}", exc_info=True)
        print(f"\n❌ Failed to record bet: {e}\n")
        return 1


def cmd_expire(args: argparse.Namespace) -> int:
    """Force-expire a bet whose creation transaction never confirmed."""
    try:
        ledger = build_ledger()
        bet = ledger.get(args.bet_id)

        if bet.option_id is not None:
            print(f"\n❌ Bet {bet.id} has option {bet.option_id}; it settles on-chain\n")
            return 1
        if bet.is_terminal:
            print(f"\n❌ Bet {bet.id} is already {bet.status.value}\n")
            return 1

        saved = ledger.save(failed_creation_outcome(bet, datetime.now(timezone.utc)))
        logger.warning(f"Operator expired bet {saved.id} (tx {saved.transaction_hash})")
        print(f"\n✓ Bet {saved.id} marked {saved.status.value}/{saved.result.value}\n")
        return 0

    except LedgerError as e:
        print(f"\n❌ {e}\n")
        return 1
    except Exception as e:
        logger.error(f"Failed to expire bet: {e}")
        print(f"\n❌ Failed to expire bet: {e}\n")
        return 1


def cmd_run(args: argparse.Namespace) -> int:
    """Start the settlement loops."""
    try:
        _init_logfire()

        if args.debug:
            logging.getLogger().setLevel(logging.DEBUG)

        engine = build_engine()
        settings = engine.settings

        print("\n=== Kokitzu Settlement Engine ===\n")
        print(f"Version: {__version__}")
        print(f"Contract: {settings.contract_address} (chain {settings.chain.chain_id})")
        print(f"Signer: {engine.gateway.signer_address or 'NOT CONFIGURED'}")
        print(f"Ledger: {settings.ledger_url}\n")

        if args.once:
            print("Running one resolve + settle pass...\n")
            _print_resolve(engine.resolver.run_tick())
            _print_scan(engine.scanner.run_tick())
            print("Pass complete.\n")
            return 0

        print("Starting scheduler...\n")
        start_scheduler(engine)

        return 0

    except KeyboardInterrupt:
        print("\n\nReceived interrupt signal. Shutting down...\n")
        return 0
    except Exception as e:
        logger.error(f"Failed to start engine: {e}", exc_info=True)
        print(f"\nFailed to start: {e}\n")
        return 1


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Kokitzu: binary option settlement reconciliation engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Kokitzu {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    parser_init = subparsers.add_parser(
        "init",
        help="Initialize data directory, configuration and ledger tables",
    )
    parser_init.set_defaults(func=cmd_init)

    parser_config = subparsers.add_parser(
        "config",
        help="Display merged configuration",
    )
    parser_config.set_defaults(func=cmd_config)

    parser_status = subparsers.add_parser(
        "status",
        help="Display ledger counts and contract stats",
    )
    parser_status.set_defaults(func=cmd_status)

    parser_settle = subparsers.add_parser(
        "settle",
        help="Run one settlement tick for expired bets",
    )
    parser_settle.set_defaults(func=cmd_settle)

    parser_resolve = subparsers.add_parser(
        "resolve",
        help="Run one tick resolving pending option ids",
    )
    parser_resolve.set_defaults(func=cmd_resolve)

    parser_option = subparsers.add_parser(
        "option",
        help="Show on-chain state of an option",
    )
    parser_option.add_argument(
        "--option-id",
        required=True,
        help="On-chain option id",
    )
    parser_option.set_defaults(func=cmd_option)

    parser_tx = subparsers.add_parser(
        "tx",
        help="Show a transaction's receipt and created option id",
    )
    parser_tx.add_argument(
        "--hash",
        required=True,
        help="Transaction hash",
    )
    parser_tx.set_defaults(func=cmd_tx)

    parser_price = subparsers.add_parser(
        "price",
        help="Show the oracle price for an asset",
    )
    parser_price.add_argument(
        "--asset",
        required=True,
        help="Asset symbol, e.g. ETH",
    )
    parser_price.set_defaults(func=cmd_price)

    parser_record = subparsers.add_parser(
        "record",
        help="Record a bet placed on-chain",
    )
    parser_record.add_argument("--asset", required=True, help="Asset symbol, e.g. ETH")
    parser_record.add_argument(
        "--direction",
        required=True,
        type=str.upper,
        choices=["UP", "DOWN"],
        help="Bet direction",
    )
    parser_record.add_argument("--stake", required=True, help="Stake in ETH")
    parser_record.add_argument(
        "--period",
        required=True,
        type=str.upper,
        choices=[p.value for p in HoldingPeriod],
        help="Holding period",
    )
    parser_record.add_argument("--tx-hash", required=True, help="Creation transaction hash")
    parser_record.add_argument("--wallet", default=None, help="Trader wallet address")
    parser_record.add_argument("--option-id", default=None, help="On-chain option id, if known")
    parser_record.add_argument(
        "--entry-price",
        default=None,
        help="Entry price override (skips the oracle)",
    )
    parser_record.set_defaults(func=cmd_record)

    parser_expire = subparsers.add_parser(
        "expire",
        help="Force-expire a bet whose creation transaction never confirmed",
    )
    parser_expire.add_argument(
        "--bet-id",
        required=True,
        help="Ledger bet id",
    )
    parser_expire.set_defaults(func=cmd_expire)

    parser_run = subparsers.add_parser(
        "run",
        help="Start the settlement and resolver loops",
    )
    parser_run.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser_run.add_argument(
        "--once",
        action="store_true",
        help="Run one resolve + settle pass then exit",
    )
    parser_run.set_defaults(func=cmd_run)

    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
