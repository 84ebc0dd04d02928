#!/usr/bin/env python3
"""
Bitvavo Cash Ledger - Main Entry Point
Entry point for the Bitvavo EUR cash ledger sync application.
"""
import os
import sys
import logging
import platform
import argparse
from pathlib import Path

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from ledger_tracker import BitvavoLedgerTracker
from config import setup_logging, load_config

VERSION = "1.0.0"


def clear_screen() -> None:
    """Clears the terminal screen."""
    os.system('cls' if platform.system() == "Windows" else 'clear')


def create_argument_parser():
    """Create and configure argument parser"""
    parser = argparse.ArgumentParser(
        description="Bitvavo Cash Ledger - Rebuild your Bitvavo EUR cash account",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                           # Interactive mode
  python main.py --sync-only               # Refresh the cash ledger only
  python main.py --sync-only --full-sync   # Force a full backfill
  python main.py --portfolio               # Value current holdings in EUR
  python main.py --export-only --format csv
  python main.py --reset-boundary          # Next refresh runs a full sync
  python main.py --config my_config.json   # Use custom config
        """
    )

    parser.add_argument(
        "--sync-only",
        action="store_true",
        help="Refresh the cash ledger only (no exports)"
    )

    parser.add_argument(
        "--full-sync",
        action="store_true",
        help="Ignore the stored incremental boundary and run a full backfill"
    )

    parser.add_argument(
        "--portfolio",
        action="store_true",
        help="Value current non-EUR holdings at live EUR prices"
    )

    parser.add_argument(
        "--export-only",
        action="store_true",
        help="Export the stored ledger without syncing"
    )

    parser.add_argument(
        "--format",
        choices=["excel", "html", "csv", "all"],
        default="all",
        help="Export format (default: all)"
    )

    parser.add_argument(
        "--reset-boundary",
        action="store_true",
        help="Forget the incremental sync boundary"
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Path to custom configuration file"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging (DEBUG level)"
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress console output except errors"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Bitvavo Cash Ledger v{VERSION}"
    )

    return parser


def show_interactive_menu():
    """Display interactive menu and get user choice"""
    print("\n" + "="*50)
    print(f"💶 Bitvavo Cash Ledger v{VERSION}")
    print("="*50)
    print("1. 🔄 Refresh Cash Ledger (Recommended)")
    print("2. 🔁 Full Backfill & Reconcile")
    print("3. 📊 Portfolio Valuation")
    print("4. 📋 Export Reports")
    print("5. 🧹 Reset Incremental Boundary")
    print("6. ⚙️  View Configuration")
    print("7. 🔧 Test API Connections")
    print("8. ❌ Exit")
    print("="*50)

    while True:
        try:
            choice = input("\nSelect option (1-8): ").strip()
            if choice in [str(i) for i in range(1, 9)]:
                return int(choice)
            else:
                print("❌ Invalid choice. Please select 1-8.")
        except KeyboardInterrupt:
            print("\n\n👋 Goodbye!")
            sys.exit(0)
        except EOFError:
            print("\n\n👋 Goodbye!")
            sys.exit(0)


def run_interactive_mode(tracker: BitvavoLedgerTracker):
    """Run the application in interactive mode"""
    while True:
        choice = show_interactive_menu()

        try:
            if choice in (1, 2):
                print("\n🔄 Refreshing cash ledger...")
                result = tracker.refresh_cash_account(force_full=(choice == 2))
                if result is None:
                    print("\n❌ Refresh failed, nothing was stored. Check logs for details.")
                else:
                    tracker.print_cash_summary(result)
                input("\n✅ Press Enter to continue...")

            elif choice == 3:
                print("\n📊 Valuing portfolio...")
                tracker.print_portfolio_summary(tracker.value_portfolio())
                input("\n✅ Press Enter to continue...")

            elif choice == 4:
                print("\n📋 Exporting reports...")
                written = tracker.export_ledger("all", include_portfolio=True)
                print(f"\n✅ {len(written)} report(s) exported (for enabled formats).")
                input("Press Enter to continue...")

            elif choice == 5:
                tracker.reset_sync_boundary()
                input("\n✅ Boundary cleared, the next refresh runs a full sync. Press Enter to continue...")

            elif choice == 6:
                print("\n⚙  Current Configuration:")
                tracker.print_configuration()
                input("\nPress Enter to continue...")

            elif choice == 7:
                print("\n🔧 Testing API connections...")
                tracker.test_connections()
                input("\n✅ Test completed. Press Enter to continue...")

            elif choice == 8:
                print("\n👋 Goodbye!")
                break

        except KeyboardInterrupt:
            print("\n\n⚠ Operation cancelled by user. Returning to menu.")
            continue
        except Exception as e:
            logging.exception(f"Error in interactive mode choice {choice}: {e}")
            print(f"\n❌ An unexpected error occurred: {e}")
            print("Please check logs for more details.")
            input("Press Enter to continue...")


def main():
    """Main function"""
    parser = create_argument_parser()
    args = parser.parse_args()

    config_data_for_logging = load_config(args.config)
    log_level_console = "DEBUG" if args.verbose else ("ERROR" if args.quiet else "INFO")
    setup_logging(config=config_data_for_logging.get("logging", {}), level=log_level_console)

    logger = logging.getLogger(__name__)
    logger.info("Starting Bitvavo Cash Ledger")

    try:
        tracker = BitvavoLedgerTracker(config_path=args.config)

        if args.reset_boundary:
            tracker.reset_sync_boundary()
            print("✅ Incremental boundary cleared")

        if args.sync_only or (args.full_sync and not (args.portfolio or args.export_only)):
            logger.info("Running sync-only mode")
            result = tracker.refresh_cash_account(force_full=args.full_sync)
            if result is None:
                print("❌ Cash ledger refresh failed, nothing was stored")
                sys.exit(1)
            tracker.print_cash_summary(result)
            print("✅ Cash ledger refresh completed")

        elif args.portfolio:
            logger.info("Running portfolio valuation")
            tracker.print_portfolio_summary(tracker.value_portfolio())

        elif args.export_only:
            logger.info("Running export-only mode")
            written = tracker.export_ledger(args.format)
            if written:
                print(f"✅ Export completed: {', '.join(str(p) for p in written)}")
            else:
                print("No export formats enabled or specified for export-only mode.")

        elif not args.reset_boundary:
            run_interactive_mode(tracker)

    except KeyboardInterrupt:
        print("\n\n👋 Goodbye!")
        logger.info("Application interrupted by user")
    except FileNotFoundError as e:
        logger.error(f"Configuration file not found or path error: {e}", exc_info=True)
        print(f"\n💥 Configuration Error: {e}")
        print("Please ensure your config file path is correct or a default_config.json exists.")
    except Exception as e:
        logger.error(f"Fatal error in main execution: {e}", exc_info=True)
        print(f"\n💥 A fatal error occurred: {e}")
        print("Please check logs for detailed error information.")
        sys.exit(1)
    finally:
        logger.info("Application finished")


if __name__ == "__main__":
    main()
