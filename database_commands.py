#!/usr/bin/env python3
"""
Back-office Management Commands

Operational commands for the fleet back-office database:
- Status and configuration checks
- Balance reconciliation against the ledgers
- Overdue report listing
- Loading slab tables from a JSON file

Usage:
    python database_commands.py --help
    python database_commands.py status
    python database_commands.py reconcile-balances --fix
    python database_commands.py overdue-report
    python database_commands.py load-slabs slabs.json --key rent_slabs
"""

import os
import sys
import json
import argparse
import logging
from datetime import datetime
from sqlalchemy import func, text
from werkzeug.security import generate_password_hash
from app import create_app, db

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

def setup_app_context():
    """Setup Flask application context for database operations."""
    # Set a temporary SESSION_SECRET for CLI operations if not set
    if not os.environ.get('SESSION_SECRET'):
        os.environ['SESSION_SECRET'] = 'cli_temp_secret_not_for_production'

    app = create_app()
    return app.app_context()

def cmd_status(args):
    """Display database and configuration status."""
    from models import User, UserRole, FleetReport, ReportStatus, CommonAdjustment
    from utils.config_validator import check_production_readiness

    with setup_app_context():
        print("=" * 60)
        print("BACK-OFFICE STATUS REPORT")
        print("=" * 60)

        try:
            db.session.execute(text('SELECT 1'))
            print("Connection Status: ✅ HEALTHY")
        except Exception as e:
            print(f"Connection Status: ❌ FAILED ({str(e)})")
            sys.exit(1)

        print(f"Engine: {db.engine.url.get_backend_name()}")
        print()

        drivers = User.query.filter_by(role=UserRole.DRIVER).count()
        online = User.query.filter_by(role=UserRole.DRIVER, online=True).count()
        print(f"Drivers: {drivers} ({online} online)")

        print("Fleet Reports:")
        counts = dict(db.session.query(FleetReport.status, func.count(FleetReport.id))
                      .group_by(FleetReport.status).all())
        for status in ReportStatus:
            print(f"  {status.value}: {counts.get(status, 0)}")
        print(f"Adjustments: {CommonAdjustment.query.count()}")
        print()

        readiness = check_production_readiness()
        print(f"Configuration: {'✅ READY' if readiness['production_ready'] else '⚠️  ISSUES FOUND'}")
        for issue in readiness['issues']:
            print(f"  ⚠️  {issue}")

        print(f"\nReport Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

def cmd_reconcile(args):
    """Compare running balances with the ledgers, optionally fixing them."""
    from services.ledger_service import LedgerService

    with setup_app_context():
        success, error, drift = LedgerService().reconcile_balances(fix=args.fix)
        if not success:
            print(f"❌ Reconciliation failed: {error}")
            sys.exit(1)

        if not drift:
            print("✅ All driver balances match their ledgers")
            return

        print(f"{'Fixed' if args.fix else 'Found'} {len(drift)} drivers with balance drift:")
        for entry in drift:
            print(f"  #{entry['user_id']} {entry['name']}: "
                  f"pending {entry['stored_pending_balance']:.2f} -> {entry['ledger_pending_balance']:.2f}, "
                  f"penalties {entry['stored_total_penalties']:.2f} -> {entry['ledger_total_penalties']:.2f}")
        if not args.fix:
            print("Run with --fix to overwrite the stored balances")
            sys.exit(2)

def cmd_overdue_report(args):
    """List online drivers with overdue or rejected reports."""
    from services.overdue_service import OverdueService

    with setup_app_context():
        drivers = OverdueService().get_overdue_drivers()
        if not drivers:
            print("✅ No overdue reports")
            return

        print(f"{len(drivers)} drivers with outstanding reports:")
        for entry in drivers:
            print(f"  #{entry['user_id']} {entry['name']} ({entry['vehicle_number'] or '-'}): "
                  f"{entry['overdue_count']} overdue, {entry['rejected_count']} rejected")

def cmd_load_slabs(args):
    """Load one slab table, or all three, from a JSON file."""
    from services.settlement_service import SettlementService, SLAB_CONFIG_KEYS

    try:
        with open(args.file) as handle:
            payload = json.load(handle)
    except (OSError, ValueError) as e:
        print(f"❌ Could not read {args.file}: {str(e)}")
        sys.exit(1)

    if args.key:
        tables = {args.key: payload}
    elif isinstance(payload, dict):
        tables = {key: rows for key, rows in payload.items() if key in SLAB_CONFIG_KEYS}
    else:
        print("❌ A bare list needs --key to say which table it is")
        sys.exit(1)

    if not tables:
        print(f"❌ No slab tables found; expected keys: {', '.join(SLAB_CONFIG_KEYS)}")
        sys.exit(1)

    with setup_app_context():
        service = SettlementService()
        for key, rows in tables.items():
            success, error, _ = service.update_slabs(key, rows)
            if not success:
                print(f"❌ {key}: {error}")
                sys.exit(1)
            print(f"✅ {key}: {len(rows)} slabs loaded")

def cmd_create_admin(args):
    """Create a back-office staff account."""
    from models import User, UserRole

    with setup_app_context():
        if User.query.filter_by(username=args.username).first():
            print(f"❌ User '{args.username}' already exists")
            sys.exit(1)

        user = User(
            username=args.username,
            email=args.email,
            name=args.name or args.username,
            role=UserRole(args.role),
            password_hash=generate_password_hash(args.password),
        )
        db.session.add(user)
        db.session.commit()
        print(f"✅ Created {args.role} account '{args.username}'")

def main():
    """Main command line interface."""
    parser = argparse.ArgumentParser(
        description="Fleet back-office management commands",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    subparsers.add_parser('status', help='Display database and configuration status')

    reconcile_parser = subparsers.add_parser('reconcile-balances',
                                             help='Check running balances against the ledgers')
    reconcile_parser.add_argument('--fix', action='store_true',
                                  help='Overwrite drifted balances with ledger totals')

    subparsers.add_parser('overdue-report', help='List drivers with overdue reports')

    slabs_parser = subparsers.add_parser('load-slabs', help='Load slab tables from a JSON file')
    slabs_parser.add_argument('file', help='JSON file with a list of slabs or a dict of tables')
    slabs_parser.add_argument('--key', choices=['rent_slabs', 'rent_slabs_24hr', 'earnings_slabs'],
                              help='Table the file holds when it is a bare list')

    admin_parser = subparsers.add_parser('create-admin', help='Create a back-office account')
    admin_parser.add_argument('username')
    admin_parser.add_argument('password')
    admin_parser.add_argument('--email')
    admin_parser.add_argument('--name')
    admin_parser.add_argument('--role', choices=['admin', 'manager'], default='admin')

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        'status': cmd_status,
        'reconcile-balances': cmd_reconcile,
        'overdue-report': cmd_overdue_report,
        'load-slabs': cmd_load_slabs,
        'create-admin': cmd_create_admin,
    }

    try:
        commands[args.command](args)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        sys.exit(1)
    except Exception as e:
        logger.exception("Unexpected error occurred")
        print(f"❌ Unexpected error: {str(e)}")
        sys.exit(1)

if __name__ == "__main__":
    main()
