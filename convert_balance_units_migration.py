"""
Migration: convert every account balance from one unit to another (e.g. tokens -> cents).

new_balance = round(balance * numerator / denominator), rounding halves up.
All accounts and the balance_unit_conversions audit row are written in one transaction,
so either every balance is converted or none is. A conversion name can only be applied once.

After converting, update BALANCE_UNIT (and plan amounts) in app/core/plans.py to match.

Usage:
    python convert_balance_units_migration.py --name tokens-to-cents-2026 \
        --from-unit tokens --to-unit cents --numerator 1000 --denominator 150000 [--dry-run]
"""
import argparse
import sys

from dotenv import load_dotenv

load_dotenv()

from sqlalchemy.orm import Session

from app.core.plans import BALANCE_UNIT
from app.db.base import Base
from app.models import Account, BalanceUnitConversion


class ConversionRefused(Exception):
    pass


def convert_balance(balance: int, numerator: int, denominator: int) -> int:
    """Integer round-half-up of balance * numerator / denominator."""
    return (balance * numerator * 2 + denominator) // (2 * denominator)


def run_conversion(
    engine,
    name: str,
    from_unit: str,
    to_unit: str,
    numerator: int,
    denominator: int,
    dry_run: bool = False,
) -> int:
    """Convert all balances. Returns the number of accounts converted (or that would be)."""
    if numerator <= 0 or denominator <= 0:
        raise ConversionRefused("numerator and denominator must be positive")
    if from_unit == to_unit:
        raise ConversionRefused("from-unit and to-unit must differ")

    Base.metadata.create_all(bind=engine, tables=[BalanceUnitConversion.__table__])

    with Session(engine) as db:
        previous = db.query(BalanceUnitConversion).filter(BalanceUnitConversion.name == name).first()
        if previous is not None:
            raise ConversionRefused(
                f"Conversion '{name}' was already applied on {previous.created_at} "
                f"({previous.from_unit} -> {previous.to_unit})"
            )

        accounts = db.query(Account).order_by(Account.email).with_for_update().all()
        for account in accounts:
            new_balance = convert_balance(account.balance, numerator, denominator)
            print(f"  {account.email}: {account.balance} {from_unit} -> {new_balance} {to_unit}")
            account.balance = new_balance

        db.add(BalanceUnitConversion(
            name=name,
            from_unit=from_unit,
            to_unit=to_unit,
            numerator=numerator,
            denominator=denominator,
            accounts_converted=len(accounts),
        ))

        if dry_run:
            db.rollback()
            print(f"🔎 Dry run: {len(accounts)} accounts would be converted; nothing written")
        else:
            db.commit()
            print(f"✅ Converted {len(accounts)} accounts from {from_unit} to {to_unit}")
        return len(accounts)


def run_migration(argv=None) -> bool:
    parser = argparse.ArgumentParser(description="Convert all account balances between units.")
    parser.add_argument("--name", required=True, help="Unique name recorded in the audit table")
    parser.add_argument("--from-unit", required=True)
    parser.add_argument("--to-unit", required=True)
    parser.add_argument("--numerator", type=int, required=True)
    parser.add_argument("--denominator", type=int, required=True)
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args(argv)

    if args.from_unit != BALANCE_UNIT:
        print(f"⚠️ Configured BALANCE_UNIT is '{BALANCE_UNIT}', converting from '{args.from_unit}'")

    from app.db.session import engine

    try:
        run_conversion(
            engine,
            name=args.name,
            from_unit=args.from_unit,
            to_unit=args.to_unit,
            numerator=args.numerator,
            denominator=args.denominator,
            dry_run=args.dry_run,
        )
    except ConversionRefused as e:
        print(f"❌ Conversion refused: {e}")
        return False
    except Exception as e:
        print(f"❌ Balance unit conversion failed: {str(e)}")
        return False

    if not args.dry_run and args.to_unit != BALANCE_UNIT:
        print(f"➡️  Now set BALANCE_UNIT = \"{args.to_unit}\" in app/core/plans.py")
    return True


if __name__ == "__main__":
    sys.exit(0 if run_migration() else 1)
