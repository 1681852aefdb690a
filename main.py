"""
Main module for the personal finance tracker.

Command-line front end over FinanceApp:
1. Loads configuration and sets up logging
2. Opens the database
3. Routes the subcommand (fund, expense, envelopes, analyze, obligations,
   summary, debts, goals, export, import, backups)
"""

import argparse
import logging
import sys
from datetime import date
from pathlib import Path
from typing import List, Optional

from backup import list_backups, restore_backup
from config_manager import load_config
from database_ops import DatabaseManager
from exceptions import FinanceAppError
from financial_app import FinanceApp
from report_generator import ReportGenerator
from results import OperationResult
from utils import ensure_data_dir, prompt_user_choice, resolve_connection_string, resolve_log_path

# Configure module-level logger
logger = logging.getLogger(__name__)


def setup_logging(config: dict) -> None:
    """
    Configure logging based on config settings.

    Args:
        config: Configuration dictionary with logging settings
    """
    log_config = config.get("logging", {})
    log_level = getattr(logging, str(log_config.get("level", "INFO")).upper(), None)
    if not isinstance(log_level, int):
        log_level = logging.INFO
    log_format = log_config.get("format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    log_file = log_config.get("file")

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        try:
            log_path = resolve_log_path(log_file)
        except OSError as exc:
            raise RuntimeError(f"Unable to prepare log file path '{log_file}': {exc}") from exc
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=handlers,
        force=True
    )


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid date '{value}', expected YYYY-MM-DD") from e


def report_result(result: OperationResult, success_message: str = "") -> int:
    """
    Print a result's warnings or error.

    Returns:
        Process exit code (0 on success, 1 on failure)
    """
    for warning in result.warnings:
        print(f"Warning: {warning}")
    if not result.ok:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1
    if success_message and not result.noop:
        print(success_message)
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with every subcommand."""
    parser = argparse.ArgumentParser(
        description="Personal finance tracker: available funds, envelopes, spending analysis, debts and goals",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="Path to configuration file (default: config.yaml)"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Fund
    fund_parser = subparsers.add_parser("fund", help="Show or change the available funds")
    fund_sub = fund_parser.add_subparsers(dest="fund_action")
    fund_sub.add_parser("show", help="Show the balance")
    fund_deposit = fund_sub.add_parser("deposit", help="Deposit money (payroll or other income)")
    fund_deposit.add_argument("amount", type=str, help="Amount to deposit")
    fund_deposit.add_argument("--date", type=_parse_date, help="Deposit date (YYYY-MM-DD)")
    fund_set = fund_sub.add_parser("set", help="Correct the balance manually")
    fund_set.add_argument("amount", type=str, help="Real balance")
    fund_set.add_argument("--reason", type=str, default="", help="Reason for the correction")

    # Expenses
    expense_parser = subparsers.add_parser("expense", aliases=["exp"], help="Manage one-off expenses and income")
    expense_sub = expense_parser.add_subparsers(dest="expense_action")
    exp_add = expense_sub.add_parser("add", help="Record an expense or income")
    exp_add.add_argument("concept", type=str, help="Short description")
    exp_add.add_argument("amount", type=str, help="Amount")
    exp_add.add_argument("--category", type=str, default="", help="Category label")
    exp_add.add_argument("--date", type=_parse_date, help="Date (YYYY-MM-DD)")
    exp_add.add_argument("--income", action="store_true", help="Record income instead of an expense")
    exp_add.add_argument("--envelope", type=str, help="Envelope id to spend from")
    exp_edit = expense_sub.add_parser("edit", help="Edit a transaction")
    exp_edit.add_argument("id", type=str, help="Transaction id")
    exp_edit.add_argument("--concept", type=str)
    exp_edit.add_argument("--amount", type=str)
    exp_edit.add_argument("--category", type=str)
    exp_edit.add_argument("--date", type=_parse_date)
    exp_delete = expense_sub.add_parser("delete", help="Delete a transaction")
    exp_delete.add_argument("id", type=str, help="Transaction id")
    exp_list = expense_sub.add_parser("list", help="List transactions")
    exp_list.add_argument("--month", type=str, help="Only this month (YYYY-MM)")
    exp_list.add_argument("--export", type=str, metavar="FILE", help="Export to CSV file")

    # Envelopes
    env_parser = subparsers.add_parser("envelopes", aliases=["env"], help="Manage envelopes")
    env_sub = env_parser.add_subparsers(dest="envelope_action")
    env_sub.add_parser("list", help="Show envelopes and their health")
    env_assign = env_sub.add_parser("assign", help="Set an envelope's assigned amount")
    env_assign.add_argument("id", type=str)
    env_assign.add_argument("amount", type=str)
    env_transfer = env_sub.add_parser("transfer", help="Move money between envelopes")
    env_transfer.add_argument("from_id", type=str)
    env_transfer.add_argument("to_id", type=str)
    env_transfer.add_argument("amount", type=str)
    env_spend = env_sub.add_parser("spend", help="Record spending against an envelope")
    env_spend.add_argument("id", type=str)
    env_spend.add_argument("amount", type=str)
    env_create = env_sub.add_parser("create", help="Create a custom envelope")
    env_create.add_argument("name", type=str)
    env_create.add_argument("--color", type=str, default="gray")
    env_create.add_argument("--kind", type=str, default="variable", choices=["fixed", "variable", "savings", "debt"])
    env_delete = env_sub.add_parser("delete", help="Delete a custom envelope")
    env_delete.add_argument("id", type=str)
    env_sub.add_parser("auto", help="Distribute the fund with the configured split")

    # Analysis
    analyze_parser = subparsers.add_parser("analyze", help="Analyze a month's spending distribution")
    analyze_parser.add_argument("--month", type=str, help="Month (YYYY-MM), default current")
    analyze_parser.add_argument("--income", type=str, help="Monthly income (default: deposits + income records)")
    analyze_parser.add_argument("--export", type=str, metavar="FILE", help="Export bucket table to CSV")
    summary_parser = subparsers.add_parser("summary", help="Income, fixed and variable totals of a month")
    summary_parser.add_argument("--month", type=str, help="Month (YYYY-MM), default current")

    # Obligations
    obl_parser = subparsers.add_parser("obligations", aliases=["fixed"], help="Manage recurring obligations")
    obl_sub = obl_parser.add_subparsers(dest="obligation_action")
    obl_add = obl_sub.add_parser("add", help="Add a recurring obligation")
    obl_add.add_argument("name", type=str)
    obl_add.add_argument("amount", type=str, help="Monthly amount")
    obl_add.add_argument("--day", type=int, default=1, help="Charge day of month (1-31)")
    obl_add.add_argument("--kind", type=str, default="other", choices=["subscription", "service", "debt", "other"])
    obl_add.add_argument("--installments", type=int, help="Installments remaining")
    obl_add.add_argument("--total-installments", type=int, help="Total installments")
    obl_add.add_argument("--rate", type=str, help="Annual interest rate in percent")
    obl_add.add_argument("--category", type=str, default="")
    obl_sub.add_parser("list", help="List recurring obligations")
    obl_status = obl_sub.add_parser("status", help="Pause, end or reactivate an obligation")
    obl_status.add_argument("id", type=str)
    obl_status.add_argument("status", type=str, choices=["active", "paused", "ended"])
    obl_delete = obl_sub.add_parser("delete", help="Delete an obligation")
    obl_delete.add_argument("id", type=str)
    obl_calendar = obl_sub.add_parser("calendar", help="Charges of a month by day")
    obl_calendar.add_argument("--month", type=str, help="Month (YYYY-MM), default current from today on")

    # Debts
    debts_parser = subparsers.add_parser("debts", help="Project debt payoff")
    debts_parser.add_argument("--strategy", type=str, default="snowball", choices=["snowball", "avalanche"])
    debts_parser.add_argument("--extra", type=str, default="0", help="Extra monthly payment")
    debts_parser.add_argument("--export", type=str, metavar="FILE", help="Export the schedule to CSV")

    # Goals
    goals_parser = subparsers.add_parser("goals", help="Manage savings goals")
    goals_sub = goals_parser.add_subparsers(dest="goal_action")
    goals_sub.add_parser("list", help="List goals")
    goal_create = goals_sub.add_parser("create", help="Create a goal")
    goal_create.add_argument("name", type=str)
    goal_create.add_argument("target", type=str)
    goal_create.add_argument("--deadline", type=str, help="Deadline month (YYYY-MM)")
    goal_contribute = goals_sub.add_parser("contribute", help="Contribute to a goal")
    goal_contribute.add_argument("id", type=str)
    goal_contribute.add_argument("amount", type=str)
    goal_contribute.add_argument("--source", type=str, default="manual")

    # Snapshots
    export_parser = subparsers.add_parser("export", help="Export all data as JSON")
    export_parser.add_argument("file", type=str, help="Output file")
    import_parser = subparsers.add_parser("import", help="Replace all data with a JSON export")
    import_parser.add_argument("file", type=str, help="Input file (current or legacy format)")
    import_parser.add_argument("--yes", "-y", action="store_true", help="Skip confirmation prompt")

    # Backups
    backups_parser = subparsers.add_parser("backups", help="List or restore database backups")
    backups_sub = backups_parser.add_subparsers(dest="backup_action")
    backups_sub.add_parser("list", help="List backups, newest first")
    backup_restore = backups_sub.add_parser("restore", help="Copy a backup over the database")
    backup_restore.add_argument("file", type=str, help="Backup file (see backups list)")
    backup_restore.add_argument("--yes", "-y", action="store_true", help="Skip confirmation prompt")

    return parser


def handle_fund_command(args: argparse.Namespace, app: FinanceApp, reports: ReportGenerator) -> int:
    if args.fund_action == "deposit":
        return report_result(app.deposit(args.amount, args.date), "Deposit recorded.")
    if args.fund_action == "set":
        return report_result(app.set_balance(args.amount, args.reason), "Balance updated.")
    print(reports.fund_report(app.fund_status()))
    return 0


def handle_expense_command(args: argparse.Namespace, app: FinanceApp, reports: ReportGenerator) -> int:
    action = args.expense_action
    if action == "add":
        result = app.add_transaction(
            args.concept,
            args.amount,
            category=args.category,
            on_date=args.date,
            kind="income" if args.income else "expense",
            envelope_id=args.envelope
        )
        return report_result(result, "Transaction recorded.")
    if action == "edit":
        fields = {
            name: value
            for name, value in (("concept", args.concept), ("amount", args.amount), ("category", args.category), ("date", args.date))
            if value is not None
        }
        if not fields:
            print("Error: nothing to edit", file=sys.stderr)
            return 1
        return report_result(app.edit_transaction(args.id, **fields), "Transaction updated.")
    if action == "delete":
        return report_result(app.delete_transaction(args.id), "Transaction deleted.")
    if action == "list":
        transactions = app.list_transactions(args.month)
        print(reports.transactions_report(transactions))
        if args.export:
            reports.export_to_csv(reports.transactions_frame(transactions), Path(args.export), "transactions")
        return 0
    print("Error: No action specified. Use 'add', 'edit', 'delete', or 'list'", file=sys.stderr)
    return 1


def handle_envelopes_command(args: argparse.Namespace, app: FinanceApp, reports: ReportGenerator) -> int:
    action = args.envelope_action
    if action == "assign":
        return report_result(app.assign_envelope(args.id, args.amount), "Envelope updated.")
    if action == "transfer":
        return report_result(app.transfer_between_envelopes(args.from_id, args.to_id, args.amount), "Transfer done.")
    if action == "spend":
        return report_result(app.spend_from_envelope(args.id, args.amount), "Spending recorded.")
    if action == "create":
        return report_result(app.create_envelope(args.name, args.color, args.kind), "Envelope created.")
    if action == "delete":
        return report_result(app.delete_envelope(args.id), "Envelope deleted.")
    if action == "auto":
        code = report_result(app.auto_allocate(), "Fund distributed.")
        if code:
            return code
    print(reports.envelopes_report(app.load_envelopes(), app.envelope_health()))
    return 0


def handle_analyze_command(args: argparse.Namespace, app: FinanceApp, reports: ReportGenerator) -> int:
    result = app.analyze_month(args.month, args.income)
    if not result.ok:
        return report_result(result)
    for warning in result.warnings:
        print(f"Warning: {warning}")
    print(reports.distribution_report(result.state, args.month or ""))
    if args.export:
        reports.export_to_csv(reports.distribution_frame(result.state), Path(args.export), "distribution")
    return 0


def handle_obligations_command(args: argparse.Namespace, app: FinanceApp, reports: ReportGenerator) -> int:
    if args.obligation_action == "add":
        result = app.add_obligation(
            args.name,
            args.amount,
            day_of_month=args.day,
            kind=args.kind,
            installments_remaining=args.installments,
            installments_total=args.total_installments,
            interest_rate_pct=args.rate,
            category=args.category
        )
        return report_result(result, "Obligation added.")
    if args.obligation_action == "status":
        return report_result(app.set_obligation_status(args.id, args.status), f"Obligation {args.id} is now {args.status}.")
    if args.obligation_action == "delete":
        return report_result(app.delete_obligation(args.id), "Obligation deleted.")
    if args.obligation_action == "calendar":
        result = app.upcoming_charges(args.month)
        if not result.ok:
            return report_result(result)
        print(reports.charges_report(result.state))
        return 0
    print(reports.obligations_report(app.list_obligations()))
    return 0


def handle_summary_command(args: argparse.Namespace, app: FinanceApp, reports: ReportGenerator) -> int:
    result = app.month_summary(args.month)
    if not result.ok:
        return report_result(result)
    print(reports.month_summary_report(result.state))
    return 0


def handle_debts_command(args: argparse.Namespace, app: FinanceApp, reports: ReportGenerator) -> int:
    result = app.plan_debts(args.strategy, args.extra)
    if not result.ok:
        return report_result(result)
    for warning in result.warnings:
        print(f"Warning: {warning}")
    print(reports.payoff_report(result.state))
    if args.export and hasattr(result.state, "schedule_frame"):
        reports.export_to_csv(result.state.schedule_frame(), Path(args.export), "payoff schedule")
    return 0


def handle_goals_command(args: argparse.Namespace, app: FinanceApp, reports: ReportGenerator) -> int:
    if args.goal_action == "create":
        return report_result(app.create_goal(args.name, args.target, args.deadline), "Goal created.")
    if args.goal_action == "contribute":
        return report_result(app.contribute_to_goal(args.id, args.amount, args.source), "Contribution recorded.")
    print(reports.goals_report(app.list_goals(), app.goals, app.goal_suggestions()))
    return 0


def handle_import_command(args: argparse.Namespace, app: FinanceApp) -> int:
    """
    Replace all stored data with an export file.

    Asks for confirmation unless --yes is given; the database is backed up
    before anything is written.
    """
    path = Path(args.file)
    if not path.exists():
        print(f"Error: File not found: {path}", file=sys.stderr)
        return 1

    if not args.yes:
        choice = prompt_user_choice(
            "This replaces ALL stored data. A backup is taken first. Continue?",
            {"y": "yes", "n": "no"},
            default="n"
        )
        if choice != "y":
            print("Import cancelled.")
            return 0

    result = app.import_snapshot(path.read_text(encoding="utf-8"))
    return report_result(result, f"Imported {path}.")


def handle_backups_command(args: argparse.Namespace, config: dict, connection_string: str) -> int:
    """
    List backups or restore one.

    Runs without an open database so a restore never copies over a live
    connection. Restoring asks for confirmation unless --yes is given.
    """
    if args.backup_action == "restore":
        if not args.yes:
            choice = prompt_user_choice(
                f"Overwrite the current database with {args.file}?",
                {"y": "yes", "n": "no"},
                default="n"
            )
            if choice != "y":
                print("Restore cancelled.")
                return 0
        restore_backup(args.file, connection_string)
        print(f"Restored {args.file}.")
        return 0

    backups = list_backups(connection_string, config)
    if not backups:
        print("No backups found.")
    for path in backups:
        print(path)
    return 0


def run_command(args: argparse.Namespace, app: FinanceApp) -> int:
    """Route a parsed command to its handler."""
    reports = ReportGenerator()
    command = args.command
    if command == "fund":
        return handle_fund_command(args, app, reports)
    if command in ("expense", "exp"):
        return handle_expense_command(args, app, reports)
    if command in ("envelopes", "env"):
        return handle_envelopes_command(args, app, reports)
    if command == "analyze":
        return handle_analyze_command(args, app, reports)
    if command == "summary":
        return handle_summary_command(args, app, reports)
    if command in ("obligations", "fixed"):
        return handle_obligations_command(args, app, reports)
    if command == "debts":
        return handle_debts_command(args, app, reports)
    if command == "goals":
        return handle_goals_command(args, app, reports)
    if command == "export":
        app.export_snapshot(args.file)
        print(f"Exported to {args.file}")
        return 0
    if command == "import":
        return handle_import_command(args, app)
    print(f"Error: Unknown command '{command}'", file=sys.stderr)
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Handle case where no command is provided
    if not args.command:
        parser.print_help()
        return 1

    config = load_config(args.config)

    # Ensure data directory exists before logging/database work
    try:
        ensure_data_dir(config)
    except OSError as exc:
        print(f"Failed to prepare data directory: {exc}", file=sys.stderr)
        return 1

    setup_logging(config)

    db_manager = None
    try:
        connection_string = resolve_connection_string(config)
        if args.command == "backups":
            return handle_backups_command(args, config, connection_string)
        db_manager = DatabaseManager(connection_string)
        db_manager.create_tables()
        return run_command(args, FinanceApp(db_manager, config))
    except FinanceAppError as e:
        logger.error(f"Command '{args.command}' failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        if db_manager is not None:
            db_manager.close()


if __name__ == "__main__":
    sys.exit(main())
