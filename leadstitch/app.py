import argparse
import json
from datetime import datetime
from pathlib import Path

from . import __version__
from .database import Account, NormalizedEvent, init_database, get_session_factory, session_scope
from .env import load_env, load_settings
from .errors import LeadStitchError, PolicyValidationError
from .logger import get_logger
from .policy import POLICY_PRESETS, parse_policy
from .schema import validate_policy_document
from pipelines.backfill.full_rebuild import rebuild_attribution
from pipelines.matching.orchestrator import load_job_policy, release_job, run_match
from storage.repositories.accounts import create_account, ensure_plans
from storage.repositories.events import store_upload
from storage.repositories.leads import list_leads
from storage.repositories.policies import add_policy, list_policies
from storage.repositories.usage import usage_summary

import yaml


def _factory(args: argparse.Namespace):
    db_path = Path(args.db)
    init_database(db_path)
    return get_session_factory(db_path)


def _parse_ids(raw: str) -> list:
    return [int(x) for x in raw.split(",") if x.strip()]


def cmd_init_db(args: argparse.Namespace) -> None:
    init_database(Path(args.db))
    print(f"Initialized database at {args.db}")


def cmd_seed(args: argparse.Namespace) -> None:
    factory = _factory(args)
    with session_scope(factory) as session:
        added = ensure_plans(session)
        account = create_account(session, args.name, plan_code=args.plan or None)
        account_id = account.id
    print(f"Plans added: {added}")
    print(f"Account: {account_id} ({args.name})")


def cmd_load_events(args: argparse.Namespace) -> None:
    input_path = Path(args.input)
    if not input_path.exists():
        raise SystemExit(f"Input file not found: {input_path}")
    with input_path.open("r", encoding="utf-8") as f:
        records = json.load(f)
    if not isinstance(records, list):
        raise SystemExit("Input must be a JSON array of normalized event records")

    factory = _factory(args)
    with session_scope(factory) as session:
        if session.get(Account, args.account) is None:
            raise SystemExit(f"Account not found: {args.account}")
        upload, errors = store_upload(
            session,
            args.account,
            args.filename or input_path.name,
            records,
            source_type=args.source_type,
        )
        upload_id = upload.id
        stored = session.query(NormalizedEvent).filter_by(upload_id=upload_id).count()
    print(f"Upload: {upload_id}")
    print(f"Stored: {stored}")
    for e in errors:
        print(f" - {e}")


def cmd_policy_validate(args: argparse.Namespace) -> None:
    input_path = Path(args.input)
    if not input_path.exists():
        raise SystemExit(f"Input file not found: {input_path}")
    try:
        data = yaml.safe_load(input_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        print("Invalid:")
        print(f" - {e}")
        raise SystemExit(2)
    errors = validate_policy_document(data)
    if errors:
        print("Invalid:")
        for e in errors:
            print(f" - {e}")
        raise SystemExit(2)
    print("Valid")


def cmd_policy_add(args: argparse.Namespace) -> None:
    input_path = Path(args.input)
    if not input_path.exists():
        raise SystemExit(f"Input file not found: {input_path}")
    factory = _factory(args)
    try:
        with session_scope(factory) as session:
            policy = add_policy(
                session, args.account, args.name, input_path.read_text(encoding="utf-8"), args.default
            )
            policy_id = policy.id
    except PolicyValidationError as e:
        print(f"Invalid: {e}")
        for p in e.problems:
            print(f" - {p}")
        raise SystemExit(2)
    print(f"Policy: {policy_id} ({args.name})")


def cmd_policy_list(args: argparse.Namespace) -> None:
    factory = _factory(args)
    with session_scope(factory) as session:
        policies = list_policies(session, args.account)
        rows = [(p.id, p.name, p.is_default) for p in policies]
    if not rows:
        print("No stored policies.")
    for policy_id, name, is_default in rows:
        marker = " (default)" if is_default else ""
        print(f"{policy_id}: {name}{marker}")


def cmd_policy_presets(args: argparse.Namespace) -> None:
    for key, document in POLICY_PRESETS.items():
        policy = parse_policy(document)
        print(f"{key}: {policy.name} [{policy.attribution_mode.value}]")
        if args.show:
            print(document)
            print()


def _policy_document(args: argparse.Namespace):
    if getattr(args, "preset", None):
        if args.preset not in POLICY_PRESETS:
            raise SystemExit(f"Unknown preset: {args.preset}")
        return POLICY_PRESETS[args.preset]
    if getattr(args, "policy_file", None):
        return Path(args.policy_file).read_text(encoding="utf-8")
    return None


def cmd_match(args: argparse.Namespace) -> None:
    settings = load_settings()
    factory = _factory(args)
    try:
        summary = run_match(
            factory,
            args.account,
            _parse_ids(args.uploads),
            policy_document=_policy_document(args),
            policy_id=args.policy_id,
            settings=settings,
        )
    except LeadStitchError as e:
        print(f"Match job failed: {e}")
        raise SystemExit(1)
    print(json.dumps(summary.to_dict(), indent=2))


def cmd_release_job(args: argparse.Namespace) -> None:
    factory = _factory(args)
    if release_job(factory, args.job):
        print(f"Released job {args.job}")
    else:
        print(f"Job {args.job} is not running")


def cmd_rebuild(args: argparse.Namespace) -> None:
    settings = load_settings()
    factory = _factory(args)
    try:
        policy = load_job_policy(
            factory, args.account, _policy_document(args), args.policy_id, settings.db_retries
        )
        rebuilt = rebuild_attribution(factory, args.account, policy, settings=settings)
    except LeadStitchError as e:
        print(f"Rebuild failed: {e}")
        raise SystemExit(1)
    print(f"Rebuilt attribution for {rebuilt} leads ({policy.name})")


def cmd_usage(args: argparse.Namespace) -> None:
    settings = load_settings()
    factory = _factory(args)
    with session_scope(factory) as session:
        summary = usage_summary(session, args.account, datetime.now(), settings.default_plan_limit)
    print(json.dumps(summary, indent=2))


def cmd_leads(args: argparse.Namespace) -> None:
    factory = _factory(args)
    with session_scope(factory) as session:
        leads = list_leads(session, args.account, limit=args.limit)
        if not leads:
            print("No leads for account.")
            return
        print(f"Found {len(leads)} leads:\n")
        for lead in leads:
            print(f"ID: {lead.stitch_id}")
            print(f"  Name: {lead.name}")
            print(f"  Phone: {lead.phone}")
            print(f"  Email: {lead.email}")
            print(f"  Channel: {lead.final_channel} ({lead.final_source}/{lead.final_medium})")
            print(f"  Revenue: {lead.revenue:.2f}  Confidence: {lead.confidence:.2f}")
            print()


def main():
    # Load .env if present (LEADSTITCH_DB_PATH, LEADSTITCH_LOG_LEVEL, etc.)
    load_env()
    settings = load_settings()
    get_logger(level=settings.log_level, log_dir=settings.log_dir)

    parser = argparse.ArgumentParser(prog="leadstitch", description="LeadStitch: lead matching and attribution")
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument("--db", default=str(settings.db_path), help=f"SQLite database (default: {settings.db_path})")

    subparsers = parser.add_subparsers(dest="command")

    ini = subparsers.add_parser("init-db", help="Create database tables")
    ini.set_defaults(func=cmd_init_db)

    sed = subparsers.add_parser("seed", help="Seed plans and create an account")
    sed.add_argument("--name", required=True, help="Account name")
    sed.add_argument("--plan", default="FREE", help="Plan code (FREE, STARTER, PRO; empty for none)")
    sed.set_defaults(func=cmd_seed)

    lde = subparsers.add_parser("load-events", help="Store a JSON array of normalized events as one upload")
    lde.add_argument("--account", type=int, required=True, help="Account id")
    lde.add_argument("--input", required=True, help="Path to JSON array of event records")
    lde.add_argument("--filename", help="Source file name recorded for audit (default: input name)")
    lde.add_argument("--source-type", choices=["calls", "forms", "appts", "invoices", "chats"],
                     help="Source type applied to records that omit it")
    lde.set_defaults(func=cmd_load_events)

    pol = subparsers.add_parser("policy", help="Policy documents")
    pol_sub = pol.add_subparsers(dest="policy_command")

    pval = pol_sub.add_parser("validate", help="Validate a policy YAML file")
    pval.add_argument("--input", required=True, help="Path to policy YAML")
    pval.set_defaults(func=cmd_policy_validate)

    padd = pol_sub.add_parser("add", help="Store a policy for an account")
    padd.add_argument("--account", type=int, required=True, help="Account id")
    padd.add_argument("--name", required=True, help="Policy name (unique per account)")
    padd.add_argument("--input", required=True, help="Path to policy YAML")
    padd.add_argument("--default", action="store_true", help="Make this the account default")
    padd.set_defaults(func=cmd_policy_add)

    plst = pol_sub.add_parser("list", help="List stored policies")
    plst.add_argument("--account", type=int, required=True, help="Account id")
    plst.set_defaults(func=cmd_policy_list)

    ppre = pol_sub.add_parser("presets", help="List built-in policy presets")
    ppre.add_argument("--show", action="store_true", help="Print preset YAML")
    ppre.set_defaults(func=cmd_policy_presets)

    for name, func, help_text in (
        ("match", cmd_match, "Run a match job over uploads"),
        ("rebuild", cmd_rebuild, "Recompute attribution for all leads"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--account", type=int, required=True, help="Account id")
        if name == "match":
            sub.add_argument("--uploads", required=True, help="Comma-separated upload ids")
        sub.add_argument("--policy-id", type=int, help="Stored policy id")
        sub.add_argument("--policy-file", help="Policy YAML file (overrides --policy-id)")
        sub.add_argument("--preset", help="Built-in preset key (overrides --policy-file)")
        sub.set_defaults(func=func)

    rel = subparsers.add_parser("release-job", help="Mark a stuck running match job failed")
    rel.add_argument("--job", type=int, required=True, help="Match job id")
    rel.set_defaults(func=cmd_release_job)

    use = subparsers.add_parser("usage", help="Show usage for the current billing period")
    use.add_argument("--account", type=int, required=True, help="Account id")
    use.set_defaults(func=cmd_usage)

    lst = subparsers.add_parser("leads", help="List stitched leads")
    lst.add_argument("--account", type=int, required=True, help="Account id")
    lst.add_argument("--limit", type=int, help="Optional limit on leads shown")
    lst.set_defaults(func=cmd_leads)

    args = parser.parse_args()

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        args.func(args)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
