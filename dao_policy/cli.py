"""
DAO Policy CLI — Inspect and evaluate policy documents from the shell.

Usage:
    python -m dao_policy.cli init admin.near --output policy.json
    python -m dao_policy.cli check policy.json
    python -m dao_policy.cli can policy.json alice.near transfer vote_approve --balance 10
    python -m dao_policy.cli status policy.json transfer --total-supply 100 --approve 50

Exit codes:
    0  allowed / approved-or-evaluated / no problems
    1  denied / problems found
    2  the policy could not be loaded or evaluated
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

import structlog
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from dao_policy.config import settings
from dao_policy.policy.codec import (
    dumps_policy,
    encode_weight_kind,
    encode_weight_or_ratio,
    loads_policy,
    policy_hash,
)
from dao_policy.policy.engine import PolicyEngine, audit_policy
from dao_policy.policy.errors import PolicyError
from dao_policy.policy.roles import kind_name
from dao_policy.policy.schema import (
    Action,
    Everyone,
    Group,
    Member,
    MemberBalance,
    Policy,
    Proposal,
    ProposalKind,
    ProposalStatus,
    Regex,
    RoleKind,
    UserInfo,
    Vote,
    VotePolicy,
    default_policy,
)

console = Console()
log = structlog.get_logger()

EXIT_OK = 0
EXIT_DENIED = 1
EXIT_ERROR = 2


def configure_logging() -> None:
    """Configure structured logging."""
    level = settings.log_level.upper()
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            (
                structlog.dev.ConsoleRenderer()
                if settings.log_format != "json"
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        # main() may run repeatedly in one process with sys.stderr swapped between runs
        cache_logger_on_first_use=False,
    )


def _describe_kind(kind: RoleKind) -> str:
    if isinstance(kind, (Everyone, Member)):
        return "-"
    if isinstance(kind, MemberBalance):
        return f"balance ≥ {kind.threshold}"
    if isinstance(kind, Group):
        return ", ".join(sorted(kind.accounts)) or "(empty)"
    if isinstance(kind, Regex):
        return kind.pattern
    raise TypeError(f"Unknown role kind: {kind!r}")


def _describe_vote_policy(vote_policy: VotePolicy) -> tuple[str, str]:
    return (
        escape(json.dumps(encode_weight_kind(vote_policy.weight_kind))),
        escape(json.dumps(encode_weight_or_ratio(vote_policy.threshold))),
    )


def _load(path: str) -> Policy:
    return loads_policy(Path(path).read_text(encoding="utf-8"))


# ════════════════════════════════════════════════════════════════
# Commands
# ════════════════════════════════════════════════════════════════


def cmd_init(args: argparse.Namespace) -> int:
    policy = default_policy(
        args.admin,
        bounty_bond=args.bond,
        bounty_forgiveness_period=args.forgiveness_ns,
    )
    text = dumps_policy(policy)
    if args.output:
        path = Path(args.output)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text + "\n", encoding="utf-8")
        console.print(f"Default policy for [bold]{args.admin}[/bold] written to {path}")
    else:
        console.print_json(text)
    log.info("dao_policy.cli.policy_created", admin=args.admin, hash=policy_hash(policy))
    return EXIT_OK


def cmd_check(args: argparse.Namespace) -> int:
    policy = _load(args.policy)

    console.print("\n[bold blue]═══ Policy Check ═══[/bold blue]")
    console.print(f"  Content hash: [bold]{policy_hash(policy)}[/bold]")
    console.print(f"  Bounty bond: {policy.bounty_bond}")
    console.print(f"  Forgiveness period: {policy.forgiveness_period}\n")

    roles = Table(title="Roles", show_lines=True)
    roles.add_column("Name", style="cyan")
    roles.add_column("Kind", style="green")
    roles.add_column("Detail", style="yellow")
    roles.add_column("Permissions")
    for role in policy.roles:
        roles.add_row(
            escape(role.name),
            kind_name(role.kind),
            escape(_describe_kind(role.kind)),
            "\n".join(sorted(role.permissions)),
        )
    console.print(roles)

    votes = Table(title="Vote Policies", show_lines=True)
    votes.add_column("Proposal kind", style="cyan")
    votes.add_column("Weight kind", style="green")
    votes.add_column("Threshold", style="yellow")
    votes.add_row("(default)", *_describe_vote_policy(policy.default_vote_policy))
    for label in sorted(policy.vote_policy):
        votes.add_row(label, *_describe_vote_policy(policy.vote_policy[label]))
    console.print(votes)

    problems = audit_policy(policy)
    log.info("dao_policy.cli.policy_checked", problems=len(problems))
    if problems:
        console.print(f"\n[bold red]✗ {len(problems)} problem(s)[/bold red]")
        for problem in problems:
            console.print(f"  • {escape(problem)}")
        return EXIT_DENIED

    console.print("\n[bold green]✓ No problems found[/bold green]")
    return EXIT_OK


def cmd_can(args: argparse.Namespace) -> int:
    engine = PolicyEngine(_load(args.policy))
    user = UserInfo(account_id=args.account, balance=args.balance)
    result = engine.check_permission(user, args.kind, args.action)

    log.info(
        "dao_policy.cli.permission_checked",
        account=user.account_id,
        kind=result.proposal_kind,
        action=result.action,
        allowed=result.allowed,
    )
    if result.allowed:
        console.print(f"[bold green]✓ ALLOWED[/bold green] {escape(result.reason)}")
        return EXIT_OK
    console.print(f"[bold red]✗ DENIED[/bold red] {escape(result.reason)}")
    return EXIT_DENIED


def cmd_status(args: argparse.Namespace) -> int:
    engine = PolicyEngine(_load(args.policy))
    proposal = Proposal(
        kind=ProposalKind(args.kind),
        status=ProposalStatus(args.status),
        vote_counts={
            Vote.APPROVE: args.approve,
            Vote.REJECT: args.reject,
            Vote.REMOVE: args.remove,
        },
    )
    result = engine.tally(proposal, args.total_supply)

    log.info(
        "dao_policy.cli.status_evaluated",
        kind=args.kind,
        threshold=result.threshold,
        status=result.status.value,
    )
    source = f"override for '{args.kind}'" if result.overridden else "default vote policy"
    console.print(f"  Vote policy: {source}")
    console.print(f"  Threshold: [bold]{result.threshold}[/bold]")
    console.print(f"  Status: [bold]{result.status.value}[/bold]")
    return EXIT_OK


# ════════════════════════════════════════════════════════════════
# Entry Point
# ════════════════════════════════════════════════════════════════


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dao-policy",
        description="DAO governance policy inspector and evaluator",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    init = sub.add_parser("init", help="Create the default policy for an administrator")
    init.add_argument("admin", help="Administrator account, sole council member")
    init.add_argument("--bond", type=int, default=None, help="Bounty bond (yocto)")
    init.add_argument(
        "--forgiveness-ns", type=int, default=None, help="Bounty forgiveness period (ns)"
    )
    init.add_argument("--output", "-o", default=None, help="Write to file instead of stdout")
    init.set_defaults(handler=cmd_init)

    check = sub.add_parser("check", help="Show a policy and report configuration problems")
    check.add_argument("policy", help="Policy JSON file")
    check.set_defaults(handler=cmd_check)

    can = sub.add_parser("can", help="Check whether an account may perform an action")
    can.add_argument("policy", help="Policy JSON file")
    can.add_argument("account", help="Caller account id")
    can.add_argument("kind", choices=[k.value for k in ProposalKind])
    can.add_argument("action", choices=[a.value for a in Action])
    can.add_argument("--balance", type=int, default=None, help="Caller token balance")
    can.set_defaults(handler=cmd_can)

    status = sub.add_parser("status", help="Evaluate a proposal's status from its votes")
    status.add_argument("policy", help="Policy JSON file")
    status.add_argument("kind", choices=[k.value for k in ProposalKind])
    status.add_argument("--total-supply", type=int, required=True)
    status.add_argument("--approve", type=int, default=0)
    status.add_argument("--reject", type=int, default=0)
    status.add_argument("--remove", type=int, default=0)
    status.add_argument(
        "--status",
        default=ProposalStatus.IN_PROGRESS.value,
        choices=[s.value for s in ProposalStatus],
        help="Current proposal status",
    )
    status.set_defaults(handler=cmd_status)

    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging()
    try:
        code = args.handler(args)
    except (PolicyError, ValueError, OSError) as e:
        log.error("dao_policy.cli.failed", command=args.command, error=str(e))
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        code = EXIT_ERROR
    sys.exit(code)


if __name__ == "__main__":
    main()
