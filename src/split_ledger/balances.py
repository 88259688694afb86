"""Balance computation for a group: who owes what, and who should pay whom.

Pure functions over an AppState. Nothing here mutates or persists anything;
balances are recomputed from scratch on every call.
"""

import logging
from decimal import Decimal

from .models import AppState, MemberBalance, SuggestedTransfer
from .money import from_milliunits, to_milliunits
from .splits import allocate_payer_credit

logger = logging.getLogger(__name__)


class _Tally:
    """Running owes/owed totals in integer milliunits."""

    __slots__ = ("owes", "owed")

    def __init__(self):
        self.owes = 0
        self.owed = 0


def compute_balances(state: AppState, group_id: str) -> dict[str, MemberBalance] | None:
    """
    Compute each member's balance within a group.

    Algorithm:
    1. Seed a zero balance for every member of the group
    2. Each expense credits its payers (equal division of the amount) and
       debits every member in split_details by their share
    3. Each settlement reduces the payer's owes and the receiver's owed
    4. net = owed - owes

    Sums are exact (milliunits), so the nets of a group always add up to zero
    and the order of expenses and settlements doesn't matter.

    Args:
        state: The ledger
        group_id: Group to compute balances for

    Returns:
        Member id -> balance, or None if the group doesn't exist
    """
    group = state.find_group(group_id)
    if group is None:
        return None

    tallies: dict[str, _Tally] = {member_id: _Tally() for member_id in group.members}

    def tally_for(member_id: str, source: str) -> _Tally:
        if member_id not in tallies:
            # Only legacy data can reference outsiders; validation rejects it now.
            logger.warning(
                f"{source} references member {member_id} outside group {group_id}"
            )
            tallies[member_id] = _Tally()
        return tallies[member_id]

    for expense in state.group_expenses(group_id):
        source = f"Expense {expense.id}"
        if not expense.paid_by:
            logger.warning(f"{source} has no payer; credit skipped")
        else:
            for member_id, credit in allocate_payer_credit(
                expense.amount, expense.paid_by
            ).items():
                tally_for(member_id, source).owed += to_milliunits(credit)

        for member_id, share in expense.split_details.items():
            tally_for(member_id, source).owes += to_milliunits(share)

    for settlement in state.group_settlements(group_id):
        source = f"Settlement {settlement.id}"
        amount = to_milliunits(settlement.amount)
        tally_for(settlement.from_member_id, source).owes -= amount
        tally_for(settlement.to_member_id, source).owed -= amount

    return {
        member_id: MemberBalance(
            owes=from_milliunits(tally.owes),
            owed=from_milliunits(tally.owed),
            net=from_milliunits(tally.owed - tally.owes),
        )
        for member_id, tally in tallies.items()
    }


def suggest_settlements(balances: dict[str, MemberBalance]) -> list[SuggestedTransfer]:
    """
    Suggest transfers that would bring every net balance to zero.

    Greedy matching: the largest debtor pays the largest creditor as much as
    possible, repeated until everyone is square. Ties are broken by member id
    so the suggestion is stable.

    Args:
        balances: Output of compute_balances

    Returns:
        Transfers from debtors to creditors
    """
    # [member_id, remaining milliunits], largest first
    debtors = sorted(
        ([member_id, -to_milliunits(b.net)] for member_id, b in balances.items() if b.net < 0),
        key=lambda item: (-item[1], item[0]),
    )
    creditors = sorted(
        ([member_id, to_milliunits(b.net)] for member_id, b in balances.items() if b.net > 0),
        key=lambda item: (-item[1], item[0]),
    )
    transfers = []

    i = j = 0
    while i < len(debtors) and j < len(creditors):
        debtor, creditor = debtors[i], creditors[j]
        amount = min(debtor[1], creditor[1])

        transfers.append(
            SuggestedTransfer(
                from_member_id=debtor[0],
                to_member_id=creditor[0],
                amount=from_milliunits(amount),
            )
        )

        debtor[1] -= amount
        creditor[1] -= amount
        if debtor[1] == 0:
            i += 1
        if creditor[1] == 0:
            j += 1

    return transfers


def group_total_spent(state: AppState, group_id: str) -> Decimal:
    """Total of all expense amounts recorded in a group."""
    return sum(
        (expense.amount for expense in state.group_expenses(group_id)),
        Decimal("0.00"),
    )


def outstanding_debt(balance: MemberBalance) -> Decimal:
    """How much a member still has to pay (zero if they're owed money)."""
    return max(-balance.net, Decimal("0.00"))


def outstanding_credit(balance: MemberBalance) -> Decimal:
    """How much a member is still owed (zero if they owe money)."""
    return max(balance.net, Decimal("0.00"))
