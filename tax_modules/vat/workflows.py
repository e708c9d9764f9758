"""VAT carry-forward lifecycle."""

from tax_kernel.domain.workflow import Guard, Transition, Workflow
from tax_kernel.logging_config import get_logger

logger = get_logger("modules.vat.workflows")


BALANCE_SUFFICIENT = Guard(
    name="balance_sufficient",
    description="Amount applied does not exceed the remaining balance",
)

CARRY_FORWARD_WORKFLOW = Workflow(
    name="vat_carry_forward",
    description="VAT credit carry-forward lifecycle",
    initial_state="ACTIVE",
    states=(
        "ACTIVE",
        "PARTIALLY_APPLIED",
        "FULLY_APPLIED",
        "EXPIRED",
    ),
    transitions=(
        Transition("ACTIVE", "PARTIALLY_APPLIED", action="apply_partial",
                   guard=BALANCE_SUFFICIENT, applies_ledger=True),
        Transition("ACTIVE", "FULLY_APPLIED", action="apply_full",
                   guard=BALANCE_SUFFICIENT, applies_ledger=True),
        Transition("PARTIALLY_APPLIED", "PARTIALLY_APPLIED", action="apply_partial",
                   guard=BALANCE_SUFFICIENT, applies_ledger=True),
        Transition("PARTIALLY_APPLIED", "FULLY_APPLIED", action="apply_full",
                   guard=BALANCE_SUFFICIENT, applies_ledger=True),
        Transition("ACTIVE", "EXPIRED", action="expire"),
        Transition("PARTIALLY_APPLIED", "EXPIRED", action="expire"),
    ),
    terminal_states=("FULLY_APPLIED", "EXPIRED"),
)

logger.info(
    "vat_carry_forward_workflow_registered",
    extra={
        "workflow_name": CARRY_FORWARD_WORKFLOW.name,
        "state_count": len(CARRY_FORWARD_WORKFLOW.states),
        "transition_count": len(CARRY_FORWARD_WORKFLOW.transitions),
    },
)
