"""
Declaration Workflow (``tax_modules.declarations.workflows``).

Responsibility
--------------
State machine for the income tax declaration lifecycle.  ``submit`` is the
only transition with ``applies_ledger=True``: loss consumption and new loss
records happen there and nowhere else.

Invariants enforced
-------------------
* SUBMITTED, ACCEPTED and CORRECTED have no ``edit`` transition.
* CORRECTED is terminal; the correction continues as a new declaration.
"""

from tax_kernel.domain.workflow import Guard, Transition, Workflow
from tax_kernel.logging_config import get_logger

logger = get_logger("modules.declarations.workflows")


REGIME_ELIGIBLE = Guard(
    name="regime_eligible",
    description="Client profile permits the selected calculation method",
)

LOSS_BALANCE_SUFFICIENT = Guard(
    name="loss_balance_sufficient",
    description="Loss ledger still holds the loss applied at calculation",
)

ORIGINAL_LOSS_UNUSED = Guard(
    name="original_loss_unused",
    description="Loss created by the corrected declaration has not been consumed",
)

DECLARATION_WORKFLOW = Workflow(
    name="income_tax_declaration",
    description="Income tax declaration lifecycle",
    initial_state="DRAFT",
    states=(
        "DRAFT",
        "CALCULATED",
        "SUBMITTED",
        "ACCEPTED",
        "CORRECTED",
    ),
    transitions=(
        Transition("DRAFT", "CALCULATED", action="calculate", guard=REGIME_ELIGIBLE),
        Transition("CALCULATED", "CALCULATED", action="calculate", guard=REGIME_ELIGIBLE),
        Transition("DRAFT", "DRAFT", action="edit"),
        Transition("CALCULATED", "DRAFT", action="edit"),
        Transition("CALCULATED", "SUBMITTED", action="submit",
                   guard=LOSS_BALANCE_SUFFICIENT, applies_ledger=True),
        Transition("SUBMITTED", "ACCEPTED", action="accept"),
        Transition("SUBMITTED", "CORRECTED", action="correct", guard=ORIGINAL_LOSS_UNUSED),
        Transition("ACCEPTED", "CORRECTED", action="correct", guard=ORIGINAL_LOSS_UNUSED),
    ),
    terminal_states=("CORRECTED",),
)

logger.info(
    "declaration_workflow_registered",
    extra={
        "workflow_name": DECLARATION_WORKFLOW.name,
        "state_count": len(DECLARATION_WORKFLOW.states),
        "transition_count": len(DECLARATION_WORKFLOW.transitions),
    },
)
